"""
MouseScore Behaviour Detection
==============================

Feature extraction, size calibration, spatial zones and the behaviour
cascade. See mousescore.detection.core for the module map.
"""
