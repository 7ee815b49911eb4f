"""Shared helpers for MouseScore."""
