#!/usr/bin/env python3
"""
Tests for behaviour file persistence and exclusion ranges.
"""

import json

import numpy as np
import pytest

from mousescore.detection.core.behaviours import Behaviour, Paradigm
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.pipeline import SessionContext
from mousescore.session import (
    BehaviourRecord,
    add_exclusion_range,
    apply_saved_session,
    load_behaviour_file,
    remove_exclusion_range,
    save_session,
    update_exclusion_range,
)

SESSION = "20240312_M0412_OF_Day1"


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def context(stationary_tracking, tmp_path):
    params = DetectionParameters()
    params.size_correction = 0.9
    params.grooming.threshold = 5.85
    ctx = SessionContext(name=SESSION, paradigm=Paradigm.OPEN_FIELD,
                         data=stationary_tracking, parameters=params, source_dir=tmp_path)
    ctx.episodes = {
        Behaviour.GROOMING: np.array([[1.0004, 2.0], [4.0, 5.5]]),
        Behaviour.FREEZING: np.array([[6.0, 8.0]]),
    }
    ctx.exclusion_ranges = np.array([[10.0, 12.0]])
    return ctx


# =============================================================================
# TESTS
# =============================================================================

class TestSaveLoad:
    """Tests for writing and reading <base>_behaviour.json."""

    def test_round_trip(self, context, tmp_path):
        """Episodes, exclusion ranges and parameters survive a save/load cycle."""
        path = save_session(context, tmp_path)
        record = load_behaviour_file(path)

        assert path.name == f"{SESSION}_behaviour.json"
        assert record.session == SESSION
        assert record.paradigm == "OF"
        np.testing.assert_allclose(record.episodes[Behaviour.GROOMING], [[1.0, 2.0], [4.0, 5.5]])
        np.testing.assert_allclose(record.episodes[Behaviour.FREEZING], [[6.0, 8.0]])
        np.testing.assert_allclose(record.exclusion_ranges, [[10.0, 12.0]])
        assert record.parameters.size_correction == pytest.approx(0.9)
        assert record.parameters.grooming.threshold == pytest.approx(5.85)

    def test_saved_files_are_cross_checked(self, context, tmp_path):
        """Every written file is marked as cross-checked."""
        record = load_behaviour_file(save_session(context, tmp_path))
        assert record.cross_checked is True

    def test_detection_to_plot_lists_paradigm_behaviours(self, context, tmp_path):
        """The plotted behaviours follow the classifier order of the paradigm."""
        with open(save_session(context, tmp_path)) as f:
            data = json.load(f)

        assert data['detection_to_plot'][0] == "TailRattling"
        assert data['detection_to_plot'][-1] == "Remaining"
        assert "HeadDips" not in data['detection_to_plot']

    def test_history_grows_with_each_save(self, context, stationary_tracking, tmp_path):
        """A second save appends to the history of the file on disk."""
        save_session(context, tmp_path)
        fresh = SessionContext(name=SESSION, paradigm=Paradigm.OPEN_FIELD,
                               data=stationary_tracking)
        record = load_behaviour_file(save_session(fresh, tmp_path))

        assert len(record.processing_history) == 2
        assert {'date', 'user', 'version'} <= set(record.processing_history[0])

    def test_defaults_to_source_folder(self, context, tmp_path, monkeypatch):
        """Without an output folder the file lands next to the inputs."""
        monkeypatch.setattr("mousescore.session.store.OUTPUT_DIR", None)
        path = save_session(context)
        assert path.parent == tmp_path

    def test_unknown_behaviours_are_skipped(self, tmp_path):
        """Names that are not behaviours are ignored on load."""
        path = tmp_path / f"{SESSION}_behaviour.json"
        path.write_text(json.dumps({'session': SESSION, 'paradigm': 'OF',
                                    'episodes': {'Grooming': [[1, 2]], 'Sniffing': [[3, 4]]}}))

        record = load_behaviour_file(path)

        assert list(record.episodes) == [Behaviour.GROOMING]
        assert record.cross_checked is False


class TestReprocessing:
    """Tests for restoring a saved session."""

    def test_missing_behaviours_of_legacy_file(self):
        """A light/dark box file written before wall rearing existed lacks that stage."""
        behaviours = Paradigm.LIGHT_DARK_BOX.behaviours()
        episodes = {b: np.zeros((0, 2)) for b in behaviours if b is not Behaviour.WALL_REARING}
        record = BehaviourRecord(session="x_LDB", paradigm="LDB",
                                 parameters=DetectionParameters(), episodes=episodes)

        assert record.missing_behaviours(Paradigm.LIGHT_DARK_BOX) == [Behaviour.WALL_REARING]

    def test_apply_saved_session(self, context, stationary_tracking, tmp_path):
        """Restoring sets the reprocessing flag, parameters and episodes."""
        record = load_behaviour_file(save_session(context, tmp_path))
        fresh = SessionContext(name=SESSION, paradigm=Paradigm.OPEN_FIELD,
                               data=stationary_tracking)

        apply_saved_session(fresh, record)

        assert fresh.reprocessing
        assert fresh.parameters.size_correction == pytest.approx(0.9)
        assert set(fresh.episodes) == {Behaviour.GROOMING, Behaviour.FREEZING}
        assert len(fresh.processing_history) == 1


class TestExclusionRanges:
    """Tests for excluded time ranges."""

    def test_add_sorts_and_merges(self):
        """Added ranges are kept sorted; overlapping ranges merge."""
        ranges = add_exclusion_range(np.array([[1.0, 2.0]]), [6.0, 5.0])
        np.testing.assert_allclose(ranges, [[1.0, 2.0], [5.0, 6.0]])

        ranges = add_exclusion_range(ranges, [1.5, 3.0])
        np.testing.assert_allclose(ranges, [[1.0, 3.0], [5.0, 6.0]])

    def test_remove(self):
        """Removing drops one range by index."""
        ranges = remove_exclusion_range(np.array([[1.0, 2.0], [5.0, 6.0]]), 0)
        np.testing.assert_allclose(ranges, [[5.0, 6.0]])

    def test_update(self):
        """Updating replaces one range and re-sorts."""
        ranges = update_exclusion_range(np.array([[1.0, 2.0], [5.0, 6.0]]), 1, [0.2, 0.5])
        np.testing.assert_allclose(ranges, [[0.2, 0.5], [1.0, 2.0]])

    def test_empty(self):
        """Adding to an empty list works."""
        ranges = add_exclusion_range(np.zeros((0, 2)), [3.0, 4.0])
        np.testing.assert_allclose(ranges, [[3.0, 4.0]])
