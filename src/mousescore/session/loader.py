"""
Session input loading.

A session <base> is described by three files in one folder:

    <base>DLC_....csv / .h5    DeepLabCut pose table (3-row header)
    <base>_tracking.npz        contour tracking: motion, centroid, contours,
                               timestamps, arena mask and calibration
    <base>.avi                 movie (<base>_IRtoBW.avi for light/dark box)

load_session() validates everything and returns a SessionContext ready for
run_algorithm(). Missing inputs raise MissingInputDataError.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
import pandas as pd

from mousescore.config import (
    BodyParts, FilePatterns, OUTPUT_DIR, TrackingLimits, get_session_id,
)
from mousescore.errors import MissingInputDataError, MouseScoreError
from mousescore.detection.core.behaviours import Paradigm, RecordingKey
from mousescore.detection.core.parameters import DetectionParameters
from mousescore.detection.core.pipeline import SessionContext
from mousescore.detection.core.tracking import (
    ArenaGeometry, ArenaShape, Track, TrackingData,
)

logger = logging.getLogger(__name__)


def load_dlc(filepath: Path) -> pd.DataFrame:
    """Load DLC file with flattened columns."""
    filepath = Path(filepath)
    if filepath.suffix == '.h5':
        df = pd.read_hdf(filepath)
    else:
        df = pd.read_csv(filepath, header=[0, 1, 2], index_col=0)
    df.columns = ['_'.join([str(c) for c in col[1:]]) for col in df.columns]
    return df


def load_tracks(df: pd.DataFrame) -> Dict[str, Track]:
    """Validated tracks for every known body part present in the table."""
    tracks = {}
    for part in BodyParts.ALL:
        if all(f'{part}_{c}' in df.columns for c in ('x', 'y', 'likelihood')):
            tracks[part] = Track.from_dataframe(df, part)
    missing = [p for p in BodyParts.REQUIRED if p not in tracks]
    if missing:
        raise MissingInputDataError(f"DLC table lacks required body parts: {missing}")
    return tracks


def probe_movie(movie_path: Path) -> Tuple[float, Tuple[int, int]]:
    """Frame rate and (height, width) of a movie."""
    cap = cv2.VideoCapture(str(movie_path))
    try:
        if not cap.isOpened():
            raise MissingInputDataError(f"Cannot open movie {movie_path}")
        fps = cap.get(cv2.CAP_PROP_FPS)
        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
    finally:
        cap.release()
    return fps, (height, width)


def session_paths(dlc_path: Path, paradigm: Optional[Paradigm] = None,
                  output_dir: Optional[Path] = None) -> Dict[str, Path]:
    """Expected tracking file, movie and behaviour file for a DLC table."""
    dlc_path = Path(dlc_path)
    base = get_session_id(dlc_path.name)
    folder = dlc_path.parent
    paradigm = paradigm or Paradigm.from_session_name(base)
    thermal = paradigm.recording_key is RecordingKey.THERMAL
    movie_suffix = FilePatterns.THERMAL_MOVIE_SUFFIX if thermal else FilePatterns.MOVIE_SUFFIX
    behaviour_dir = Path(output_dir or OUTPUT_DIR or folder)
    return {
        'dlc': dlc_path,
        'tracking': folder / f"{base}{FilePatterns.TRACKING_SUFFIX}",
        'movie': folder / f"{base}{movie_suffix}",
        'behaviour': behaviour_dir / f"{base}{FilePatterns.BEHAVIOUR_SUFFIX}",
    }


def _contours(tracking: dict) -> List[np.ndarray]:
    """Split the concatenated contour points into one (k, 2) array per frame."""
    points = np.asarray(tracking['contour_points'], dtype=float).reshape(-1, 2)
    offsets = np.asarray(tracking['contour_offsets'], dtype=int).ravel()
    if offsets.size == 0 or offsets[-1] > len(points):
        raise MissingInputDataError("contour_offsets do not match contour_points")
    return [points[offsets[i]:offsets[i + 1]] for i in range(len(offsets) - 1)]


def _px_per_cm(tracking: dict) -> float:
    if 'calibration_line' in tracking and 'calibration_length' in tracking:
        line = np.asarray(tracking['calibration_line'], dtype=float).reshape(2, 2)
        length = float(tracking['calibration_length'])
        pixels = float(np.linalg.norm(line[1] - line[0]))
        if length > 0 and pixels > 0:
            return pixels / length
        logger.warning(f"Invalid calibration line ({pixels:.1f} px / {length} cm)")
    logger.info(f"No calibration found; using {TrackingLimits.DEFAULT_PX_PER_CM} px/cm")
    return TrackingLimits.DEFAULT_PX_PER_CM


def _polygons(tracking: dict, prefix: str) -> Optional[List[np.ndarray]]:
    polygons = [np.asarray(tracking[k], dtype=float).reshape(-1, 2)
                for k in (f'{prefix}_0', f'{prefix}_1') if k in tracking]
    return polygons or None


def load_tracking_file(path: Path, paradigm: Paradigm) -> dict:
    """Read and check the contour tracking file of a session."""
    if not path.exists():
        raise MissingInputDataError(f"Tracking file not found: {path}")
    with np.load(path, allow_pickle=False) as npz:
        tracking = {k: npz[k] for k in npz.files}

    for key in ('motion', 'center', 'contour_points', 'contour_offsets', 'mask'):
        if key not in tracking:
            raise MissingInputDataError(f"'{key}' missing from {path.name}")

    if 'times' not in tracking:
        if 'movie_times' not in tracking:
            raise MissingInputDataError(f"No timestamps in {path.name}")
        logger.warning(f"{path.name}: no 'times', using 'movie_times'")
        tracking['times'] = tracking['movie_times']

    if paradigm is Paradigm.ELEVATED_PLUS_MAZE and (
            _polygons(tracking, 'closed_arms') is None or 'wall_vertices' not in tracking):
        raise MissingInputDataError(f"{path.name}: plus maze needs closed arms and wall vertices")
    if paradigm is Paradigm.LIGHT_DARK_BOX and _polygons(tracking, 'middle_wall') is None:
        raise MissingInputDataError(f"{path.name}: light/dark box needs middle-wall polygons")
    return tracking


def load_session(dlc_path: Path, reprocess: bool = True,
                 parameters: Optional[DetectionParameters] = None,
                 output_dir: Optional[Path] = None) -> SessionContext:
    """
    Load all inputs of a session.

    Args:
        dlc_path: DLC table of the session
        reprocess: Restore a previous <base>_behaviour.json if there is one
        parameters: Parameter set to use (default: configured defaults)
        output_dir: Folder holding behaviour files (default: next to the inputs)

    Returns:
        SessionContext ready for run_algorithm()
    """
    dlc_path = Path(dlc_path)
    if not dlc_path.exists():
        raise MissingInputDataError(f"DLC file not found: {dlc_path}")

    base = get_session_id(dlc_path.name)
    paradigm = Paradigm.from_session_name(base)
    paths = session_paths(dlc_path, paradigm, output_dir)
    thermal = FilePatterns.THERMAL_TAG in dlc_path.name
    if thermal and paradigm.recording_key is not RecordingKey.THERMAL:
        raise MouseScoreError(f"{dlc_path.name}: {FilePatterns.THERMAL_TAG} files are only "
                              f"scored for light/dark box sessions")

    tracking = load_tracking_file(paths['tracking'], paradigm)
    if not paths['movie'].exists():
        raise MissingInputDataError(f"Movie not found: {paths['movie']}")

    if 'frame_rate' in tracking:
        fps = float(tracking['frame_rate'])
    else:
        fps, _ = probe_movie(paths['movie'])
    if not fps or fps <= 0:
        raise MissingInputDataError(f"No frame rate for {base}")

    tracks = load_tracks(load_dlc(dlc_path))
    times = np.asarray(tracking['times'], dtype=float).ravel()
    contours = _contours(tracking)
    n_frames = min(len(times), len(tracking['motion']), len(tracking['center']), len(contours),
                   min(len(t) for t in tracks.values()))
    if n_frames != len(times) or any(len(t) != n_frames for t in tracks.values()):
        logger.warning(f"{base}: inputs differ in length; truncating to {n_frames} frames")

    geometry = ArenaGeometry(
        px_per_cm=_px_per_cm(tracking),
        mask=np.asarray(tracking['mask']).astype(bool),
        shape=ArenaShape.parse(str(tracking.get('shape', 'rectangle'))),
        closed_arms=_polygons(tracking, 'closed_arms'),
        wall_vertices=(np.asarray(tracking['wall_vertices'], dtype=float).reshape(-1, 2)
                       if 'wall_vertices' in tracking else None),
        middle_walls=_polygons(tracking, 'middle_wall'),
    )
    data = TrackingData(
        times=times[:n_frames],
        fps=fps,
        tracks={name: t.truncate(n_frames) for name, t in tracks.items()},
        center=np.asarray(tracking['center'], dtype=float).reshape(-1, 2)[:n_frames],
        contours=contours[:n_frames],
        motion=np.asarray(tracking['motion'], dtype=float).ravel()[:n_frames],
        geometry=geometry,
    )

    ctx = SessionContext(
        name=base,
        paradigm=paradigm,
        data=data,
        parameters=parameters or DetectionParameters.default(),
        source_dir=dlc_path.parent,
    )
    logger.info(f"Loaded {base}: {n_frames} frames at {fps:.2f} fps, "
                f"{geometry.px_per_cm:.2f} px/cm, {len(tracks)} body parts")

    if reprocess and paths['behaviour'].exists():
        from mousescore.session.store import load_behaviour_file, apply_saved_session
        apply_saved_session(ctx, load_behaviour_file(paths['behaviour']))
    return ctx
