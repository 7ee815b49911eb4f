"""
batch.py - Batch behaviour scoring

Every DLC table in a folder is one session. Sessions are independent and can
be scored in parallel (one process per session); a failing session is
reported and never stops the batch. When sessions run one after another, the
workers go to the per-frame contour scan of each session instead.
"""

from datetime import datetime
from multiprocessing import Pool
from pathlib import Path
from typing import Dict, List, Optional

from mousescore.config import find_dlc_files, get_session_id
from mousescore.detection.core.episodes import episode_summary
from mousescore.detection.core.pipeline import run_algorithm


def process_single(dlc_path: Path, output_dir: Optional[Path] = None,
                   reprocess: bool = True, export_features: bool = False,
                   workers: int = 1) -> Dict:
    """
    Score a single session.

    `workers` processes are used for the mid-body contour scan.

    Returns dict with session name, success flag and per-behaviour counts.
    """
    from mousescore.session import load_session, save_session

    dlc_path = Path(dlc_path)
    session = get_session_id(dlc_path.name)
    try:
        ctx = load_session(dlc_path, reprocess=reprocess, output_dir=output_dir)
        run_algorithm(ctx, workers)
        output_path = save_session(ctx, output_dir)
        if export_features:
            ctx.features.save_csv(output_path.with_name(f"{session}_features.csv"), ctx.times)

        return {
            'session': session,
            'paradigm': ctx.paradigm.value,
            'size_correction': ctx.parameters.size_correction,
            'reprocessed': ctx.reprocessing,
            'behaviours': episode_summary(ctx.episodes),
            'output_file': str(output_path),
            'dlc_path': str(dlc_path),
            'success': True,
        }

    except Exception as e:
        return {
            'session': session,
            'error': f"{type(e).__name__}: {e}",
            'dlc_path': str(dlc_path),
            'success': False,
        }


def _process_job(job: tuple) -> Dict:
    return process_single(*job)


def process_batch(
    input_dir: Path,
    output_dir: Optional[Path] = None,
    workers: int = 1,
    reprocess: bool = True,
    export_features: bool = False,
    verbose: bool = True
) -> Dict:
    """
    Score all sessions in a directory.

    Args:
        input_dir: Directory containing DLC tables and tracking files
        output_dir: Where behaviour files go (default: next to the inputs)
        workers: Sessions scored in parallel; with a single session (or
            workers == 1) they are used for the contour scan instead
        reprocess: Resume from existing behaviour files
        export_features: Also write <base>_features.csv
        verbose: Print progress

    Returns:
        Summary dict with counts and per-session results.
    """
    from mousescore.detection.core.features import FeatureExtractor

    input_dir = Path(input_dir)
    if output_dir is not None:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

    dlc_files = find_dlc_files(input_dir)
    if not dlc_files:
        if verbose:
            print(f"No DLC files found in {input_dir}")
        return {'total': 0, 'succeeded': 0, 'failed': 0, 'sessions': []}

    if verbose:
        print(f"Feature extractor version: {FeatureExtractor.VERSION}")
        print(f"Output: {output_dir or '(next to input files)'}")
        print(f"Workers: {workers}")
        print("-" * 60)

    results = {
        'total': len(dlc_files),
        'succeeded': 0,
        'failed': 0,
        'sessions': [],
        'processed_at': datetime.now().isoformat(),
    }

    parallel_sessions = workers > 1 and len(dlc_files) > 1
    # pool workers are daemonic and cannot start a contour-scan pool of their own
    scan_workers = 1 if parallel_sessions else workers
    jobs = [(path, output_dir, reprocess, export_features, scan_workers)
            for path in dlc_files]
    if parallel_sessions:
        with Pool(processes=min(workers, len(jobs))) as pool:
            _collect(pool.imap(_process_job, jobs), dlc_files, results, verbose)
    else:
        _collect(map(_process_job, jobs), dlc_files, results, verbose)

    if verbose:
        print("-" * 60)
        print(f"Done: {results['succeeded']} scored, {results['failed']} failed")
    return results


def _collect(outcomes, dlc_files: List[Path], results: Dict, verbose: bool):
    for i, outcome in enumerate(outcomes, 1):
        results['sessions'].append(outcome)
        if outcome['success']:
            results['succeeded'] += 1
        else:
            results['failed'] += 1

        if verbose:
            name = Path(dlc_files[i - 1]).name
            if outcome['success']:
                counts = ', '.join(f"{k}={v['count']}" for k, v in outcome['behaviours'].items()
                                   if v['count'])
                print(f"[{i}/{len(dlc_files)}] {name}... OK (SC={outcome['size_correction']:.3f}; "
                      f"{counts})")
            else:
                print(f"[{i}/{len(dlc_files)}] {name}... FAILED: {outcome['error']}")
