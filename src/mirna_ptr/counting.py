"""
Per-sample count aggregation over annotated loci.

Reading signal out of coverage files is done by an external counting
callable; this module prepares the genomic windows it counts over and
runs it once per sample across a bounded process pool, then concatenates
the per-sample count vectors into a count matrix.
"""

import logging
import os
from multiprocessing import Pool, cpu_count
from typing import Any, Callable, Mapping, Optional

import pandas as pd

logger = logging.getLogger(__name__)

#: Counting service: (sample source, windows) -> counts per window name.
Counter = Callable[[Any, pd.DataFrame], pd.Series]


def flank_windows(annotation: pd.DataFrame, flank: int = 0) -> pd.DataFrame:
    """
    Extend every annotated locus by ``flank`` bases on each side.

    Transcription of a microRNA precursor is read from the signal around its
    locus, so the window covers the locus plus its flanks. Starts are
    clipped at 0.

    Parameters
    ----------
    annotation : pd.DataFrame
        Indexed by feature identifier with ``chrom``, ``start``, ``end``
        (and optionally ``strand``) columns.
    flank : int, default 0
        Bases added on each side.

    Returns
    -------
    pd.DataFrame
        Same index, columns ``chrom``, ``start``, ``end``, ``strand``.
    """
    if flank < 0:
        raise ValueError(f"flank must be non-negative, got {flank}")
    missing = [c for c in ("chrom", "start", "end") if c not in annotation.columns]
    if missing:
        raise ValueError(f"Annotation missing required columns: {missing}")

    win = pd.DataFrame(index=annotation.index)
    win["chrom"] = annotation["chrom"].astype(str)
    win["start"] = (annotation["start"].astype(int) - flank).clip(lower=0)
    win["end"] = annotation["end"].astype(int) + flank
    win["strand"] = annotation["strand"] if "strand" in annotation.columns else "+"
    return win


def _count_one(sample: str, source: Any, windows: pd.DataFrame, counter: Counter) -> Optional[pd.Series]:
    """Run the counter for one sample. Module-level to enable multiprocessing."""
    try:
        counts = pd.Series(counter(source, windows), dtype=float)
    except Exception as e:
        logger.error(f"Error counting sample {sample} from {source}: {e}")
        return None
    logger.info(f"{sample}: Complete - {int(counts.sum()):,} counts over {len(counts)} windows")
    return counts.rename(sample)


def count_samples(
    samples: Mapping[str, Any],
    windows: pd.DataFrame,
    counter: Counter,
    num_cores: Optional[int] = None,
) -> pd.DataFrame:
    """
    Count every sample in parallel and merge the results into a count matrix.

    Parameters
    ----------
    samples : mapping
        Sample identifier -> source handed to ``counter`` (a path, or a
        tuple of paths for stranded coverage pairs).
    windows : pd.DataFrame
        Windows from :func:`flank_windows`.
    counter : callable
        Picklable function returning counts per window name for one source.
    num_cores : int, optional
        Number of worker processes. Defaults to (available cores - 2).

    Returns
    -------
    pd.DataFrame
        Features x samples, integer counts, columns in ``samples`` order.
        Windows a counter did not report are 0.

    Raises
    ------
    RuntimeError
        If counting failed for any sample.
    """
    if not samples:
        raise ValueError("No samples to count.")
    if num_cores is None:
        if hasattr(os, "sched_getaffinity"):
            num_cores = max(1, len(os.sched_getaffinity(0)) - 2)
        else:
            num_cores = max(1, cpu_count() - 2)
    num_cores = max(1, min(num_cores, len(samples)))

    arguments = [(sample, source, windows, counter) for sample, source in samples.items()]
    logger.info(f"Counting {len(arguments)} samples over {len(windows)} windows with {num_cores} workers")

    with Pool(processes=num_cores) as pool:
        sample_counts = pool.starmap(_count_one, arguments)

    failed = [s for s, c in zip(samples, sample_counts) if c is None]
    if failed:
        raise RuntimeError(f"Counting failed for samples: {failed}")

    merged = pd.concat(sample_counts, axis=1).reindex(windows.index)
    merged = merged.fillna(0).round().astype(int)
    merged.index.name = "feature_id"
    logger.info(f"Merged counts: {merged.shape[0]} features x {merged.shape[1]} samples")
    return merged
