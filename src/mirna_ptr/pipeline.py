"""
End-to-end analysis run.

Loads both assays, runs the single-factor comparison in each, merges the
assays on the canonical key, fits the two-factor model and writes every
terminal artifact under the output directory.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Tuple

import pandas as pd

from .classify import classify_interaction, summarize_calls
from .config import AssaySpec, RunConfig
from .design import TwoFactorResult, run_two_factor, stack_sample_metadata
from .diagnostics import dispersion_summary, sample_qc
from .io import load_counts_matrix, load_sample_metadata, write_table
from .merge import drop_incomplete, merge_count_matrices, merge_result_tables, result_correlation
from .preprocess import AlignedAssay, filter_and_align, filter_features_by_total_counts
from .single_factor import SingleFactorResult, run_single_factor
from .stats import label_single_factor

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    single_factor: Dict[str, SingleFactorResult]
    result_merge: pd.DataFrame
    correlation: Dict[str, float]
    merged_counts: pd.DataFrame
    two_factor: TwoFactorResult
    labeled: pd.DataFrame
    summary: pd.Series
    outputs: Dict[str, Path] = field(default_factory=dict)


def load_assay(
    spec: AssaySpec, conditions, min_total_count: int = 0
) -> Tuple[AlignedAssay, pd.DataFrame]:
    """Load, filter and align one assay's count matrix and sample metadata.

    Returns the aligned assay and its per-sample QC table.
    """
    counts = load_counts_matrix(spec.counts_path)
    smeta = load_sample_metadata(
        spec.metadata_path,
        sample_id_col=spec.sample_id_col,
        required=(spec.condition_col,),
    )
    aligned = filter_and_align(
        counts, smeta, conditions, assay=spec.label, condition_col=spec.condition_col
    )
    if min_total_count > 0:
        aligned = replace(
            aligned, counts=filter_features_by_total_counts(aligned.counts, min_total_count)
        )

    qc = sample_qc(aligned.counts)
    logger.info(
        f"{spec.label}: zero fraction per sample {qc['zero_fraction'].min():.2f}-"
        f"{qc['zero_fraction'].max():.2f}, size factors {qc['size_factor'].min():.2f}-"
        f"{qc['size_factor'].max():.2f}"
    )
    return aligned, qc


def run_analysis(config: RunConfig) -> RunResult:
    """Run the full analysis described by ``config`` and write its artifacts."""
    out_dir = config.out_dir
    thresholds = config.thresholds
    baseline = config.baseline_condition
    treatment = config.treatment_condition
    assays = (config.nascent.label, config.steady.label)
    outputs: Dict[str, Path] = {}

    aligned: Dict[str, AlignedAssay] = {}
    qc: Dict[str, pd.DataFrame] = {}
    for spec in (config.nascent, config.steady):
        aligned[spec.label], qc[spec.label] = load_assay(spec, config.conditions, config.min_total_count)

    single: Dict[str, SingleFactorResult] = {}
    for assay in assays:
        res = run_single_factor(aligned[assay], treatment, baseline, max_iter=config.max_iter)
        single[assay] = res
        disp = dispersion_summary(res.fit.alpha)
        if disp["n"]:
            logger.info(f"{assay}: median dispersion {disp['median']:.3g} over {int(disp['n'])} features")

        table = res.table.assign(call=label_single_factor(res.table, thresholds))
        outputs[f"sample_qc_{assay}"] = write_table(
            qc[assay], out_dir / f"sample_qc_{assay}.tsv"
        )
        outputs[f"normalized_counts_{assay}"] = write_table(
            res.normalized, out_dir / f"normalized_counts_{assay}.tsv"
        )
        outputs[f"de_{assay}"] = write_table(table, out_dir / f"de_{assay}.tsv", index=False)

    result_merge = merge_result_tables(single[assays[0]].table, single[assays[1]].table, thresholds, assays)
    correlation = result_correlation(result_merge, assays)
    logger.info(
        f"log2FC correlation {assays[0]} vs {assays[1]}: n={correlation['n']}, "
        f"pearson={correlation['pearson_r']:.3f}, spearman={correlation['spearman_r']:.3f}"
    )
    outputs["de_merged"] = write_table(
        result_merge, out_dir / f"de_merged_{assays[0]}_vs_{assays[1]}.tsv", index=False
    )
    outputs["correlation"] = write_table(
        pd.Series(correlation, name="value").to_frame(), out_dir / "correlation.tsv"
    )

    merged = merge_count_matrices(aligned[assays[0]].counts, aligned[assays[1]].counts, assays)
    complete = drop_incomplete(merged)
    outputs["merged_counts"] = write_table(complete, out_dir / "merged_counts.tsv")

    stacked = stack_sample_metadata(aligned[assays[0]].metadata, aligned[assays[1]].metadata)
    two_factor = run_two_factor(
        complete,
        stacked,
        baseline_condition=baseline,
        reference_assay=assays[0],
        assays=assays,
        max_iter=config.max_iter,
    )
    outputs["normalized_counts_two_factor"] = write_table(
        two_factor.fit.normalized, out_dir / "normalized_counts_two_factor.tsv"
    )

    labeled = classify_interaction(
        two_factor.table,
        {a: single[a].table for a in assays},
        thresholds,
        assays,
    )
    outputs["interaction_results"] = write_table(
        labeled, out_dir / "interaction_results.tsv", index=False
    )

    summary = summarize_calls(labeled)
    outputs["summary"] = write_table(summary.to_frame(), out_dir / "summary.tsv")

    return RunResult(
        single_factor=single,
        result_merge=result_merge,
        correlation=correlation,
        merged_counts=complete,
        two_factor=two_factor,
        labeled=labeled,
        summary=summary,
        outputs=outputs,
    )
