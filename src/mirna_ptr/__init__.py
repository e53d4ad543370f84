"""
mirna-ptr: post-transcriptional regulation of microRNAs from paired
nascent-transcription and small-RNA sequencing.

Each assay is compared between two conditions with a per-feature negative
binomial GLM; the assays are then joined on a canonical microRNA key and a
condition x assay model is fitted, whose interaction term flags microRNAs
whose mature abundance changes differently from their transcription.

Modules
-------
identifiers
    Canonical keys for small-RNA read labels and precursor gene symbols.
io
    Loading count and metadata tables; atomic table output.
preprocess
    Condition filtering, sample alignment, size factors.
model
    Per-feature negative binomial GLM fitting with iterative dispersion.
contrasts
    Coefficient names and Wald contrasts.
stats
    Result tables and FDR correction.
single_factor
    Two-condition comparison within one assay.
merge
    Cross-assay joins on the canonical key and composite keys.
design
    The condition x assay model and its interaction term.
classify
    Stable / unstable calls.
counting
    Parallel per-sample counting over annotated loci.
pipeline
    End-to-end run writing every artifact.

Example
-------
>>> import mirna_ptr as mp
>>> counts = mp.load_counts_matrix("data/smallrna_counts.tsv")
>>> smeta = mp.load_sample_metadata("data/smallrna_samples.tsv")
>>> aligned = mp.filter_and_align(counts, smeta, ["ConditionA", "ConditionB"], assay="steady")
>>> res = mp.run_single_factor(aligned, treatment="ConditionA", baseline="ConditionB")
"""

__version__ = "0.1.0"

# classify
from .classify import (
    NOT_CLASSIFIED,
    STABLE,
    UNSTABLE,
    classify_interaction,
    expressed_features,
    is_candidate,
    summarize_calls,
)

# config
from .config import (
    AssaySpec,
    RunConfig,
    Thresholds,
)

# contrasts
from .contrasts import (
    coef_name_for_level,
    contrast_vector,
    interaction_coef_name,
    wald_contrast,
)

# counting
from .counting import (
    count_samples,
    flank_windows,
)

# design
from .design import (
    TWO_FACTOR_FORMULA,
    TwoFactorResult,
    build_two_factor_metadata,
    run_two_factor,
    stack_sample_metadata,
)

# diagnostics
from .diagnostics import (
    dispersion_summary,
    estimate_alpha_nb2_moments,
    sample_qc,
    zero_fraction,
)

# identifiers
from .identifiers import (
    NASCENT,
    STEADY_STATE,
    canonical_keys,
    normalize_nascent_id,
    normalize_steady_state_id,
    normalizer_for,
)

# io
from .io import (
    load_annotation,
    load_counts_matrix,
    load_sample_metadata,
    write_table,
)

# merge
from .merge import (
    SEPARATOR,
    collapse_by_key,
    drop_incomplete,
    make_composite_key,
    merge_count_matrices,
    merge_result_tables,
    result_correlation,
    split_composite_index,
    split_composite_key,
    split_identifiers,
)

# model
from .model import (
    FitResult,
    build_design,
    factor_levels,
    fit_nb_glm_per_feature,
    relevel,
)

# pipeline
from .pipeline import (
    RunResult,
    run_analysis,
)

# preprocess
from .preprocess import (
    AlignedAssay,
    AlignmentError,
    check_alignment,
    filter_and_align,
    filter_features_by_total_counts,
    median_ratio_size_factors,
    normalize_counts,
)

# single_factor
from .single_factor import (
    SingleFactorResult,
    run_single_factor,
)

# stats
from .stats import (
    bh_fdr,
    label_single_factor,
    results_table,
)

__all__ = [
    # classify
    "NOT_CLASSIFIED",
    "STABLE",
    "UNSTABLE",
    "classify_interaction",
    "expressed_features",
    "is_candidate",
    "summarize_calls",
    # config
    "AssaySpec",
    "RunConfig",
    "Thresholds",
    # contrasts
    "coef_name_for_level",
    "contrast_vector",
    "interaction_coef_name",
    "wald_contrast",
    # counting
    "count_samples",
    "flank_windows",
    # design
    "TWO_FACTOR_FORMULA",
    "TwoFactorResult",
    "build_two_factor_metadata",
    "run_two_factor",
    "stack_sample_metadata",
    # diagnostics
    "dispersion_summary",
    "estimate_alpha_nb2_moments",
    "sample_qc",
    "zero_fraction",
    # identifiers
    "NASCENT",
    "STEADY_STATE",
    "canonical_keys",
    "normalize_nascent_id",
    "normalize_steady_state_id",
    "normalizer_for",
    # io
    "load_annotation",
    "load_counts_matrix",
    "load_sample_metadata",
    "write_table",
    # merge
    "SEPARATOR",
    "collapse_by_key",
    "drop_incomplete",
    "make_composite_key",
    "merge_count_matrices",
    "merge_result_tables",
    "result_correlation",
    "split_composite_index",
    "split_composite_key",
    "split_identifiers",
    # model
    "FitResult",
    "build_design",
    "factor_levels",
    "fit_nb_glm_per_feature",
    "relevel",
    # pipeline
    "RunResult",
    "run_analysis",
    # preprocess
    "AlignedAssay",
    "AlignmentError",
    "check_alignment",
    "filter_and_align",
    "filter_features_by_total_counts",
    "median_ratio_size_factors",
    "normalize_counts",
    # single_factor
    "SingleFactorResult",
    "run_single_factor",
    # stats
    "bh_fdr",
    "label_single_factor",
    "results_table",
]
