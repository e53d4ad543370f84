#!/usr/bin/env python3
"""
Command line entry point.

Example
-------
    mirna-ptr \\
        --nascent-counts data/nascent_counts.tsv --nascent-metadata data/nascent_samples.tsv \\
        --steady-counts data/smallrna_counts.tsv --steady-metadata data/smallrna_samples.tsv \\
        --conditions ConditionA ConditionB --baseline ConditionB \\
        --out-dir results/
"""
import argparse
import logging
import sys
from typing import Optional, Sequence

from .config import AssaySpec, RunConfig, Thresholds
from .identifiers import NASCENT, STEADY_STATE
from .pipeline import run_analysis

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    defaults = Thresholds()
    parser = argparse.ArgumentParser(
        prog="mirna-ptr",
        description="Differential expression of microRNAs across nascent-transcription and "
        "small-RNA assays, and post-transcriptional regulation calls from their interaction.",
    )
    for assay, name in ((NASCENT, "nascent-transcription"), (STEADY_STATE, "small-RNA")):
        parser.add_argument(f"--{assay}-counts", required=True, help=f"{name} raw count table")
        parser.add_argument(f"--{assay}-metadata", required=True, help=f"{name} sample metadata table")
    parser.add_argument("--sample-id-col", default="sample_id")
    parser.add_argument("--condition-col", default="condition")
    parser.add_argument(
        "--conditions", nargs=2, default=["ConditionA", "ConditionB"], metavar=("TREATMENT", "BASELINE")
    )
    parser.add_argument("--baseline", default=None, help="reference condition (default: second of --conditions)")
    parser.add_argument("--out-dir", required=True)
    parser.add_argument("--pvalue", type=float, default=defaults.pvalue)
    parser.add_argument("--padj", type=float, default=defaults.padj)
    parser.add_argument("--expression-floor", type=float, default=defaults.expression_floor)
    parser.add_argument("--correlation-floor", type=float, default=defaults.correlation_floor)
    parser.add_argument("--min-total-count", type=int, default=0)
    parser.add_argument("--max-iter", type=int, default=8)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    def _assay(label: str) -> AssaySpec:
        return AssaySpec(
            label=label,
            counts_path=getattr(args, f"{label}_counts"),
            metadata_path=getattr(args, f"{label}_metadata"),
            sample_id_col=args.sample_id_col,
            condition_col=args.condition_col,
        )

    return RunConfig(
        nascent=_assay(NASCENT),
        steady=_assay(STEADY_STATE),
        out_dir=args.out_dir,
        conditions=tuple(args.conditions),
        baseline_condition=args.baseline,
        thresholds=Thresholds(
            pvalue=args.pvalue,
            padj=args.padj,
            expression_floor=args.expression_floor,
            correlation_floor=args.correlation_floor,
        ),
        min_total_count=args.min_total_count,
        max_iter=args.max_iter,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )

    try:
        config = config_from_args(args)
        result = run_analysis(config)
    except ValueError as e:
        logger.error(f"Analysis stopped: {e}")
        return 1

    print("\n" + "=" * 70)
    print("SUMMARY")
    print("=" * 70)
    print(result.summary.to_string())
    print(f"\nResults saved to: {config.out_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
