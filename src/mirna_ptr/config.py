"""
Run configuration.

All run-wide settings live in frozen dataclasses so a sensitivity analysis
over thresholds is a change of configuration, not of code.

Classes
-------
Thresholds
    Significance and expression cutoffs used by the merger and classifier.
AssaySpec
    Input tables and column names for one assay.
RunConfig
    Everything a full analysis run needs.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from .identifiers import NASCENT, STEADY_STATE


@dataclass(frozen=True)
class Thresholds:
    #: Raw p-value cutoff.
    pvalue: float = 0.05
    #: Adjusted p-value cutoff.
    padj: float = 0.2
    #: Minimum single-factor baseMean for a feature to be classified.
    expression_floor: float = 100.0
    #: Minimum baseMean on each side of the result-table merge.
    correlation_floor: float = 10.0


@dataclass(frozen=True)
class AssaySpec:
    label: str
    counts_path: Path
    metadata_path: Path
    sample_id_col: str = "sample_id"
    condition_col: str = "condition"

    def __post_init__(self):
        object.__setattr__(self, "counts_path", Path(self.counts_path))
        object.__setattr__(self, "metadata_path", Path(self.metadata_path))


@dataclass(frozen=True)
class RunConfig:
    nascent: AssaySpec
    steady: AssaySpec
    out_dir: Path
    conditions: Tuple[str, str] = ("ConditionA", "ConditionB")
    #: Reference condition of every comparison; defaults to the second label.
    baseline_condition: str | None = None
    thresholds: Thresholds = field(default_factory=Thresholds)
    min_total_count: int = 0
    max_iter: int = 8

    def __post_init__(self):
        object.__setattr__(self, "out_dir", Path(self.out_dir))
        conditions = tuple(self.conditions)
        if len(conditions) != 2 or conditions[0] == conditions[1]:
            raise ValueError(f"Exactly two distinct conditions are required, got {conditions}.")
        object.__setattr__(self, "conditions", conditions)

        if self.baseline_condition is None:
            object.__setattr__(self, "baseline_condition", conditions[1])
        elif self.baseline_condition not in conditions:
            raise ValueError(
                f"Baseline condition '{self.baseline_condition}' is not one of {conditions}."
            )

        if self.nascent.label != NASCENT or self.steady.label != STEADY_STATE:
            raise ValueError(
                f"Assay labels must be '{NASCENT}' and '{STEADY_STATE}', "
                f"got '{self.nascent.label}' and '{self.steady.label}'."
            )

    @property
    def treatment_condition(self) -> str:
        """The non-baseline condition (numerator of every log ratio)."""
        return next(c for c in self.conditions if c != self.baseline_condition)
