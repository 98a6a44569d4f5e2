# ================================================================================
# Coverage aggregates and the coverage matrix
# ================================================================================

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass, field
from itertools import combinations

import numpy as np
import pandas as pd

from coverplex.designer.primer import Primer
from coverplex.designer.template import Template


def covered_template_ids(primers: list[Primer]) -> set[str]:
    covered = set()
    for primer in primers:
        covered.update(primer.covered_templates)
    return covered


def coverage_ratio(primers: list[Primer], templates: list[Template]) -> float:
    """Fraction of templates covered by at least one primer."""
    if not templates:
        return 0.0
    template_ids = {t.id for t in templates}
    return len(covered_template_ids(primers) & template_ids) / len(templates)


def coverage_by_group(primers: list[Primer], templates: list[Template]) -> pd.DataFrame:
    """
    Count and ratio of covered templates per group label.

    Returns:
        DataFrame with columns Group, N_Templates, N_Covered, Coverage_Ratio.
    """
    covered = covered_template_ids(primers)
    df = pd.DataFrame(
        {
            "Group": [t.group for t in templates],
            "Covered": [t.id in covered for t in templates],
        }
    )
    if df.empty:
        return pd.DataFrame(columns=["Group", "N_Templates", "N_Covered", "Coverage_Ratio"])

    summary = (
        df.groupby("Group", sort=True)["Covered"]
        .agg(N_Templates="size", N_Covered="sum")
        .reset_index()
    )
    summary["N_Covered"] = summary["N_Covered"].astype(int)
    summary["Coverage_Ratio"] = summary["N_Covered"] / summary["N_Templates"]
    return summary


def annotate_templates(templates: list[Template], primers: list[Primer]) -> list[Template]:
    """Copies of the templates with ``covered_by`` filled from the primers' verdicts."""
    covered_by: dict[str, dict[str, int]] = {t.id: {} for t in templates}
    for primer in primers:
        for tid in primer.covered_templates:
            if tid in covered_by:
                covered_by[tid][primer.name] = primer.bindings[tid].mismatches
    return [dataclasses.replace(t, covered_by=covered_by[t.id]) for t in templates]


@dataclass
class CoverageMatrix:
    """
    Boolean template-by-primer coverage relation for one settings snapshot.

        matrix: Array of shape (n_templates, n_primers)
        template_ids: Row labels
        primer_names: Column labels
        penalties: Per-primer quality score used for tie-breaking
        conflicts: Column index pairs that may not be selected together
        conflict_check: Optional test for further conflicting column pairs,
            only called for pairs the optimizer considers
    """

    matrix: np.ndarray
    template_ids: list[str]
    primer_names: list[str]
    penalties: np.ndarray
    conflicts: list[tuple[int, int]] = field(default_factory=list)
    conflict_check: Callable[[int, int], bool] | None = field(default=None, compare=False)

    @property
    def n_templates(self) -> int:
        return len(self.template_ids)

    @property
    def n_primers(self) -> int:
        return len(self.primer_names)

    def covered(self, columns) -> np.ndarray:
        """Rows covered by the union of the given columns."""
        columns = list(columns)
        if not columns:
            return np.zeros(self.n_templates, dtype=bool)
        return self.matrix[:, columns].any(axis=1)

    def ratio(self, columns) -> float:
        if self.n_templates == 0:
            return 0.0
        return float(self.covered(columns).sum()) / self.n_templates

    def in_conflict(self, i: int, j: int) -> bool:
        if (i, j) in self.conflicts or (j, i) in self.conflicts:
            return True
        return self.conflict_check is not None and self.conflict_check(i, j)

    def conflicts_among(self, columns) -> list[tuple[int, int]]:
        """Conflicting pairs within a selection."""
        return [(i, j) for i, j in combinations(columns, 2) if self.in_conflict(i, j)]

    def coverable(self) -> np.ndarray:
        """Rows covered by at least one primer."""
        return self.covered(range(self.n_primers))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.matrix.astype(int), index=self.template_ids, columns=self.primer_names
        )


def build_coverage_matrix(
    primers: list[Primer],
    templates: list[Template],
    conflicts: list[tuple[int, int]] | None = None,
    conflict_check: Callable[[int, int], bool] | None = None,
) -> CoverageMatrix:
    """Build the coverage matrix from annotated primers (columns in input order)."""
    row = {t.id: i for i, t in enumerate(templates)}
    matrix = np.zeros((len(templates), len(primers)), dtype=bool)
    for j, primer in enumerate(primers):
        for tid in primer.covered_templates:
            if tid in row:
                matrix[row[tid], j] = True

    penalties = np.array(
        [p.penalty if p.penalty is not None else 0.0 for p in primers], dtype=float
    )
    return CoverageMatrix(
        matrix=matrix,
        template_ids=[t.id for t in templates],
        primer_names=[p.name for p in primers],
        penalties=penalties,
        conflicts=list(conflicts or []),
        conflict_check=conflict_check,
    )
