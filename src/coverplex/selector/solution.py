from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CoverSolution:
    """
    Result of a set-cover selection.

        columns: Selected coverage matrix columns, in selection order
        primer_names: Names of the selected primers, same order
        covered_ids: Templates covered by the selection
        ratio: Achieved coverage ratio over all templates
        required_ratio: Requested coverage ratio
        strategy: Name of the strategy that produced the selection
        fallback: True if the exact strategy failed and greedy was used
        fallback_reason: Why the exact strategy was abandoned
    """

    columns: list[int] = field(default_factory=list)
    primer_names: list[str] = field(default_factory=list)
    covered_ids: list[str] = field(default_factory=list)
    ratio: float = 0.0
    required_ratio: float = 1.0
    strategy: str = "greedy"
    fallback: bool = False
    fallback_reason: str | None = None

    @property
    def size(self) -> int:
        return len(self.columns)

    @property
    def target_met(self) -> bool:
        return self.ratio >= self.required_ratio


@dataclass
class SubsetEntry:
    """Best subset of exactly ``size`` primers."""

    size: int
    primer_names: list[str]
    covered_ids: list[str]
    ratio: float
    fallback: bool = False

    def to_record(self) -> dict:
        return {
            "Size": self.size,
            "Primers": ",".join(self.primer_names),
            "N_Covered": len(self.covered_ids),
            "Coverage_Ratio": self.ratio,
            "Fallback": self.fallback,
        }
