# ================================================================================
# Primer classes and associated records
# ================================================================================

from __future__ import annotations

from dataclasses import dataclass, field

from coverplex.designer.degenerate import degeneracy, is_degenerate


@dataclass
class BindingRecord:
    """
    Binding of a primer to a single template.

    Coordinates are 1-based and inclusive on the template forward strand.
    Forward primers bind on strand "+" (their sequence matches the template),
    reverse primers on strand "-" (their reverse complement matches).

    Args:
        template_id: Template the record refers to.
        start, end: Footprint of the primer on the template.
        strand: "+" or "-".
        mismatches: Number of mismatching primer positions.
        mismatch_positions: 1-based mismatch positions counted from the primer 5' end.
        in_region: Footprint satisfies the allowed region definition.
        annealing_dg: Free energy of the primer/template duplex (kcal/mol).
        perfect_dg: Free energy of the perfect-match duplex (kcal/mol).
        probability: Amplification probability from the coverage model.
        covered: Final coverage verdict.
    """

    template_id: str
    start: int
    end: int
    strand: str
    mismatches: int
    mismatch_positions: tuple[int, ...] = ()
    in_region: bool = True
    annealing_dg: float | None = None
    perfect_dg: float | None = None
    probability: float | None = None
    covered: bool = False


@dataclass
class Primer:
    """
    Define a single (possibly degenerate) primer.

    Args:
        name: Unique primer identifier.
        seq: Primer sequence 5' -> 3'.
        direction: "fw" or "rev".
        origins: Templates the candidate was derived from.
        properties: Evaluated property values, None where undefined.
        bindings: Best in-region binding per template.
        off_target: Templates with binding events outside the allowed region.
        constraint_results: Per-constraint pass/fail verdicts.
        penalty: Quality score from constraint deviations (lower is better).
    """

    name: str
    seq: str
    direction: str
    origins: list[str] = field(default_factory=list)
    properties: dict[str, float | None] = field(default_factory=dict)
    bindings: dict[str, BindingRecord] = field(default_factory=dict)
    off_target: list[str] = field(default_factory=list)
    constraint_results: dict[str, object] = field(default_factory=dict)
    penalty: float | None = None

    def __repr__(self):
        return f"Primer({self.name}, {self.direction}, {self.seq})"

    @property
    def length(self) -> int:
        return len(self.seq)

    @property
    def degeneracy(self) -> int:
        return degeneracy(self.seq)

    @property
    def is_degenerate(self) -> bool:
        return is_degenerate(self.seq)

    @property
    def covered_templates(self) -> list[str]:
        """Templates this primer covers under the last applied coverage rule."""
        return [tid for tid, b in self.bindings.items() if b.covered]

    @property
    def passed(self) -> bool:
        """True if the primer passed every active constraint it was checked against."""
        return all(r.passed for r in self.constraint_results.values())

    def failed_constraints(self) -> list[str]:
        return [name for name, r in self.constraint_results.items() if not r.passed]

    def to_record(self) -> dict:
        """Flat, JSON/CSV-friendly representation."""
        record = {
            "ID": self.name,
            "Direction": self.direction,
            "Sequence": self.seq,
            "Length": self.length,
            "Degeneracy": self.degeneracy,
            "Origins": ",".join(self.origins),
            "Covered_Templates": ",".join(self.covered_templates),
            "Coverage": len(self.covered_templates),
            "Mismatches": ",".join(
                f"{tid}:{self.bindings[tid].mismatches}" for tid in self.covered_templates
            ),
            "Off_Target": ",".join(self.off_target),
            "Penalty": self.penalty,
            "Failed_Constraints": ",".join(self.failed_constraints()),
        }
        for name, value in self.properties.items():
            record[name] = value
        return record
