# ================================================================================
# Constraint checking
#
# Applies the active [min, max] ranges of a settings snapshot to evaluated
# primer properties. Checking never mutates its inputs: annotated copies are
# returned so that every relaxation snapshot can be checked independently.
# ================================================================================

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass

from loguru import logger

from coverplex.config import PRIMER_CONSTRAINTS, ConstraintRange, DesignSettings
from coverplex.designer.primer import Primer


@dataclass(frozen=True)
class ConstraintResult:
    """
    Verdict of one constraint for one primer.

        name: Constraint name
        value: Evaluated property value (None if undefined)
        passed: Value lies inside the range
        deviation: Distance outside the range, 0 inside, inf if undefined
    """

    name: str
    value: float | None
    passed: bool
    deviation: float


def check_value(name: str, value: float | None, rng: ConstraintRange) -> ConstraintResult:
    """
    Check a single value against a (possibly one-sided) range.

    An undefined value always fails.
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ConstraintResult(name, None, False, math.inf)

    deviation = 0.0
    if rng.min is not None and value < rng.min:
        deviation = rng.min - value
    elif rng.max is not None and value > rng.max:
        deviation = value - rng.max
    return ConstraintResult(name, value, deviation == 0.0, deviation)


def check_primer(primer: Primer, settings: DesignSettings) -> dict[str, ConstraintResult]:
    """Verdicts for every active primer-level constraint."""
    return {
        name: check_value(name, primer.properties.get(name), rng)
        for name, rng in settings.active(PRIMER_CONSTRAINTS).items()
    }


def primer_penalty(primer: Primer, settings: DesignSettings) -> float:
    """
    Quality score from constraint deviations; lower is better.

    For every two-sided active constraint the distance of the value from the
    centre of the range is normalised by the half width. Failed constraints add
    their deviation on top.
    """
    penalty = 0.0
    for name, rng in settings.active(PRIMER_CONSTRAINTS).items():
        value = primer.properties.get(name)
        if value is None:
            continue
        if rng.min is not None and rng.max is not None:
            centre = (rng.min + rng.max) / 2
            half_width = (rng.max - rng.min) / 2
            penalty += abs(value - centre) / half_width if half_width > 0 else abs(value - centre)
        result = primer.constraint_results.get(name)
        if result is not None and not result.passed:
            penalty += result.deviation
    return round(penalty, 6)


def filter_primers(
    primers: list[Primer], settings: DesignSettings
) -> tuple[list[Primer], list[Primer]]:
    """
    Check all primers against the active constraints of a snapshot.

    Returns:
        All primers as annotated copies, and the subset passing every active
        primer-level constraint.
    """
    annotated = []
    for primer in primers:
        checked = dataclasses.replace(primer)
        checked.constraint_results = check_primer(primer, settings)
        checked.penalty = primer_penalty(checked, settings)
        annotated.append(checked)

    passing = [p for p in annotated if p.passed]

    if annotated:
        failures: dict[str, int] = {}
        for p in annotated:
            for name in p.failed_constraints():
                failures[name] = failures.get(name, 0) + 1
        summary = ", ".join(f"{k}={v}" for k, v in failures.items()) or "none"
        logger.debug(
            f"Constraint check: {len(passing)}/{len(annotated)} primers pass "
            f"(failures: {summary})"
        )
    return annotated, passing
