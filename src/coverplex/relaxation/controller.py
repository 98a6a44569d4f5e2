# ================================================================================
# Constraint relaxation controller
#
# Repeats filtering passes on progressively looser settings snapshots until
# the surviving candidates reach the required coverage ratio, every relaxable
# constraint sits at its boundary, or the iteration cap is hit.
#
# Every function here takes a settings snapshot and returns a new one (or a
# record derived from it). Nothing is mutated between iterations, so a single
# iteration can be replayed from its recorded constraints.
# ================================================================================

from __future__ import annotations

import math
from dataclasses import dataclass, field

from loguru import logger

from coverplex.config import ConstraintRange, DesignSettings
from coverplex.constraints.checker import filter_primers
from coverplex.coverage.model import annotate_coverage
from coverplex.coverage.stats import coverage_ratio
from coverplex.designer.primer import Primer
from coverplex.designer.template import Template

# Bounds closer than this to their boundary are snapped onto it
_SNAP = 1e-9


@dataclass
class FilterPass:
    """
    One filtering pass under a single settings snapshot.

        settings: Snapshot the pass was run with
        primers: All primers, annotated with coverage and constraint verdicts
        passing: Primers passing every active primer-level constraint
        ratio: Coverage ratio achieved by the passing primers
    """

    settings: DesignSettings
    primers: list[Primer]
    passing: list[Primer]
    ratio: float


@dataclass
class RelaxationStep:
    iteration: int
    constraints: dict[str, str]
    ratio: float
    n_passing: int

    def to_record(self) -> dict:
        record = {
            "Iteration": self.iteration,
            "Coverage_Ratio": self.ratio,
            "N_Passing": self.n_passing,
        }
        record.update(self.constraints)
        return record


@dataclass
class RelaxationResult:
    """
    Outcome of the relaxation loop.

        final: Filtering pass under the final settings snapshot
        steps: One record per iteration, in order
        relaxation: Per constraint, how far each side was loosened
        required_ratio: Requested coverage ratio
        target_met: Whether the final pass reached the requested ratio
    """

    final: FilterPass
    steps: list[RelaxationStep] = field(default_factory=list)
    relaxation: dict[str, dict[str, float]] = field(default_factory=dict)
    required_ratio: float = 1.0
    target_met: bool = False

    @property
    def final_settings(self) -> DesignSettings:
        return self.final.settings

    @property
    def best_ratio(self) -> float:
        return max((s.ratio for s in self.steps), default=0.0)


def _relax_side(
    current: float | None, nominal: float | None, limit: float | None, steps: int, sign: int
) -> float | None:
    """
    Move one bound a step towards its boundary.

    ``sign`` is -1 for a lower bound (moves down) and +1 for an upper bound.
    """
    if current is None:
        return None
    if limit is None:
        return None
    step = abs(limit - nominal) / steps
    moved = round(current + sign * step, 10)
    if sign < 0:
        moved = max(moved, limit)
    else:
        moved = min(moved, limit)
    if abs(moved - limit) < _SNAP:
        moved = limit
    return moved


def relax_settings(settings: DesignSettings, nominal: DesignSettings | None = None) -> DesignSettings:
    """
    Loosen every relaxable constraint by one step.

    Args:
        settings: Current snapshot.
        nominal: Snapshot holding the nominal ranges that define the step
            size, (boundary - nominal) / relaxation_steps. Defaults to
            ``settings``.

    Returns:
        A new snapshot. Constraints without a boundary are unchanged; a side
        whose boundary is unbounded is dropped in one step.
    """
    nominal = nominal or settings
    n_steps = settings.options.relaxation_steps
    relaxed = dict(settings.constraints)

    for name, limit in settings.constraint_limits.items():
        current = settings.constraints[name]
        base = nominal.constraints.get(name, current)
        relaxed[name] = ConstraintRange(
            min=_relax_side(current.min, base.min, limit.min, n_steps, sign=-1),
            max=_relax_side(current.max, base.max, limit.max, n_steps, sign=+1),
        )
    return settings.with_constraints(relaxed)


def is_fully_relaxed(settings: DesignSettings) -> bool:
    """True if every constraint with a boundary has reached it."""
    return all(
        settings.constraints[name] == limit
        for name, limit in settings.constraint_limits.items()
    )


def relaxation_amounts(
    nominal: DesignSettings, final: DesignSettings
) -> dict[str, dict[str, float]]:
    """How far each relaxable constraint moved; inf for a dropped side."""
    amounts = {}
    for name in final.constraint_limits:
        start = nominal.constraints[name]
        end = final.constraints[name]
        sides = {}
        for side in ("min", "max"):
            a, b = getattr(start, side), getattr(end, side)
            if a is None:
                sides[side] = 0.0
            elif b is None:
                sides[side] = math.inf
            else:
                sides[side] = round(abs(a - b), 6)
        amounts[name] = sides
    return amounts


def filter_pass(
    primers: list[Primer], templates: list[Template], settings: DesignSettings
) -> FilterPass:
    """Apply coverage rule and constraints of one snapshot and measure coverage."""
    covered = annotate_coverage(primers, templates, settings)
    annotated, passing = filter_primers(covered, settings)
    return FilterPass(
        settings=settings,
        primers=annotated,
        passing=passing,
        ratio=coverage_ratio(passing, templates),
    )


def relax_until_coverage(
    primers: list[Primer],
    templates: list[Template],
    settings: DesignSettings,
    required_ratio: float = 1.0,
) -> RelaxationResult:
    """
    Relax constraints until the passing primers reach the required coverage.

    Args:
        primers: Evaluated primers.
        templates: Templates of the run.
        settings: Nominal settings snapshot.
        required_ratio: Target coverage ratio in [0, 1]. 0 runs a single pass
            at nominal strictness.

    Returns:
        RelaxationResult with the per-iteration sweep and the final pass.
    """
    if not 0.0 <= required_ratio <= 1.0:
        raise ValueError(f"Required coverage ratio must be in [0, 1], got {required_ratio}")

    steps: list[RelaxationStep] = []
    current = settings
    max_iterations = settings.options.max_relaxation_iterations

    for iteration in range(1, max_iterations + 1):
        result = filter_pass(primers, templates, current)
        steps.append(
            RelaxationStep(
                iteration=iteration,
                constraints={name: str(rng) for name, rng in current.constraints.items()},
                ratio=result.ratio,
                n_passing=len(result.passing),
            )
        )
        logger.debug(
            f"Relaxation iteration {iteration}: {len(result.passing)} primers pass, "
            f"coverage {result.ratio:.3f}"
        )

        if required_ratio == 0.0 or result.ratio >= required_ratio:
            break
        if is_fully_relaxed(current):
            logger.debug("All relaxable constraints have reached their boundaries.")
            break
        if iteration == max_iterations:
            logger.debug(f"Relaxation iteration cap ({max_iterations}) reached.")
            break
        current = relax_settings(current, settings)

    target_met = result.ratio >= required_ratio
    relaxation = relaxation_amounts(settings, current)

    if target_met:
        logger.info(
            f"Coverage {result.ratio:.3f} reached after {len(steps)} filtering pass(es) "
            f"({len(result.passing)} primers pass)."
        )
    else:
        logger.warning(
            f"Required coverage {required_ratio:.3f} not reached; best achieved "
            f"ratio is {result.ratio:.3f} after {len(steps)} filtering pass(es)."
        )

    return RelaxationResult(
        final=result,
        steps=steps,
        relaxation=relaxation,
        required_ratio=required_ratio,
        target_met=target_met,
    )
