# ================================================================================
# Primer set design pipeline
#
# This module exposes the three operations of the engine:
#   design_primers     - initialize, evaluate, relax, optimize per direction
#   check_constraints  - evaluate and annotate existing primers
#   subset_primer_set  - best primer subset per set size
#
# Every operation takes validated Templates and a DesignSettings snapshot and
# returns in-memory records. Reading and writing files is left to the CLI.
# ================================================================================

from __future__ import annotations

from dataclasses import dataclass, field

import pandas as pd
from loguru import logger

from coverplex.config import DesignSettings
from coverplex.constraints.set_constraints import (
    DimerConflicts,
    TmWindow,
    in_window,
    tm_windows,
)
from coverplex.coverage.stats import (
    annotate_templates,
    build_coverage_matrix,
    coverage_by_group,
    coverage_ratio,
)
from coverplex.designer.degenerate import SequenceError, validate_sequence
from coverplex.designer.initializer import DIRECTIONS, initialize_primers
from coverplex.designer.primer import Primer
from coverplex.designer.template import Template
from coverplex.errors import InputIssue
from coverplex.evaluator.evaluate import evaluate_primers
from coverplex.relaxation.controller import (
    RelaxationResult,
    filter_pass,
    relax_until_coverage,
)
from coverplex.selector.selectors import select_primers, subset_by_size
from coverplex.selector.solution import CoverSolution, SubsetEntry

DIRECTION_MODES = ("fw", "rev", "both")


@dataclass
class SweepEntry:
    """Optimisation result for one melting temperature window."""

    window: TmWindow | None
    n_candidates: int
    solution: CoverSolution

    def to_record(self) -> dict:
        return {
            "Tm_Window": str(self.window) if self.window is not None else "all",
            "N_Candidates": self.n_candidates,
            "N_Selected": self.solution.size,
            "Coverage_Ratio": self.solution.ratio,
            "Primers": ",".join(self.solution.primer_names),
            "Fallback": self.solution.fallback,
        }


@dataclass
class DirectionResult:
    """Design result for a single primer direction."""

    direction: str
    required_ratio: float = 1.0
    selected: list[Primer] = field(default_factory=list)
    unselected: list[Primer] = field(default_factory=list)
    relaxation: RelaxationResult | None = None
    sweep: list[SweepEntry] = field(default_factory=list)
    solution: CoverSolution | None = None
    steps_completed: list[str] = field(default_factory=list)

    @property
    def final_constraints(self) -> dict:
        if self.relaxation is None:
            return {}
        return dict(self.relaxation.final_settings.constraints)

    @property
    def coverage_ratio(self) -> float:
        return self.solution.ratio if self.solution is not None else 0.0

    @property
    def target_met(self) -> bool:
        return self.solution is not None and self.coverage_ratio >= self.required_ratio

    @property
    def fallback(self) -> bool:
        return self.solution is not None and self.solution.fallback


@dataclass
class DesignResult:
    """Immutable snapshot of a design run."""

    settings: DesignSettings
    required_ratio: float
    templates: list[Template] = field(default_factory=list)
    directions: dict[str, DirectionResult] = field(default_factory=dict)
    issues: list[InputIssue] = field(default_factory=list)

    @property
    def selected(self) -> list[Primer]:
        return [p for r in self.directions.values() for p in r.selected]

    @property
    def unselected(self) -> list[Primer]:
        return [p for r in self.directions.values() for p in r.unselected]

    @property
    def target_met(self) -> bool:
        return bool(self.directions) and all(r.target_met for r in self.directions.values())

    def summary_dict(self) -> dict:
        """Return a JSON-serializable summary of the run."""
        return {
            "required_ratio": self.required_ratio,
            "num_templates": len(self.templates),
            "target_met": self.target_met,
            "issues": [str(i) for i in self.issues],
            "per_direction": {
                d: {
                    "selected": [p.name for p in r.selected],
                    "coverage_ratio": r.coverage_ratio,
                    "target_met": r.target_met,
                    "fallback": r.fallback,
                    "relaxation_iterations": len(r.relaxation.steps) if r.relaxation else 0,
                    "final_constraints": {k: str(v) for k, v in r.final_constraints.items()},
                    "steps_completed": r.steps_completed,
                }
                for d, r in self.directions.items()
            },
        }

    def to_frames(self) -> dict[str, pd.DataFrame]:
        """Tabular exports: primers, templates, groups, relaxation and sweep."""
        primer_rows = []
        relax_rows = []
        sweep_rows = []
        for direction, result in self.directions.items():
            for selected, primers in ((True, result.selected), (False, result.unselected)):
                for p in primers:
                    row = p.to_record()
                    row["Selected"] = selected
                    primer_rows.append(row)
            if result.relaxation is not None:
                for step in result.relaxation.steps:
                    relax_rows.append({"Direction": direction, **step.to_record()})
            for entry in result.sweep:
                sweep_rows.append({"Direction": direction, **entry.to_record()})

        template_rows = [
            {
                "ID": t.id,
                "Group": t.group,
                "Length": len(t),
                "Covered": bool(t.covered_by),
                "Covered_By": ",".join(t.covered_by),
                "Mismatches": ",".join(str(m) for m in t.covered_by.values()),
            }
            for t in self.templates
        ]
        return {
            "primers": pd.DataFrame(primer_rows),
            "templates": pd.DataFrame(template_rows),
            "groups": coverage_by_group(self.selected, self.templates),
            "relaxation": pd.DataFrame(relax_rows),
            "sweep": pd.DataFrame(sweep_rows),
        }


# ================================================================================
# Input validation
# ================================================================================


def validate_templates(templates: list[Template]) -> tuple[list[Template], list[InputIssue]]:
    """Split templates into usable ones and per-template issues."""
    valid = []
    issues = []
    seen = set()
    for template in templates:
        problems = template.validate()
        if template.id in seen:
            problems.append("duplicate template identifier")
        if problems:
            for problem in problems:
                logger.warning(f"Template {template.id}: {problem}")
                issues.append(InputIssue(template.id, problem))
            continue
        seen.add(template.id)
        valid.append(template)

    if not valid:
        logger.warning("No usable templates in the input.")
        issues.append(InputIssue("templates", "no usable templates"))
    return valid, issues


def validate_primers(primers: list[Primer]) -> tuple[list[Primer], list[InputIssue]]:
    """Split primers into usable ones and per-primer issues."""
    valid = []
    issues = []
    for primer in primers:
        try:
            validate_sequence(primer.seq)
        except SequenceError as e:
            problem = str(e)
        else:
            problem = None
            if not primer.seq:
                problem = "empty sequence"
            elif primer.direction not in DIRECTIONS:
                problem = f"unknown direction '{primer.direction}'"
        if problem:
            logger.warning(f"Primer {primer.name}: {problem}")
            issues.append(InputIssue(primer.name, problem))
            continue
        valid.append(primer)
    return valid, issues


# ================================================================================
# Optimisation
# ================================================================================


def _log_dimer_checks(dimers: DimerConflicts, n_candidates: int) -> None:
    if dimers.active:
        logger.info(
            f"Cross-dimer check: {dimers.n_evaluated} pairs evaluated "
            f"among {n_candidates} candidates."
        )


def _optimise(
    passing: list[Primer],
    templates: list[Template],
    settings: DesignSettings,
    target_ratio: float,
    opti_strategy: str,
) -> tuple[CoverSolution, list[SweepEntry]]:
    """Select primers, once per Tm window if melting_temp_diff is active."""
    # Primers covering nothing never improve a cover
    useful = [p for p in passing if p.covered_templates]
    dimers = DimerConflicts(settings)

    def solve(pool: list[Primer]) -> CoverSolution:
        matrix = build_coverage_matrix(pool, templates, conflict_check=dimers.checker(pool))
        return select_primers(
            matrix,
            required_ratio=target_ratio,
            strategy=opti_strategy,
            time_limit=settings.options.ilp_time_limit,
        )

    windows = tm_windows(useful, settings)
    if not windows:
        solution = solve(useful)
        _log_dimer_checks(dimers, len(useful))
        return solution, [SweepEntry(None, len(useful), solution)]

    sweep = []
    for window in windows:
        pool = in_window(useful, window)
        logger.debug(f"Tm window {window}: {len(pool)} candidates")
        sweep.append(SweepEntry(window, len(pool), solve(pool)))

    best = min(
        sweep,
        key=lambda e: (-e.solution.ratio, e.solution.size, e.window.low),
    )
    _log_dimer_checks(dimers, len(useful))
    logger.info(
        f"Tm sweep over {len(sweep)} windows: best window {best.window} "
        f"covers {best.solution.ratio:.3f} with {best.solution.size} primers."
    )
    return best.solution, sweep


def _design_direction(
    templates: list[Template],
    settings: DesignSettings,
    direction: str,
    required_ratio: float,
    init_strategy: str,
    opti_strategy: str,
    issues: list[InputIssue],
) -> DirectionResult:
    result = DirectionResult(direction=direction, required_ratio=required_ratio)

    candidates, init_issues = initialize_primers(templates, settings, direction, init_strategy)
    issues.extend(init_issues)
    result.steps_completed.append("initialized")

    evaluated = evaluate_primers(candidates, templates, settings)
    result.steps_completed.append("evaluated")

    result.relaxation = relax_until_coverage(evaluated, templates, settings, required_ratio)
    result.steps_completed.append("filtered")
    final = result.relaxation.final

    target_ratio = required_ratio if required_ratio > 0 else 1.0
    result.solution, result.sweep = _optimise(
        final.passing, templates, final.settings, target_ratio, opti_strategy
    )
    result.steps_completed.append("optimized")

    chosen = set(result.solution.primer_names)
    by_name = {p.name: p for p in final.passing}
    result.selected = [by_name[name] for name in result.solution.primer_names]
    result.unselected = [p for p in final.passing if p.name not in chosen]

    logger.info(
        f"{direction}: selected {len(result.selected)} primers covering "
        f"{result.coverage_ratio:.3f} of {len(templates)} templates "
        f"({len(result.unselected)} filtered candidates unselected)."
    )
    return result


def design_primers(
    templates: list[Template],
    settings: DesignSettings,
    direction: str = "both",
    required_ratio: float = 1.0,
    init_strategy: str = "naive",
    opti_strategy: str = "greedy",
) -> DesignResult:
    """
    Design a minimal primer set covering the templates.

    Args:
        templates: Templates with their allowed binding regions.
        settings: Validated settings snapshot.
        direction: "fw", "rev" or "both"; every direction is optimised on its own.
        required_ratio: Target coverage ratio in [0, 1]. With 0, constraints
            are applied once at nominal strictness and the optimizer covers
            what it can.
        init_strategy: "naive" or "tree".
        opti_strategy: "greedy" or "ILP".

    Returns:
        DesignResult with selected and filtered-but-unselected primers, the
        relaxation sweep, the Tm-window sweep and the final constraints for
        every direction, plus the per-entity input issues.
    """
    if direction not in DIRECTION_MODES:
        raise ValueError(f"Unknown direction '{direction}'. Use one of {DIRECTION_MODES}.")
    if not 0.0 <= required_ratio <= 1.0:
        raise ValueError(f"Required coverage ratio must be in [0, 1], got {required_ratio}")

    valid, issues = validate_templates(templates)
    design = DesignResult(settings=settings, required_ratio=required_ratio, issues=issues)
    if not valid:
        design.templates = list(templates)
        return design

    logger.info(
        f"Designing {direction} primers for {len(valid)} templates "
        f"(init={init_strategy}, optimizer={opti_strategy}, ratio={required_ratio})"
    )
    directions = DIRECTIONS if direction == "both" else (direction,)
    for d in directions:
        design.directions[d] = _design_direction(
            valid, settings, d, required_ratio, init_strategy, opti_strategy, design.issues
        )

    design.templates = annotate_templates(valid, design.selected)
    return design


def check_constraints(
    primers: list[Primer], templates: list[Template], settings: DesignSettings
) -> tuple[list[Primer], list[InputIssue]]:
    """
    Evaluate existing primers and annotate them with coverage and constraint verdicts.

    Returns:
        The annotated copies of the valid primers, and the issues of the
        invalid primers and templates, which are skipped.
    """
    valid_templates, issues = validate_templates(templates)
    valid_primers, primer_issues = validate_primers(primers)
    issues.extend(primer_issues)
    evaluated = evaluate_primers(valid_primers, valid_templates, settings)
    checked = filter_pass(evaluated, valid_templates, settings)
    logger.info(
        f"{len(checked.passing)}/{len(checked.primers)} primers pass all constraints; "
        f"coverage of passing primers {coverage_ratio(checked.passing, valid_templates):.3f}."
    )
    return checked.primers, issues


def subset_primer_set(
    primers: list[Primer],
    templates: list[Template],
    settings: DesignSettings,
    max_size: int | None = None,
) -> tuple[list[SubsetEntry], list[InputIssue]]:
    """
    Best subset of every size from annotated primers.

    Cross-dimer conflicts are only evaluated for pairs the optimizer selects.

    Args:
        primers: Primers annotated by check_constraints or design_primers.
        templates: Templates the coverage refers to.
        settings: Settings snapshot (cross-dimer conflicts, ILP time limit).
        max_size: Largest subset size; defaults to the number of primers.

    Returns:
        The subsets, and the issues of the templates that were skipped.
    """
    valid_templates, issues = validate_templates(templates)
    dimers = DimerConflicts(settings)
    matrix = build_coverage_matrix(
        primers, valid_templates, conflict_check=dimers.checker(primers)
    )
    entries = subset_by_size(
        matrix, max_size=max_size, time_limit=settings.options.ilp_time_limit
    )
    _log_dimer_checks(dimers, len(primers))
    return entries, issues
