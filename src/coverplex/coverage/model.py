# ================================================================================
# Coverage model
#
# Decides, for every binding event found by the binding evaluator, whether the
# primer is able to amplify the template. One coverage rule is active per
# settings snapshot; coverage-level constraints and the off-target ratio may
# veto the rule's verdict.
# ================================================================================

from __future__ import annotations

import dataclasses
import math
from abc import ABC, abstractmethod

from loguru import logger

from coverplex.config import COVERAGE_CONSTRAINTS, DesignSettings
from coverplex.constraints.checker import check_value
from coverplex.designer.primer import BindingRecord, Primer


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def terminal_mismatches(record: BindingRecord, length: int, window: int) -> int:
    """Number of mismatches among the ``window`` 3'-terminal primer positions."""
    return sum(1 for pos in record.mismatch_positions if pos > length - window)


def terminal_mismatch_distance(record: BindingRecord, length: int) -> int:
    """
    Position of the mismatch closest to the 3' end, counted from the 3' end.

    A binding without mismatches scores length + 1.
    """
    if not record.mismatch_positions:
        return length + 1
    return min(length - pos + 1 for pos in record.mismatch_positions)


# ================================================================================
# Coverage rules
# ================================================================================


class CoverageRule(ABC):
    def __init__(self, settings: DesignSettings):
        self.settings = settings

    def probability(self, record: BindingRecord, primer: Primer) -> float | None:
        """Amplification probability; deterministic rules return 0 or 1."""
        return 1.0 if self.covers(record, primer) else 0.0

    @abstractmethod
    def covers(self, record: BindingRecord, primer: Primer) -> bool:
        """
        Decide whether a binding event counts as coverage.

        """
        pass


class IdentityRule(CoverageRule):
    """Only perfect (degeneracy-aware) matches cover."""

    def covers(self, record, primer):
        return record.mismatches == 0


class MismatchThresholdRule(CoverageRule):
    """Bindings with at most ``allowed_mismatches`` mismatches cover."""

    def covers(self, record, primer):
        return record.mismatches <= self.settings.options.allowed_mismatches


class ProbabilisticRule(CoverageRule):
    """
    Logistic amplification model.

    The probability decreases with the duplex destabilisation caused by the
    mismatches (ddG = dG(binding) - dG(perfect match), kcal/mol) and with every
    mismatch close to the 3' end:

        p = sigmoid(b0 - b_ddg * ddG - b_term * n_terminal) / sigmoid(b0)

    The normalisation gives perfect matches p = 1. A mismatched binding without
    a defined free energy has no probability and is not covered.
    """

    def probability(self, record, primer):
        if record.mismatches == 0:
            return 1.0
        if record.annealing_dg is None or record.perfect_dg is None:
            return None
        params = self.settings.coverage_model
        ddg = max(record.annealing_dg - record.perfect_dg, 0.0)
        n_terminal = terminal_mismatches(record, primer.length, params.terminal_window)
        score = (
            params.intercept
            - params.ddg_coefficient * ddg
            - params.terminal_coefficient * n_terminal
        )
        return _sigmoid(score) / _sigmoid(params.intercept)

    def covers(self, record, primer):
        p = self.probability(record, primer)
        return p is not None and p > self.settings.coverage_model.confidence_threshold


coverage_rule_collection = {
    "identity": IdentityRule,
    "mismatch_threshold": MismatchThresholdRule,
    "probabilistic": ProbabilisticRule,
}


def make_rule(settings: DesignSettings) -> CoverageRule:
    return coverage_rule_collection[settings.coverage_model.rule](settings)


# ================================================================================
# Coverage-level constraints and off-target ratio
# ================================================================================


def binding_constraint_failures(
    record: BindingRecord, primer: Primer, settings: DesignSettings
) -> list[str]:
    """Names of the active coverage-level constraints the binding violates."""
    values = {
        "annealing_DeltaG": record.annealing_dg,
        "terminal_mismatch_pos": float(terminal_mismatch_distance(record, primer.length)),
    }
    return [
        name
        for name, rng in settings.active(COVERAGE_CONSTRAINTS).items()
        if not check_value(name, values[name], rng).passed
    ]


def off_target_ratio(primer: Primer) -> float:
    """
    Fraction of the templates bound by the primer that are also bound outside
    their allowed region.
    """
    bound = set(primer.bindings) | set(primer.off_target)
    if not bound:
        return 0.0
    return len(primer.off_target) / len(bound)


def annotate_coverage(
    primers: list[Primer], templates, settings: DesignSettings
) -> list[Primer]:
    """
    Apply the coverage rule of a settings snapshot.

    Args:
        primers: Evaluated primers (bindings populated); not modified.
        templates: Templates of the run; bindings to other templates are ignored.
        settings: Settings snapshot.

    Returns:
        Copies of the primers with per-binding probability and verdict, and the
        ``primer_coverage`` and ``off_target_ratio`` properties set.
    """
    rule = make_rule(settings)
    template_ids = {t.id for t in templates}
    max_other = settings.options.allowed_other_binding_ratio
    check_off_target = (
        settings.coverage_model.rule == "mismatch_threshold" and max_other is not None
    )

    annotated = []
    for primer in primers:
        ratio = off_target_ratio(primer)
        too_unspecific = check_off_target and ratio > max_other

        bindings = {}
        for tid, record in primer.bindings.items():
            if tid not in template_ids:
                continue
            p = rule.probability(record, primer)
            covered = (
                not too_unspecific
                and rule.covers(record, primer)
                and not binding_constraint_failures(record, primer, settings)
            )
            bindings[tid] = dataclasses.replace(record, probability=p, covered=covered)

        properties = dict(primer.properties)
        properties["off_target_ratio"] = round(ratio, 4)
        properties["primer_coverage"] = float(sum(b.covered for b in bindings.values()))
        annotated.append(
            dataclasses.replace(primer, bindings=bindings, properties=properties)
        )

    if check_off_target:
        n_rejected = sum(1 for p in annotated if p.properties["off_target_ratio"] > max_other)
        if n_rejected:
            logger.debug(
                f"{n_rejected} primers exceed the allowed off-target ratio {max_other}"
            )
    return annotated
