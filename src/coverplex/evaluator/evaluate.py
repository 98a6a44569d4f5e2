# ================================================================================
# Property evaluation driver
#
# Evaluates all candidates independently on a thread pool. Each task works on
# its own copy of a primer; results are merged into the output list in input
# order once the task completes.
# ================================================================================

from __future__ import annotations

import dataclasses
from concurrent.futures import ThreadPoolExecutor, as_completed

from loguru import logger

from coverplex.config import PRIMER_CONSTRAINTS, DesignSettings
from coverplex.designer.primer import Primer
from coverplex.designer.template import Template
from coverplex.designer.thal import make_thermo_analysis
from coverplex.evaluator.binding import BindingEvaluator
from coverplex.evaluator.properties import PropertyEvaluator, default_evaluators


def required_properties(settings: DesignSettings) -> set[str]:
    """Intrinsic properties needed by the active constraints."""
    required = set(settings.active(PRIMER_CONSTRAINTS))
    # The Tm window sweep needs melting temperatures even without a Tm range
    if "melting_temp_diff" in settings.constraints:
        required.add("melting_temp_range")
    return required


def needs_binding_dg(settings: DesignSettings) -> bool:
    return (
        settings.coverage_model.rule == "probabilistic"
        or "annealing_DeltaG" in settings.constraints
    )


def _evaluate_one(
    primer: Primer,
    evaluators: list[PropertyEvaluator],
    binding_evaluator: BindingEvaluator,
    settings: DesignSettings,
) -> Primer:
    """Evaluate one primer; failures of single evaluators yield undefined values."""
    evaluated = dataclasses.replace(
        primer, properties=dict(primer.properties), constraint_results={}
    )
    pcr = settings.pcr_conditions

    for evaluator in evaluators:
        try:
            evaluated.properties.update(evaluator.evaluate(primer, pcr))
        except Exception as e:
            logger.warning(
                f"{type(evaluator).__name__} failed for {primer.name} ({primer.seq}): {e}"
            )
            for name in evaluator.names:
                evaluated.properties[name] = None

    oligo_calc = make_thermo_analysis(pcr) if binding_evaluator.compute_dg else None
    bindings, off_target = binding_evaluator.evaluate(primer, oligo_calc)
    evaluated.bindings = bindings
    evaluated.off_target = off_target
    return evaluated


def evaluate_primers(
    primers: list[Primer],
    templates: list[Template],
    settings: DesignSettings,
    evaluators: list[PropertyEvaluator] | None = None,
) -> list[Primer]:
    """
    Evaluate the intrinsic properties and binding events of every primer.

    Args:
        primers: Candidate primers; not modified.
        templates: Templates to scan for binding events.
        settings: Settings snapshot; selects the evaluators and PCR conditions.
        evaluators: Override the property evaluators (e.g. in tests).

    Returns:
        Evaluated copies of the primers, in input order.
    """
    if evaluators is None:
        evaluators = default_evaluators(required_properties(settings))
    binding_evaluator = BindingEvaluator(
        templates, settings, compute_dg=needs_binding_dg(settings)
    )

    workers = settings.options.workers
    logger.info(
        f"Evaluating {len(primers)} primers against {len(templates)} templates "
        f"(workers={workers})..."
    )

    if workers == 1 or len(primers) < 2:
        return [
            _evaluate_one(p, evaluators, binding_evaluator, settings) for p in primers
        ]

    results: list[Primer | None] = [None] * len(primers)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(_evaluate_one, p, evaluators, binding_evaluator, settings): ix
            for ix, p in enumerate(primers)
        }
        for n_done, future in enumerate(as_completed(futures), start=1):
            results[futures[future]] = future.result()
            if n_done % max(1, len(primers) // 10) == 0:
                logger.debug(f"Evaluation: {n_done}/{len(primers)} primers complete")

    logger.info("Evaluation complete.")
    return results
