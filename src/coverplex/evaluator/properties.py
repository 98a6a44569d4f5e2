# ================================================================================
# Intrinsic primer property evaluators
#
# Each evaluator computes one family of properties for a single primer. The
# pipeline only relies on the PropertyEvaluator interface, so evaluators can be
# swapped (e.g. for mocks in tests or other thermodynamic back ends).
# ================================================================================

from __future__ import annotations

from abc import ABC, abstractmethod

from coverplex.config import PCRConditions
from coverplex.designer.degenerate import expand
from coverplex.designer.primer import Primer
from coverplex.designer.thal import (
    MAX_EXPANSIONS,
    degenerate_melting_temperature,
    hairpin_dg,
    homodimer_dg,
    make_thermo_analysis,
)
from coverplex.utils.utils import (
    gc_clamp_count,
    gc_ratio,
    longest_dinucleotide_repeat,
    longest_run,
)


class PropertyEvaluator(ABC):
    """
    Compute a family of properties for one primer.

    Implementations must be side-effect free and safe to call from several
    threads at once.
    """

    names: tuple[str, ...] = ()

    @abstractmethod
    def evaluate(self, primer: Primer, pcr: PCRConditions) -> dict[str, float | None]:
        """
        Evaluate the properties of a primer.

        Returns a mapping with one entry per name in ``names``; a value of
        None means the property could not be computed.
        """
        pass


class CompositionEvaluator(PropertyEvaluator):
    """Sequence composition: length, GC ratio, GC clamp, runs and repeats."""

    names = ("primer_length", "gc_ratio", "gc_clamp", "no_runs", "no_repeats")

    def evaluate(self, primer, pcr):
        expansions = expand(primer.seq, MAX_EXPANSIONS)
        return {
            "primer_length": float(primer.length),
            "gc_ratio": round(gc_ratio(primer.seq), 4),
            "gc_clamp": float(min(gc_clamp_count(s) for s in expansions)),
            "no_runs": float(max(longest_run(s) for s in expansions)),
            "no_repeats": float(max(longest_dinucleotide_repeat(s) for s in expansions)),
        }


class MeltingTemperatureEvaluator(PropertyEvaluator):
    """Nearest-neighbour melting temperature under the PCR conditions."""

    names = ("melting_temp_range",)

    def evaluate(self, primer, pcr):
        return {"melting_temp_range": round(degenerate_melting_temperature(primer.seq, pcr), 2)}


class SecondaryStructureEvaluator(PropertyEvaluator):
    """Hairpin free energy (kcal/mol) at the annealing temperature."""

    names = ("secondary_structure",)

    def evaluate(self, primer, pcr):
        oligo_calc = make_thermo_analysis(pcr)
        return {"secondary_structure": round(hairpin_dg(primer.seq, oligo_calc), 3)}


class SelfDimerEvaluator(PropertyEvaluator):
    """Self-dimer free energy (kcal/mol) at the annealing temperature."""

    names = ("self_dimerization",)

    def evaluate(self, primer, pcr):
        oligo_calc = make_thermo_analysis(pcr)
        return {"self_dimerization": round(homodimer_dg(primer.seq, oligo_calc), 3)}


evaluator_collection = {
    "composition": CompositionEvaluator,
    "melting_temperature": MeltingTemperatureEvaluator,
    "secondary_structure": SecondaryStructureEvaluator,
    "self_dimerization": SelfDimerEvaluator,
}


def default_evaluators(required: set[str] | None = None) -> list[PropertyEvaluator]:
    """
    Instantiate the registered evaluators.

    Args:
        required: Only return evaluators producing at least one of these
            property names. None returns all evaluators.
    """
    evaluators = [cls() for cls in evaluator_collection.values()]
    if required is None:
        return evaluators
    return [e for e in evaluators if required.intersection(e.names)]
