# ================================================================================
# Tests for property and binding evaluation
# ================================================================================

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from coverplex.config import PCRConditions
from coverplex.designer.degenerate import reverse_complement
from coverplex.designer.primer import Primer
from coverplex.designer.template import Template
from coverplex.designer.thal import make_thermo_analysis
from coverplex.evaluator.binding import BindingEvaluator, region_mask
from coverplex.evaluator.evaluate import evaluate_primers, needs_binding_dg, required_properties
from coverplex.evaluator.properties import (
    CompositionEvaluator,
    MeltingTemperatureEvaluator,
    PropertyEvaluator,
    default_evaluators,
    evaluator_collection,
)

from conftest import SHARED_SITE, make_settings

FLANKED = "TTTTT" + SHARED_SITE + "TTTTT"


def _mutate(seq: str, pos: int) -> str:
    """Replace the base at 1-based position pos by a different base."""
    base = seq[pos - 1]
    new = "A" if base != "A" else "C"
    return seq[: pos - 1] + new + seq[pos:]


class TestPropertyEvaluators:
    def test_composition(self):
        primer = Primer(name="p", seq="ACGTACGTAAAAGCGC", direction="fw")
        values = CompositionEvaluator().evaluate(primer, PCRConditions())
        assert values["primer_length"] == 16
        assert values["gc_ratio"] == pytest.approx(0.5)
        assert values["gc_clamp"] == 4
        assert values["no_runs"] == 4
        assert set(values) == set(CompositionEvaluator.names)

    def test_composition_worst_case_over_expansions(self):
        # R expands to A (run of 5) or G (run of 4 A)
        primer = Primer(name="p", seq="CAAAARCG", direction="fw")
        values = CompositionEvaluator().evaluate(primer, PCRConditions())
        assert values["no_runs"] == 5

    def test_melting_temperature(self):
        primer = Primer(name="p", seq="CAGTGGCTCTATTGAATTTCTGTG", direction="fw")
        values = MeltingTemperatureEvaluator().evaluate(primer, PCRConditions())
        assert 50.0 < values["melting_temp_range"] < 70.0

    def test_registry(self):
        assert all(issubclass(cls, PropertyEvaluator) for cls in evaluator_collection.values())

    def test_default_evaluators_filtered_by_requirement(self):
        evaluators = default_evaluators({"gc_ratio"})
        assert [type(e) for e in evaluators] == [CompositionEvaluator]
        assert len(default_evaluators()) == len(evaluator_collection)


class TestRegionMask:
    def test_within_and_any(self):
        starts = np.arange(5)
        # footprints of length 4: [1,4], [2,5], [3,6], [4,7], [5,8]
        within = region_mask(starts, 4, (2, 6), "within")
        overlap = region_mask(starts, 4, (7, 10), "any")
        assert within.tolist() == [False, True, True, False, False]
        assert overlap.tolist() == [False, False, False, True, True]


class TestBindingEvaluator:
    @pytest.fixture
    def template(self):
        return Template(id="T1", sequence=FLANKED)

    def test_forward_perfect_match(self, template):
        evaluator = BindingEvaluator([template], make_settings())
        bindings, off_target = evaluator.evaluate(Primer("p", SHARED_SITE, "fw"))
        record = bindings["T1"]
        assert (record.start, record.end, record.strand) == (6, 25, "+")
        assert record.mismatches == 0
        assert record.mismatch_positions == ()
        assert off_target == []

    def test_reverse_perfect_match(self, template):
        evaluator = BindingEvaluator([template], make_settings())
        bindings, _ = evaluator.evaluate(Primer("p", reverse_complement(SHARED_SITE), "rev"))
        record = bindings["T1"]
        assert (record.start, record.end, record.strand) == (6, 25, "-")
        assert record.mismatches == 0

    def test_forward_mismatch_positions(self, template):
        evaluator = BindingEvaluator([template], make_settings(allowed_mismatches=2))
        primer = Primer("p", _mutate(_mutate(SHARED_SITE, 3), 20), "fw")
        record = evaluator.evaluate(primer)[0]["T1"]
        assert record.mismatches == 2
        assert record.mismatch_positions == (3, 20)

    def test_reverse_mismatch_positions_count_from_primer_5_prime(self, template):
        evaluator = BindingEvaluator([template], make_settings(allowed_mismatches=2))
        primer = Primer("p", _mutate(reverse_complement(SHARED_SITE), 20), "rev")
        record = evaluator.evaluate(primer)[0]["T1"]
        assert record.mismatches == 1
        assert record.mismatch_positions == (20,)

    def test_too_many_mismatches(self, template):
        evaluator = BindingEvaluator([template], make_settings(allowed_mismatches=0))
        bindings, _ = evaluator.evaluate(Primer("p", _mutate(SHARED_SITE, 10), "fw"))
        assert bindings == {}

    def test_degenerate_primer_matches(self, template):
        evaluator = BindingEvaluator([template], make_settings(allowed_mismatches=0))
        degenerate = "R" + SHARED_SITE[1:]
        assert evaluator.evaluate(Primer("p", degenerate, "fw"))[0]["T1"].mismatches == 0

    def test_binding_outside_region(self):
        template = Template(id="T1", sequence=FLANKED, allowed_fw_end=15)
        strict = BindingEvaluator([template], make_settings())
        bindings, off_target = strict.evaluate(Primer("p", SHARED_SITE, "fw"))
        assert bindings == {}
        assert off_target == ["T1"]

        overlap = BindingEvaluator([template], make_settings(allowed_region_definition="any"))
        bindings, off_target = overlap.evaluate(Primer("p", SHARED_SITE, "fw"))
        assert bindings["T1"].start == 6
        assert off_target == []

    def test_template_shorter_than_primer(self):
        evaluator = BindingEvaluator([Template(id="T1", sequence="ACGT")], make_settings())
        assert evaluator.evaluate(Primer("p", SHARED_SITE, "fw")) == ({}, [])

    def test_annealing_dg(self, template):
        settings = make_settings(rule="probabilistic")
        evaluator = BindingEvaluator([template], settings, compute_dg=True)
        oligo_calc = make_thermo_analysis(settings.pcr_conditions)
        perfect = evaluator.evaluate(Primer("p", SHARED_SITE, "fw"), oligo_calc)[0]["T1"]
        assert perfect.annealing_dg < 0
        assert perfect.annealing_dg == pytest.approx(perfect.perfect_dg)

        mismatched = evaluator.evaluate(Primer("p", _mutate(SHARED_SITE, 10), "fw"), oligo_calc)[0]["T1"]
        assert mismatched.annealing_dg > mismatched.perfect_dg


class TestEvaluatePrimers:
    def test_required_properties(self):
        settings = make_settings(constraints={"gc_ratio": {"min": 0.4}, "melting_temp_diff": {"max": 5}})
        assert required_properties(settings) == {"primer_length", "gc_ratio", "melting_temp_range"}

    def test_needs_binding_dg(self):
        assert not needs_binding_dg(make_settings())
        assert needs_binding_dg(make_settings(rule="probabilistic"))
        assert needs_binding_dg(make_settings(constraints={"annealing_DeltaG": {"max": -5}}))

    def test_evaluates_properties_and_bindings(self, shared_site_templates):
        primers = [Primer("p1", SHARED_SITE, "fw"), Primer("p2", "GGGGGGGGGGGGGGGGGGGG", "fw")]
        evaluated = evaluate_primers(primers, shared_site_templates, make_settings(workers=2))
        assert [p.name for p in evaluated] == ["p1", "p2"]
        assert evaluated[0].properties["primer_length"] == 20
        assert set(evaluated[0].bindings) == {"T1", "T2"}
        assert evaluated[1].bindings == {}
        # Inputs are not modified
        assert primers[0].properties == {}
        assert primers[0].bindings == {}

    def test_uses_injected_evaluators(self, shared_site_templates):
        mock_evaluator = MagicMock()
        mock_evaluator.names = ("gc_ratio",)
        mock_evaluator.evaluate.return_value = {"gc_ratio": 0.42}
        evaluated = evaluate_primers(
            [Primer("p1", SHARED_SITE, "fw")],
            shared_site_templates,
            make_settings(),
            evaluators=[mock_evaluator],
        )
        assert evaluated[0].properties == {"gc_ratio": 0.42}
        mock_evaluator.evaluate.assert_called_once()

    def test_failing_evaluator_yields_undefined(self, shared_site_templates):
        failing = MagicMock()
        failing.names = ("secondary_structure",)
        failing.evaluate.side_effect = RuntimeError("back end unavailable")
        evaluated = evaluate_primers(
            [Primer("p1", SHARED_SITE, "fw"), Primer("p2", SHARED_SITE[:-1] + "G", "fw")],
            shared_site_templates,
            make_settings(workers=2),
            evaluators=[CompositionEvaluator(), failing],
        )
        for primer in evaluated:
            assert primer.properties["secondary_structure"] is None
            assert primer.properties["primer_length"] == 20

    def test_thermo_analysis_only_when_needed(self, shared_site_templates):
        with patch("coverplex.evaluator.evaluate.make_thermo_analysis") as mock_thermo:
            evaluate_primers([Primer("p1", SHARED_SITE, "fw")], shared_site_templates, make_settings())
            mock_thermo.assert_not_called()
