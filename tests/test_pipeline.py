# ================================================================================
# Tests for the design, check and subset operations
# ================================================================================

import json
from unittest.mock import patch

import pytest

from coverplex.designer.degenerate import reverse_complement
from coverplex.designer.primer import BindingRecord, Primer
from coverplex.designer.template import Template
from coverplex.pipeline import (
    _optimise,
    check_constraints,
    design_primers,
    subset_primer_set,
    validate_primers,
    validate_templates,
)

from conftest import SHARED_SITE, make_settings


@pytest.fixture
def relaxing_settings():
    return make_settings(
        constraints={"gc_ratio": {"min": 0.4, "max": 0.6}},
        limits={"gc_ratio": {"min": 0.3, "max": 0.7}},
        rule="mismatch_threshold",
        allowed_mismatches=0,
    )


class TestValidation:
    def test_invalid_and_duplicate_templates(self):
        templates = [
            Template(id="T1", sequence="ACGT" * 10),
            Template(id="T1", sequence="ACGT" * 10),
            Template(id="bad", sequence="ACGTXACGT"),
            Template(id="region", sequence="ACGT" * 5, allowed_fw_end=30),
        ]
        valid, issues = validate_templates(templates)
        assert [t.id for t in valid] == ["T1"]
        assert {i.entity for i in issues} == {"T1", "bad", "region"}
        assert any("duplicate" in i.message for i in issues)

    def test_no_usable_templates(self):
        valid, issues = validate_templates([Template(id="bad", sequence="")])
        assert valid == []
        assert issues[-1].entity == "templates"

    def test_invalid_primers(self):
        primers = [
            Primer("ok", SHARED_SITE, "fw"),
            Primer("symbols", "ACGTZ", "fw"),
            Primer("empty", "", "fw"),
            Primer("direction", SHARED_SITE, "both"),
        ]
        valid, issues = validate_primers(primers)
        assert [p.name for p in valid] == ["ok"]
        assert [i.entity for i in issues] == ["symbols", "empty", "direction"]


class TestDesignPrimers:
    def test_shared_site_single_primer(self, shared_site_templates, identity_settings):
        result = design_primers(
            shared_site_templates, identity_settings, direction="fw", required_ratio=1.0
        )
        fw = result.directions["fw"]
        assert [p.seq for p in fw.selected] == [SHARED_SITE]
        assert fw.coverage_ratio == 1.0
        assert fw.target_met
        assert result.target_met
        assert fw.steps_completed == ["initialized", "evaluated", "filtered", "optimized"]
        assert len(fw.relaxation.steps) == 1
        assert all(t.covered_by for t in result.templates)

    def test_unselected_primers_are_reported(self, shared_site_templates, identity_settings):
        result = design_primers(shared_site_templates, identity_settings, direction="fw")
        fw = result.directions["fw"]
        selected = {p.name for p in fw.selected}
        assert fw.unselected
        assert not selected & {p.name for p in fw.unselected}

    def test_both_directions(self, shared_site_templates, identity_settings):
        result = design_primers(shared_site_templates, identity_settings, direction="both")
        assert set(result.directions) == {"fw", "rev"}
        assert [p.seq for p in result.directions["rev"].selected] == [
            reverse_complement(SHARED_SITE)
        ]
        assert result.target_met
        assert len(result.selected) == 2

    def test_ilp_strategy(self, shared_site_templates, identity_settings):
        result = design_primers(
            shared_site_templates, identity_settings, direction="fw", opti_strategy="ILP"
        )
        fw = result.directions["fw"]
        assert fw.solution.strategy == "ILP"
        assert [p.seq for p in fw.selected] == [SHARED_SITE]

    def test_unreachable_ratio_after_full_relaxation(self, disjoint_templates, relaxing_settings):
        result = design_primers(
            disjoint_templates, relaxing_settings, direction="fw", required_ratio=1.0
        )
        fw = result.directions["fw"]
        assert not result.target_met
        assert fw.relaxation.best_ratio == pytest.approx(2 / 3)
        assert len(fw.relaxation.steps) == 5
        assert fw.final_constraints["gc_ratio"].min == 0.3
        assert fw.coverage_ratio == pytest.approx(2 / 3)
        assert len(fw.selected) == 2

    def test_zero_ratio_covers_what_it_can(self, disjoint_templates, relaxing_settings):
        result = design_primers(
            disjoint_templates, relaxing_settings, direction="fw", required_ratio=0.0
        )
        fw = result.directions["fw"]
        assert len(fw.relaxation.steps) == 1
        assert fw.coverage_ratio == pytest.approx(2 / 3)
        assert fw.target_met

    def test_no_usable_templates(self, identity_settings):
        result = design_primers([Template(id="bad", sequence="ACGTX")], identity_settings)
        assert result.directions == {}
        assert not result.target_met
        assert [i.entity for i in result.issues] == ["bad", "templates"]

    def test_short_regions_give_empty_pool(self, identity_settings):
        result = design_primers(
            [Template(id="short", sequence="ACGT" * 3)], identity_settings, direction="fw"
        )
        fw = result.directions["fw"]
        assert fw.selected == []
        assert fw.coverage_ratio == 0.0
        assert "short" in {i.entity for i in result.issues}

    def test_invalid_arguments(self, shared_site_templates, identity_settings):
        with pytest.raises(ValueError, match="direction"):
            design_primers(shared_site_templates, identity_settings, direction="up")
        with pytest.raises(ValueError, match="ratio"):
            design_primers(shared_site_templates, identity_settings, required_ratio=2.0)

    def test_frames_and_summary(self, shared_site_templates, identity_settings):
        result = design_primers(shared_site_templates, identity_settings, direction="fw")
        frames = result.to_frames()
        assert set(frames) == {"primers", "templates", "groups", "relaxation", "sweep"}
        assert frames["primers"]["Selected"].sum() == 1
        assert frames["templates"]["Covered"].all()
        assert frames["groups"]["Coverage_Ratio"].tolist() == [1.0]
        assert frames["relaxation"]["Direction"].tolist() == ["fw"]
        assert frames["sweep"]["Tm_Window"].tolist() == ["all"]

        summary = json.loads(json.dumps(result.summary_dict()))
        assert summary["target_met"]
        assert summary["per_direction"]["fw"]["coverage_ratio"] == 1.0
        assert summary["per_direction"]["fw"]["final_constraints"]["primer_length"] == "[20, 20]"

    def test_tree_initialization_selects_degenerate_consensus(self, identity_settings):
        # Variants of the shared site at positions 6 (C/T) and 13 (T/A)
        variant_6 = SHARED_SITE[:5] + "T" + SHARED_SITE[6:]
        variant_13 = SHARED_SITE[:12] + "A" + SHARED_SITE[13:]
        flank = "GATTACA" * 3
        templates = [
            Template(id=f"T{i}", sequence=site + flank, allowed_fw_end=20)
            for i, site in enumerate((SHARED_SITE, variant_6, variant_13), start=1)
        ]
        result = design_primers(
            templates, identity_settings, direction="fw", init_strategy="tree"
        )
        fw = result.directions["fw"]
        assert [p.seq for p in fw.selected] == ["ACGTAYGGTCAGWCCATGCA"]
        primer = fw.selected[0]
        assert primer.is_degenerate
        assert primer.covered_templates == ["T1", "T2", "T3"]
        assert all(b.mismatches == 0 for b in primer.bindings.values())
        assert fw.coverage_ratio == 1.0


def _covering_primer(name, template_ids, tm, seq="ACGT" * 5):
    return Primer(
        name=name,
        seq=seq,
        direction="fw",
        properties={"primer_length": 20, "melting_temp_range": tm},
        bindings={
            tid: BindingRecord(tid, 1, 20, "+", 0, covered=True) for tid in template_ids
        },
    )


class TestTmSweep:
    def test_best_window_wins(self, shared_site_templates):
        settings = make_settings(constraints={"melting_temp_diff": {"max": 2}})
        primers = [
            _covering_primer("a", ["T1", "T2"], 50.0),
            _covering_primer("b", ["T1"], 60.0),
            _covering_primer("c", ["T2"], 61.0),
        ]
        solution, sweep = _optimise(primers, shared_site_templates, settings, 1.0, "greedy")
        assert solution.primer_names == ["a"]
        assert [e.n_candidates for e in sweep] == [1, 1, 2]
        assert sweep[2].solution.ratio == 1.0

    def test_smaller_window_spread_is_respected(self, shared_site_templates):
        settings = make_settings(constraints={"melting_temp_diff": {"max": 2}})
        primers = [_covering_primer("b", ["T1"], 55.0), _covering_primer("c", ["T2"], 60.0)]
        solution, _ = _optimise(primers, shared_site_templates, settings, 1.0, "greedy")
        assert solution.size == 1
        assert solution.ratio == 0.5

    def test_primers_without_coverage_are_skipped(self, shared_site_templates, identity_settings):
        primers = [_covering_primer("a", ["T1", "T2"], 50.0), _covering_primer("none", [], 50.0)]
        solution, sweep = _optimise(primers, shared_site_templates, identity_settings, 1.0, "greedy")
        assert sweep[0].window is None
        assert sweep[0].n_candidates == 1
        assert solution.primer_names == ["a"]


class TestCheckAndSubset:
    def test_check_constraints(self, shared_site_templates, identity_settings):
        primers = [
            Primer("site", SHARED_SITE, "fw"),
            Primer("short", SHARED_SITE[:18], "fw"),
            Primer("bad", "ACGTZ", "fw"),
        ]
        checked, issues = check_constraints(primers, shared_site_templates, identity_settings)
        assert [p.name for p in checked] == ["site", "short"]
        assert [i.entity for i in issues] == ["bad"]
        assert checked[0].passed
        assert checked[0].covered_templates == ["T1", "T2"]
        assert checked[1].failed_constraints() == ["primer_length"]

    def test_subset_primer_set(self, disjoint_templates):
        settings = make_settings()
        primers = [
            Primer("acgt", "ACGT" * 5, "fw"),
            Primer("agct", "AGCT" * 5, "fw"),
            Primer("at", "AT" * 10, "fw"),
        ]
        checked, _ = check_constraints(primers, disjoint_templates, settings)
        entries, issues = subset_primer_set(checked, disjoint_templates, settings)
        assert issues == []
        assert [e.size for e in entries] == [1, 2, 3]
        assert [e.ratio for e in entries] == pytest.approx([1 / 3, 2 / 3, 1.0])

        limited, _ = subset_primer_set(checked, disjoint_templates, settings, max_size=1)
        assert len(limited) == 1


def _distinct_seq(j):
    return f"{j:020b}".replace("0", "A").replace("1", "C")


class TestCrossDimerChecks:
    @pytest.mark.parametrize("strategy", ["greedy", "ILP"])
    def test_pairs_checked_grow_with_selection_not_pool(self, disjoint_templates, strategy):
        settings = make_settings(constraints={"cross_dimerization": {"min": -9.0}})
        calls = []
        for n in (30, 120):
            primers = [
                _covering_primer(f"p{j}", [f"T{j % 3 + 1}"], 60.0, seq=_distinct_seq(j))
                for j in range(n)
            ]
            with patch(
                "coverplex.constraints.set_constraints.cross_dimer_dg", return_value=-1.0
            ) as dg:
                solution, _ = _optimise(primers, disjoint_templates, settings, 1.0, strategy)
            assert solution.size == 3
            assert solution.ratio == 1.0
            calls.append(dg.call_count)
        # Three selected primers need three pair checks, whatever the pool size
        assert calls == [3, 3]

    def test_conflicting_pair_is_never_selected(self, disjoint_templates):
        settings = make_settings(constraints={"cross_dimerization": {"min": -9.0}})
        primers = [
            _covering_primer("a", ["T1", "T2"], 60.0, seq=_distinct_seq(0)),
            _covering_primer("b", ["T3"], 60.0, seq=_distinct_seq(1)),
            _covering_primer("c", ["T3"], 60.0, seq=_distinct_seq(2)),
        ]

        def dg(primer_a, primer_b, oligo_calc):
            return -12.0 if {primer_a.name, primer_b.name} == {"a", "b"} else -1.0

        with patch("coverplex.constraints.set_constraints.cross_dimer_dg", side_effect=dg):
            solution, _ = _optimise(primers, disjoint_templates, settings, 1.0, "greedy")
        assert solution.primer_names == ["a", "c"]
