# ================================================================================
# Tests for oligonucleotide thermodynamics
# ================================================================================

import pytest

from coverplex.config import PCRConditions
from coverplex.designer.degenerate import reverse_complement
from coverplex.designer.thal import (
    InvalidConcentrationError,
    InvalidSequenceError,
    degenerate_melting_temperature,
    divalent_to_monovalent,
    duplex_dg,
    hairpin_dg,
    heterodimer_dg,
    homodimer_dg,
    make_thermo_analysis,
    melting_temperature,
    nearest_neighbor_terms,
    symmetry,
)


@pytest.fixture
def pcr():
    return PCRConditions(dntp_concentration=0.6, annealing_temperature=53.0)


class TestMeltingTemperature:
    def test_realistic_primer(self, pcr):
        """Matches the primer3 SantaLucia Tm for the same conditions (~58.1 °C)."""
        tm = melting_temperature("CAGTGGCTCTATTGAATTTCTGTG", pcr)
        assert tm == pytest.approx(58.1, abs=1.0)

    def test_gc_rich_melts_higher(self, pcr):
        at_rich = melting_temperature("ATTATAATTAATATTAAT", pcr)
        gc_rich = melting_temperature("GCGGCCGCGGCCGCGGCC", pcr)
        assert gc_rich > at_rich

    def test_salt_raises_tm(self):
        seq = "CAGTGGCTCTATTGAATTTCTGTG"
        low = melting_temperature(seq, PCRConditions(mv_concentration=20.0))
        high = melting_temperature(seq, PCRConditions(mv_concentration=200.0))
        assert high > low

    def test_dmso_correction(self):
        seq = "CAGTGGCTCTATTGAATTTCTGTG"
        plain = melting_temperature(seq, PCRConditions())
        dmso = melting_temperature(seq, PCRConditions(dmso_concentration=5.0, dmso_fact=0.6))
        assert plain - dmso == pytest.approx(3.0)

    def test_degenerate_tm_is_mean_of_expansions(self, pcr):
        a = melting_temperature("ACGTACGGTCAGTCCATGCA", pcr)
        g = melting_temperature("GCGTACGGTCAGTCCATGCA", pcr)
        assert degenerate_melting_temperature("RCGTACGGTCAGTCCATGCA", pcr) == pytest.approx((a + g) / 2)

    def test_invalid_sequence(self, pcr):
        with pytest.raises(InvalidSequenceError):
            melting_temperature("A", pcr)
        with pytest.raises(InvalidSequenceError):
            nearest_neighbor_terms("ACGN")

    def test_symmetry(self):
        assert symmetry("ACGT")
        assert not symmetry("ACGA")
        assert not symmetry("ACG")


class TestSaltConversion:
    def test_divalent_to_monovalent(self):
        assert divalent_to_monovalent(0.0, 0.8) == 0.0
        assert divalent_to_monovalent(1.5, 0.6) == pytest.approx(120 * 0.9**0.5)

    def test_dntp_chelates_all_divalent(self):
        assert divalent_to_monovalent(0.5, 0.8) == 0.0

    def test_negative_concentration(self):
        with pytest.raises(InvalidConcentrationError):
            divalent_to_monovalent(-1.0, 0.8)


class TestFreeEnergies:
    @pytest.fixture
    def oligo_calc(self):
        return make_thermo_analysis(PCRConditions())

    def test_no_structure_is_zero(self, oligo_calc):
        assert hairpin_dg("AAAAAAAAAAAAAAAAAAAA", oligo_calc) == 0.0
        assert homodimer_dg("AAAAAAAAAAAAAAAAAAAA", oligo_calc) == 0.0

    def test_self_complementary_dimer(self, oligo_calc):
        assert homodimer_dg("ACGTACGTACGTACGTACGT", oligo_calc) < -10.0

    def test_complementary_cross_dimer(self, oligo_calc):
        seq = "CAGTGGCTCTATTGAATTTCTGTG"
        assert heterodimer_dg(seq, reverse_complement(seq), oligo_calc) < -10.0

    def test_mismatch_destabilises_duplex(self, oligo_calc):
        primer = "CAGTGGCTCTATTGAATTTCTGTG"
        target = reverse_complement(primer)
        mismatched = target[:12] + ("A" if target[12] != "A" else "C") + target[13:]
        assert duplex_dg(primer, target, oligo_calc) < duplex_dg(primer, mismatched, oligo_calc)
