# ================================================================================
# Oligonucleotide thermodynamics
#
# Nearest-neighbour melting temperatures (SantaLucia & Hicks, 2004 unified
# parameters) with the primer3 salt, DMSO and formamide corrections, and
# primer3-py wrappers for secondary structure and duplex free energies.
# ================================================================================

from __future__ import annotations

import math

import primer3

from coverplex.config import PCRConditions
from coverplex.designer.degenerate import BASE_BITS, expand, reverse_complement

# Kelvin to Celsius conversion factor
T_KELVIN = 273.15

# In cal/(K·mol)
GAS_CONSTANT = 1.987

# Nearest-neighbour stacks: dH in kcal/mol, dS in cal/(K·mol).
# Each key is read 5'->3' on the top strand; complementary stacks share values.
NN_PARAMS = {
    "AA": (-7.9, -22.2),
    "TT": (-7.9, -22.2),
    "AT": (-7.2, -20.4),
    "TA": (-7.2, -21.3),
    "CA": (-8.5, -22.7),
    "TG": (-8.5, -22.7),
    "GT": (-8.4, -22.4),
    "AC": (-8.4, -22.4),
    "CT": (-7.8, -21.0),
    "AG": (-7.8, -21.0),
    "GA": (-8.2, -22.2),
    "TC": (-8.2, -22.2),
    "CG": (-10.6, -27.2),
    "GC": (-9.8, -24.4),
    "GG": (-8.0, -19.9),
    "CC": (-8.0, -19.9),
}

INIT_PARAMS = (0.2, -5.7)
TERMINAL_AT_PARAMS = (2.2, 6.9)
SYMMETRY_DS = -1.4

# Expansions evaluated per degenerate primer
MAX_EXPANSIONS = 256


class ThermoError(Exception):
    """Base exception for thermodynamic calculation errors."""

    pass


class InvalidSequenceError(ThermoError):
    """Raised when sequence is invalid or too short."""

    pass


class InvalidConcentrationError(ThermoError):
    """Raised when concentration values are invalid."""

    pass


def symmetry(seq: str) -> bool:
    """Check if sequence is self-complementary."""
    if len(seq) % 2 == 1:
        return False
    return seq == reverse_complement(seq)


def divalent_to_monovalent(divalent: float, dntp: float) -> float:
    """Convert divalent salt concentration (mM) to monovalent equivalent (mM)."""
    if divalent < 0 or dntp < 0:
        raise InvalidConcentrationError(
            "Divalent and dNTP concentrations must be non-negative"
        )
    if divalent == 0:
        return 0.0
    if divalent < dntp:
        divalent = dntp
    return 120 * math.sqrt(divalent - dntp)


def nearest_neighbor_terms(seq: str) -> tuple[float, float]:
    """
    Sum enthalpy (kcal/mol) and entropy (cal/(K·mol)) of a perfect duplex.

    Raises:
        InvalidSequenceError: If the sequence is shorter than 2 bases or contains
            symbols other than A, C, G, T.
    """
    seq = seq.upper()
    if len(seq) < 2:
        raise InvalidSequenceError("Sequence must be at least 2 bases long")
    if any(base not in BASE_BITS for base in seq):
        raise InvalidSequenceError(
            f"Nearest-neighbour model needs unambiguous bases, got {seq}"
        )

    dh, ds = INIT_PARAMS
    for end in (seq[0], seq[-1]):
        if end in "AT":
            dh += TERMINAL_AT_PARAMS[0]
            ds += TERMINAL_AT_PARAMS[1]

    for i in range(len(seq) - 1):
        step_dh, step_ds = NN_PARAMS[seq[i : i + 2]]
        dh += step_dh
        ds += step_ds

    if symmetry(seq):
        ds += SYMMETRY_DS

    return dh, ds


def melting_temperature(seq: str, pcr: PCRConditions) -> float:
    """
    Calculate the melting temperature (°C) of an unambiguous oligo.

    The entropy is salt-corrected with the monovalent equivalent of the
    reaction's monovalent, divalent and dNTP concentrations; DMSO and formamide
    corrections are applied to the final Tm.

    Raises:
        InvalidSequenceError: If the sequence cannot be evaluated.
        InvalidConcentrationError: If concentration values are invalid.
    """
    seq = seq.upper()
    dh, ds = nearest_neighbor_terms(seq)

    k_mm = pcr.mv_concentration + divalent_to_monovalent(
        pcr.dv_concentration, pcr.dntp_concentration
    )
    if k_mm <= 0:
        raise InvalidConcentrationError("Total cation concentration must be positive")

    ds += 0.368 * (len(seq) - 1) * math.log(k_mm / 1000.0)

    dna_conc = pcr.primer_concentration / 1e9
    factor = 1.0 if symmetry(seq) else 4.0

    tm = (dh * 1000.0) / (ds + GAS_CONSTANT * math.log(dna_conc / factor)) - T_KELVIN

    if pcr.dmso_concentration > 0.0:
        tm -= pcr.dmso_concentration * pcr.dmso_fact

    if pcr.formamide_concentration > 0.0:
        gc = sum(1 for base in seq if base in "GC")
        tm += (0.453 * gc / len(seq) - 2.88) * pcr.formamide_concentration

    return tm


def degenerate_melting_temperature(seq: str, pcr: PCRConditions) -> float:
    """Mean Tm over the expansions of a degenerate primer."""
    tms = [melting_temperature(s, pcr) for s in expand(seq, MAX_EXPANSIONS)]
    return sum(tms) / len(tms)


# ================================================================================
# primer3-py backed free energies
# ================================================================================


def make_thermo_analysis(pcr: PCRConditions):
    """
    Build a primer3 ThermoAnalysis object for the reaction conditions.

    Free energies are evaluated at the annealing temperature. Instances are not
    shared between threads; callers create one per task.
    """
    oligo_calc = primer3.thermoanalysis.ThermoAnalysis()
    oligo_calc.set_thermo_args(
        mv_conc=pcr.mv_concentration,
        dv_conc=pcr.dv_concentration,
        dntp_conc=pcr.dntp_concentration,
        dna_conc=pcr.primer_concentration,
        dmso_conc=pcr.dmso_concentration,
        dmso_fact=pcr.dmso_fact,
        formamide_conc=pcr.formamide_concentration,
        annealing_temp_c=pcr.annealing_temperature,
        temp_c=pcr.annealing_temperature,
        max_nn_length=60,
        max_loop=30,
        tm_method="santalucia",
        salt_corrections_method="santalucia",
    )
    return oligo_calc


def _dg_kcal(result) -> float:
    """primer3 reports dG in cal/mol; no structure means no stabilisation."""
    if not result.structure_found:
        return 0.0
    return result.dg / 1000.0


def hairpin_dg(seq: str, oligo_calc) -> float:
    """Most stable hairpin dG (kcal/mol) over the expansions of seq."""
    return min(
        _dg_kcal(oligo_calc.calc_hairpin(s)) for s in expand(seq, MAX_EXPANSIONS)
    )


def homodimer_dg(seq: str, oligo_calc) -> float:
    """Most stable self-dimer dG (kcal/mol) over the expansions of seq."""
    return min(
        _dg_kcal(oligo_calc.calc_homodimer(s)) for s in expand(seq, MAX_EXPANSIONS)
    )


def heterodimer_dg(seq_a: str, seq_b: str, oligo_calc) -> float:
    """Most stable cross-dimer dG (kcal/mol) between two (degenerate) primers."""
    return min(
        _dg_kcal(oligo_calc.calc_heterodimer(a, b))
        for a in expand(seq_a, 16)
        for b in expand(seq_b, 16)
    )


def duplex_dg(primer_seq: str, target_seq: str, oligo_calc) -> float:
    """
    Free energy (kcal/mol) of a primer annealed to its target strand.

    Both sequences are unambiguous and written 5' -> 3'; the target is the
    strand the primer hybridises to.
    """
    return _dg_kcal(oligo_calc.calc_heterodimer(primer_seq, target_seq))
