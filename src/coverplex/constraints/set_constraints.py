# ================================================================================
# Constraints on the selected primer set as a whole
#
#   cross_dimerization  - lower bound on the cross-dimer dG of any two primers
#                         selected together; pairs are tested on demand and
#                         violating ones become set-cover conflicts
#   melting_temp_diff   - maximum Tm spread of the set; the candidates are
#                         split into overlapping Tm windows of that width
# ================================================================================

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from coverplex.config import DesignSettings
from coverplex.constraints.checker import check_value
from coverplex.designer.primer import Primer
from coverplex.designer.thal import heterodimer_dg, make_thermo_analysis


def cross_dimer_dg(primer_a: Primer, primer_b: Primer, oligo_calc) -> float:
    """Most stable cross-dimer dG (kcal/mol) of two primers."""
    return round(heterodimer_dg(primer_a.seq, primer_b.seq, oligo_calc), 3)


class DimerConflicts:
    """
    Cross-dimer conflicts between primers, evaluated on demand.

    Only the pairs the optimizer actually asks about are computed; results are
    cached by sequence pair, so one instance can serve several candidate pools
    (e.g. the windows of a Tm sweep). An undefined dG counts as a violation.

    Args:
        settings: Settings snapshot; the cross_dimerization range and the PCR
            conditions are used.
    """

    def __init__(self, settings: DesignSettings):
        self.range = settings.constraints.get("cross_dimerization")
        self.pcr = settings.pcr_conditions
        self._oligo_calc = None
        self._cache: dict[tuple[str, str], bool] = {}

    @property
    def active(self) -> bool:
        return self.range is not None

    @property
    def n_evaluated(self) -> int:
        return len(self._cache)

    def conflict(self, primer_a: Primer, primer_b: Primer) -> bool:
        if not self.active:
            return False
        key = tuple(sorted((primer_a.seq, primer_b.seq)))
        if key not in self._cache:
            if self._oligo_calc is None:
                self._oligo_calc = make_thermo_analysis(self.pcr)
            try:
                dg = cross_dimer_dg(primer_a, primer_b, self._oligo_calc)
            except (OSError, ValueError, RuntimeError) as e:
                logger.debug(
                    f"Cross-dimer dG undefined for {primer_a.name}/{primer_b.name}: {e}"
                )
                dg = None
            self._cache[key] = not check_value("cross_dimerization", dg, self.range).passed
        return self._cache[key]

    def checker(self, primers: list[Primer]) -> Callable[[int, int], bool] | None:
        """
        Conflict test on column indices of ``primers``, for a CoverageMatrix.

        Returns None if cross_dimerization is inactive.
        """
        if not self.active:
            return None
        return lambda i, j: self.conflict(primers[i], primers[j])


@dataclass(frozen=True)
class TmWindow:
    low: float
    high: float

    def __contains__(self, tm) -> bool:
        return tm is not None and self.low <= tm <= self.high

    def __str__(self) -> str:
        return f"[{self.low:.1f}, {self.high:.1f}]"


def tm_windows(primers: list[Primer], settings: DesignSettings) -> list[TmWindow]:
    """
    Overlapping Tm windows spanning the candidates' melting temperatures.

    Windows have the width of the melting_temp_diff maximum and start at the
    lowest Tm, shifted by ``options.tm_window_step``. Windows with the same
    members as their predecessor, or without members, are skipped.

    Returns:
        An empty list if melting_temp_diff is inactive or has no maximum.
    """
    rng = settings.constraints.get("melting_temp_diff")
    if rng is None or rng.max is None:
        return []

    tms = sorted(
        p.properties["melting_temp_range"]
        for p in primers
        if p.properties.get("melting_temp_range") is not None
    )
    if not tms:
        return []

    width = rng.max
    step = settings.options.tm_window_step
    windows: list[TmWindow] = []
    last_members = None
    low = tms[0]
    while True:
        window = TmWindow(low, low + width)
        members = tuple(tm for tm in tms if tm in window)
        if members and members != last_members:
            windows.append(window)
            last_members = members
        if low + width >= tms[-1]:
            break
        low += step
    return windows


def in_window(primers: list[Primer], window: TmWindow) -> list[Primer]:
    return [p for p in primers if p.properties.get("melting_temp_range") in window]
