# ================================================================================
# Primer/template binding evaluation
#
# Primers are matched against templates without gaps. Every symbol is a 4-bit
# base mask, so a template position matches a (degenerate) primer position when
# the template mask is a subset of the primer mask. All windows of a template
# are scored at once with numpy.
# ================================================================================

from __future__ import annotations

import numpy as np
from loguru import logger
from numpy.lib.stride_tricks import sliding_window_view

from coverplex.config import DesignSettings
from coverplex.designer.degenerate import encode, resolve_against, reverse_complement
from coverplex.designer.primer import BindingRecord, Primer
from coverplex.designer.template import Template
from coverplex.designer.thal import duplex_dg


def _unambiguous(seq: str) -> str:
    """Replace degenerate template symbols by N for the thermodynamic back end."""
    return "".join(b if b in "ACGT" else "N" for b in seq)


def mismatch_profile(template_masks: np.ndarray, probe_masks: np.ndarray) -> np.ndarray:
    """
    Boolean mismatch matrix for every window of the template.

    Returns:
        Array of shape (n_windows, probe_length); True marks a mismatch.
    """
    k = probe_masks.size
    if template_masks.size < k:
        return np.zeros((0, k), dtype=bool)
    windows = sliding_window_view(template_masks, k)
    return (windows & ~probe_masks) != 0


def region_mask(starts: np.ndarray, k: int, interval: tuple[int, int], definition: str) -> np.ndarray:
    """
    Which 0-based window starts satisfy the region definition.

    'within' requires the 1-based footprint [s + 1, s + k] inside the interval,
    'any' requires an overlap with it.
    """
    lo, hi = interval
    first = starts + 1
    last = starts + k
    if definition == "within":
        return (first >= lo) & (last <= hi)
    return (first <= hi) & (last >= lo)


class BindingEvaluator:
    """
    Find binding events of primers on a fixed set of templates.

    Args:
        templates: Templates to scan; encoded once on construction.
        settings: Settings snapshot (mismatch ceiling and region definition).
        compute_dg: Also compute annealing free energies for in-region bindings.
    """

    def __init__(
        self,
        templates: list[Template],
        settings: DesignSettings,
        compute_dg: bool = False,
    ):
        self.templates = templates
        self.max_mismatches = settings.options.allowed_mismatches
        self.region_definition = settings.options.allowed_region_definition
        self.compute_dg = compute_dg
        self._encoded = {t.id: encode(t.sequence) for t in templates}

    def evaluate(
        self, primer: Primer, oligo_calc=None
    ) -> tuple[dict[str, BindingRecord], list[str]]:
        """
        Scan all templates for the primer.

        Returns:
            The best in-region binding per bound template (fewest mismatches,
            then leftmost), and the templates with additional binding events
            outside the allowed region.
        """
        k = primer.length
        probe = primer.seq if primer.direction == "fw" else reverse_complement(primer.seq)
        probe_masks = encode(probe)
        strand = "+" if primer.direction == "fw" else "-"

        bindings: dict[str, BindingRecord] = {}
        off_target: list[str] = []

        for template in self.templates:
            profile = mismatch_profile(self._encoded[template.id], probe_masks)
            if profile.shape[0] == 0:
                continue

            counts = profile.sum(axis=1)
            starts = np.arange(counts.size)
            hits = counts <= self.max_mismatches
            inside = region_mask(
                starts, k, template.interval(primer.direction), self.region_definition
            )

            if np.any(hits & ~inside):
                off_target.append(template.id)

            candidates = np.flatnonzero(hits & inside)
            if candidates.size == 0:
                continue

            # Fewest mismatches first, leftmost start on ties
            best = int(candidates[np.argmin(counts[candidates])])
            mismatch_idx = np.flatnonzero(profile[best])
            if primer.direction == "fw":
                positions = tuple(int(i) + 1 for i in mismatch_idx)
            else:
                positions = tuple(sorted(k - int(i) for i in mismatch_idx))

            record = BindingRecord(
                template_id=template.id,
                start=best + 1,
                end=best + k,
                strand=strand,
                mismatches=int(counts[best]),
                mismatch_positions=positions,
            )
            if self.compute_dg and oligo_calc is not None:
                self._annotate_dg(record, primer, template, oligo_calc)
            bindings[template.id] = record

        return bindings, off_target

    def _annotate_dg(
        self, record: BindingRecord, primer: Primer, template: Template, oligo_calc
    ) -> None:
        """Annealing dG of the binding duplex and of the perfect-match duplex."""
        footprint = template.sequence[record.start - 1 : record.end]
        if primer.direction == "fw":
            resolved = resolve_against(primer.seq, footprint)
            target = reverse_complement(footprint)
        else:
            target = footprint
            resolved = resolve_against(primer.seq, reverse_complement(footprint))

        try:
            record.annealing_dg = round(
                duplex_dg(resolved, _unambiguous(target), oligo_calc), 3
            )
            record.perfect_dg = round(
                duplex_dg(resolved, reverse_complement(resolved), oligo_calc), 3
            )
        except (OSError, ValueError, RuntimeError) as e:
            logger.debug(
                f"Annealing dG undefined for {primer.name} on {template.id}: {e}"
            )
            record.annealing_dg = None
            record.perfect_dg = None
