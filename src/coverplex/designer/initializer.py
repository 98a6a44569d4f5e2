# ================================================================================
# Candidate primer generation
#
# Two strategies build the initial primer pool from the allowed binding regions
# of the templates:
#
#   naive - every window of every allowed length, identical sequences merged
#   tree  - windows of star-aligned regions are clustered hierarchically and
#           collapsed into degenerate consensus primers where the degeneracy
#           limits allow
# ================================================================================

from __future__ import annotations

import numpy as np
from Bio.Align import PairwiseAligner
from loguru import logger
from scipy.cluster.hierarchy import linkage, to_tree
from scipy.spatial.distance import pdist

from coverplex.config import DesignSettings
from coverplex.designer.degenerate import (
    consensus,
    degeneracy,
    encode,
    position_degeneracies,
    reverse_complement,
)
from coverplex.designer.primer import Primer
from coverplex.designer.template import Template
from coverplex.errors import InputIssue

DIRECTIONS = ("fw", "rev")


def _usable_regions(
    templates: list[Template], direction: str, k_min: int
) -> tuple[list[tuple[Template, str]], list[InputIssue]]:
    """Allowed regions long enough to hold the shortest primer."""
    regions = []
    issues = []
    for template in templates:
        region = template.region(direction)
        if len(region) < k_min:
            msg = (
                f"{direction} binding region has length {len(region)}, "
                f"shorter than the minimum primer length {k_min}"
            )
            logger.warning(f"Template {template.id}: {msg}")
            issues.append(InputIssue(template.id, msg))
            continue
        regions.append((template, region))
    return regions, issues


class _CandidatePool:
    """Ordered, deduplicated collection of candidates keyed by sequence."""

    def __init__(self, direction: str, prefix: str):
        self.direction = direction
        self.prefix = prefix
        self._by_seq: dict[str, Primer] = {}

    def add(self, seq: str, origins) -> None:
        primer = self._by_seq.get(seq)
        if primer is None:
            primer = Primer(
                name=f"{self.prefix}_{self.direction}_{len(self._by_seq) + 1}",
                seq=seq,
                direction=self.direction,
            )
            self._by_seq[seq] = primer
        for origin in origins:
            if origin not in primer.origins:
                primer.origins.append(origin)

    def primers(self) -> list[Primer]:
        return list(self._by_seq.values())


# ================================================================================
# Naive initialization
# ================================================================================


def naive_candidates(
    templates: list[Template], settings: DesignSettings, direction: str
) -> tuple[list[Primer], list[InputIssue]]:
    """
    Extract every window of the allowed lengths from each allowed region.

    Forward candidates are the template windows themselves, reverse candidates
    their reverse complements. Identical sequences are merged and keep all
    originating templates.
    """
    k_min, k_max = settings.length_bounds()
    regions, issues = _usable_regions(templates, direction, k_min)

    pool = _CandidatePool(direction, prefix="naive")
    windows_checked = 0
    for template, region in regions:
        for start in range(len(region) - k_min + 1):
            for k in range(k_min, k_max + 1):
                if start + k > len(region):
                    break
                windows_checked += 1
                window = region[start : start + k]
                seq = window if direction == "fw" else reverse_complement(window)
                pool.add(seq, [template.id])

    primers = pool.primers()
    logger.info(
        f"{direction}: naive initialization found {len(primers)} unique candidates "
        f"in {windows_checked} windows of {len(regions)} templates."
    )
    return primers, issues


# ================================================================================
# Tree initialization
# ================================================================================


def star_alignment(regions: list[str]) -> list[str]:
    """
    Project every region onto the longest region (the reference).

    Returns one string per region, each as long as the reference, with '-'
    wherever the region has no aligned base. Insertions relative to the
    reference are dropped.
    """
    ref_index = max(range(len(regions)), key=lambda i: (len(regions[i]), -i))
    reference = regions[ref_index]

    aligner = PairwiseAligner()
    aligner.mode = "global"
    aligner.match_score = 1.0
    aligner.mismatch_score = -1.0
    aligner.open_gap_score = -5.0
    aligner.extend_gap_score = -1.0
    aligner.target_end_gap_score = 0.0
    aligner.query_end_gap_score = 0.0

    projected = []
    for i, region in enumerate(regions):
        if i == ref_index or region == reference:
            projected.append(reference)
            continue
        alignment = aligner.align(reference, region)[0]
        column = ["-"] * len(reference)
        for (t_start, t_end), (q_start, _) in zip(*alignment.aligned):
            for offset in range(t_end - t_start):
                column[t_start + offset] = region[q_start + offset]
        projected.append("".join(column))
    return projected


def _acceptable(seq: str, settings: DesignSettings) -> bool:
    opts = settings.options
    return (
        max(position_degeneracies(seq)) <= opts.max_degeneracy_per_position
        and degeneracy(seq) <= opts.max_degeneracy
    )


def _collapse_window(
    kmers: list[str], origins: list[list[str]], settings: DesignSettings
) -> list[tuple[str, list[str]]]:
    """
    Cluster the distinct k-mers of one window and cut the tree top down.

    A subtree is replaced by its consensus as soon as the consensus satisfies
    the degeneracy limits; single k-mers are always emitted.
    """
    if len(kmers) == 1:
        return [(kmers[0], origins[0])]

    encoded = np.vstack([encode(k) for k in kmers])
    tree = to_tree(linkage(pdist(encoded, metric="hamming"), method="average"))

    results = []
    stack = [tree]
    while stack:
        node = stack.pop()
        members = sorted(node.pre_order())
        cons = consensus([kmers[i] for i in members])
        if node.is_leaf() or _acceptable(cons, settings):
            merged = []
            for i in members:
                merged.extend(o for o in origins[i] if o not in merged)
            results.append((cons, merged))
        else:
            stack.append(node.get_right())
            stack.append(node.get_left())
    return results


def tree_candidates(
    templates: list[Template], settings: DesignSettings, direction: str
) -> tuple[list[Primer], list[InputIssue]]:
    """
    Build degenerate candidates from a star alignment of the allowed regions.

    For every window of the reference, the gap-free k-mers of all templates are
    clustered on Hamming distance and collapsed into degenerate consensus
    sequences within the configured degeneracy limits.
    """
    k_min, k_max = settings.length_bounds()
    regions, issues = _usable_regions(templates, direction, k_min)
    pool = _CandidatePool(direction, prefix="tree")

    if not regions:
        logger.warning(f"{direction}: no usable regions for tree initialization.")
        return [], issues

    projected = star_alignment([region for _, region in regions])
    ref_len = len(projected[0])

    for start in range(ref_len - k_min + 1):
        for k in range(k_min, k_max + 1):
            if start + k > ref_len:
                break
            kmers: list[str] = []
            origins: list[list[str]] = []
            for (template, _), aligned in zip(regions, projected):
                kmer = aligned[start : start + k]
                if "-" in kmer:
                    continue
                if kmer in kmers:
                    origins[kmers.index(kmer)].append(template.id)
                else:
                    kmers.append(kmer)
                    origins.append([template.id])
            if not kmers:
                continue
            for seq, members in _collapse_window(kmers, origins, settings):
                if direction == "rev":
                    seq = reverse_complement(seq)
                pool.add(seq, members)

    primers = pool.primers()
    n_degenerate = sum(1 for p in primers if p.is_degenerate)
    logger.info(
        f"{direction}: tree initialization found {len(primers)} candidates "
        f"({n_degenerate} degenerate) from {len(regions)} aligned regions."
    )
    return primers, issues


initializer_collection = {
    "naive": naive_candidates,
    "tree": tree_candidates,
}


def initialize_primers(
    templates: list[Template],
    settings: DesignSettings,
    direction: str = "fw",
    strategy: str = "naive",
) -> tuple[list[Primer], list[InputIssue]]:
    """
    Wrapper function to call the initialization strategy.

    Args:
        templates: Templates with their allowed binding regions.
        settings: Settings snapshot; the primer length boundaries are used.
        direction: "fw" or "rev".
        strategy: "naive" or "tree".

    Returns:
        The candidate primers and the per-template input issues.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"Unknown direction '{direction}'. Use 'fw' or 'rev'.")
    if strategy not in initializer_collection:
        raise ValueError(
            f"Unknown initialization strategy '{strategy}'. "
            f"Available: {', '.join(initializer_collection)}"
        )
    return initializer_collection[strategy](templates, settings, direction)
