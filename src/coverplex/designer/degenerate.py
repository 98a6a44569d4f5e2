# ================================================================================
# Degenerate nucleotide alphabet
#
# Every IUPAC symbol stands for a fixed subset of {A, C, G, T}. Symbols are
# encoded as 4-bit masks so that matching a primer position against a template
# position is a set-membership test instead of an equality test.
# ================================================================================

from __future__ import annotations

from itertools import islice, product

import numpy as np

BASE_BITS = {"A": 1, "C": 2, "G": 4, "T": 8}

IUPAC_CODES: dict[str, frozenset[str]] = {
    "A": frozenset("A"),
    "C": frozenset("C"),
    "G": frozenset("G"),
    "T": frozenset("T"),
    "R": frozenset("AG"),
    "Y": frozenset("CT"),
    "S": frozenset("CG"),
    "W": frozenset("AT"),
    "K": frozenset("GT"),
    "M": frozenset("AC"),
    "B": frozenset("CGT"),
    "D": frozenset("AGT"),
    "H": frozenset("ACT"),
    "V": frozenset("ACG"),
    "N": frozenset("ACGT"),
}

IUPAC_MASKS: dict[str, int] = {
    symbol: sum(BASE_BITS[b] for b in bases) for symbol, bases in IUPAC_CODES.items()
}

MASK_TO_SYMBOL: dict[int, str] = {mask: symbol for symbol, mask in IUPAC_MASKS.items()}

COMPLEMENT = {
    "A": "T",
    "C": "G",
    "G": "C",
    "T": "A",
    "R": "Y",
    "Y": "R",
    "S": "S",
    "W": "W",
    "K": "M",
    "M": "K",
    "B": "V",
    "V": "B",
    "D": "H",
    "H": "D",
    "N": "N",
}

# Lookup table from ASCII code to mask; 0 marks an invalid symbol
_ASCII_TO_MASK = np.zeros(256, dtype=np.uint8)
for _symbol, _mask in IUPAC_MASKS.items():
    _ASCII_TO_MASK[ord(_symbol)] = _mask
    _ASCII_TO_MASK[ord(_symbol.lower())] = _mask


class SequenceError(ValueError):
    """Raised when a sequence contains symbols outside the IUPAC alphabet."""

    pass


def validate_sequence(seq: str) -> str:
    """Return the upper-cased sequence or raise SequenceError."""
    seq = seq.upper()
    invalid = sorted(set(seq) - IUPAC_CODES.keys())
    if invalid:
        raise SequenceError(f"Invalid nucleotide symbol(s): {', '.join(invalid)}")
    return seq


def encode(seq: str) -> np.ndarray:
    """
    Encode a sequence as an array of 4-bit base masks.

    Raises:
        SequenceError: If the sequence contains non-IUPAC symbols.
    """
    raw = np.frombuffer(seq.encode("ascii"), dtype=np.uint8)
    masks = _ASCII_TO_MASK[raw]
    if masks.size and not masks.all():
        validate_sequence(seq)
    return masks


def symbol_matches(primer_symbol: str, template_symbol: str) -> bool:
    """A primer symbol matches when it covers every base the template symbol can be."""
    p = IUPAC_MASKS[primer_symbol.upper()]
    t = IUPAC_MASKS[template_symbol.upper()]
    return (t & ~p) == 0


def consensus_symbol(bases) -> str:
    """Smallest IUPAC symbol representing all given bases (or symbols)."""
    mask = 0
    for b in bases:
        mask |= IUPAC_MASKS[b.upper()]
    return MASK_TO_SYMBOL[mask]


def consensus(seqs: list[str]) -> str:
    """Column-wise degenerate consensus of equal-length sequences."""
    return "".join(consensus_symbol(column) for column in zip(*seqs))


def position_degeneracies(seq: str) -> list[int]:
    return [len(IUPAC_CODES[s]) for s in seq.upper()]


def degeneracy(seq: str) -> int:
    """Number of distinct non-degenerate sequences represented by seq."""
    total = 1
    for n in position_degeneracies(seq):
        total *= n
    return total


def is_degenerate(seq: str) -> bool:
    return any(s not in BASE_BITS for s in seq.upper())


def expand(seq: str, limit: int = 256) -> list[str]:
    """
    Expand a degenerate sequence into its concrete sequences.

    Expansions are produced in lexicographic order and capped at ``limit``.
    """
    choices = [sorted(IUPAC_CODES[s]) for s in seq.upper()]
    return ["".join(p) for p in islice(product(*choices), limit)]


def resolve_against(primer_seq: str, template_seq: str) -> str:
    """
    Resolve degenerate primer positions to the template base wherever the
    primer symbol covers it, and to the first represented base otherwise.
    """
    resolved = []
    for p, t in zip(primer_seq.upper(), template_seq.upper()):
        bases = IUPAC_CODES[p]
        if t in bases:
            resolved.append(t)
        else:
            resolved.append(min(bases))
    return "".join(resolved)


def reverse_complement(seq: str) -> str:
    """
    Returns the reverse complement of a (possibly degenerate) DNA sequence.

    Raises:
        SequenceError: For symbols outside the IUPAC alphabet.
    """
    seq = seq.upper()
    try:
        return "".join(COMPLEMENT[base] for base in reversed(seq))
    except KeyError as e:
        raise SequenceError(f"Invalid DNA base: {e.args[0]}") from e
