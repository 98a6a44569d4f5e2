from coverplex.designer.degenerate import IUPAC_CODES


def gc_ratio(sequence: str) -> float:
    """
    Calculate the GC ratio of a DNA sequence.

    Degenerate positions contribute the fraction of their bases that are G or C,
    e.g. S counts 1.0, R counts 0.5 and N counts 0.5.

    Parameters:
        sequence (str): DNA sequence over the IUPAC alphabet.

    Returns:
        float: GC content as a fraction between 0 and 1.
    """
    if not sequence:
        return 0.0  # Handle empty string safely

    gc = 0.0
    for symbol in sequence.upper():
        bases = IUPAC_CODES[symbol]
        gc += len(bases & {"G", "C"}) / len(bases)
    return gc / len(sequence)


def gc_clamp_count(sequence: str, window: int = 5) -> int:
    """Number of G, C or S symbols among the last `window` 3' bases."""
    three_prime = sequence[-window:] if len(sequence) >= window else sequence
    return sum(1 for b in three_prime.upper() if b in "GCS")


def longest_run(sequence: str) -> int:
    """
    Length of the longest homopolymer run in a sequence.

    Args:
        sequence (str): The DNA sequence to check

    Returns:
        int: Longest stretch of identical consecutive symbols (0 for empty input).
    """
    if not sequence:
        return 0

    sequence = sequence.upper()
    best = 1
    count = 1

    for i in range(1, len(sequence)):
        if sequence[i] == sequence[i - 1]:
            count += 1
            best = max(best, count)
        else:
            count = 1

    return best


def longest_dinucleotide_repeat(sequence: str) -> int:
    """
    Longest tandem repeat of a dinucleotide, counted in repeat units.

    ``ATATAT`` gives 3; homopolymers are not counted as dinucleotide repeats,
    so ``AAAA`` gives 1.
    """
    sequence = sequence.upper()
    if len(sequence) < 2:
        return 0

    best = 1
    for offset in (0, 1):
        units = 1
        for i in range(offset + 2, len(sequence) - 1, 2):
            unit = sequence[i : i + 2]
            prev = sequence[i - 2 : i]
            if unit == prev and unit[0] != unit[1]:
                units += 1
                best = max(best, units)
            else:
                units = 1
    return best
