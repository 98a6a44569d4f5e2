# ================================================================================
# Template records
# ================================================================================

from __future__ import annotations

from dataclasses import dataclass, field

from coverplex.designer.degenerate import IUPAC_CODES


@dataclass
class Template:
    """
    A target sequence that primers may bind and amplify.

    Args:
        id: Unique template identifier.
        sequence: Template sequence (5' -> 3', IUPAC alphabet).
        group: Group label used for per-group coverage statistics.
        allowed_fw_start / allowed_fw_end: 1-based inclusive interval in which
            forward primers may bind. Defaults to the whole sequence.
        allowed_rev_start / allowed_rev_end: 1-based inclusive interval in which
            reverse primers may bind. Defaults to the whole sequence.
        covered_by: Coverage annotations, primer name -> mismatch count.
    """

    id: str
    sequence: str
    group: str = "default"
    allowed_fw_start: int = 1
    allowed_fw_end: int | None = None
    allowed_rev_start: int | None = None
    allowed_rev_end: int | None = None
    covered_by: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self.sequence = self.sequence.upper()

    def __repr__(self):
        return f"Template({self.id}, group={self.group}, length={len(self)})"

    def __len__(self):
        return len(self.sequence)

    @classmethod
    def from_region_lengths(
        cls,
        id: str,
        sequence: str,
        fw_length: int | None = None,
        rev_length: int | None = None,
        group: str = "default",
    ) -> Template:
        """
        Anchor the forward region at the 5' end and the reverse region at the 3' end.

        A missing length leaves that region spanning the whole sequence.
        """
        n = len(sequence)
        return cls(
            id=id,
            sequence=sequence,
            group=group,
            allowed_fw_start=1,
            allowed_fw_end=min(fw_length, n) if fw_length is not None else None,
            allowed_rev_start=max(1, n - rev_length + 1) if rev_length is not None else None,
            allowed_rev_end=None,
        )

    @property
    def fw_interval(self) -> tuple[int, int]:
        end = self.allowed_fw_end if self.allowed_fw_end is not None else len(self)
        return self.allowed_fw_start, end

    @property
    def rev_interval(self) -> tuple[int, int]:
        start = self.allowed_rev_start if self.allowed_rev_start is not None else 1
        end = self.allowed_rev_end if self.allowed_rev_end is not None else len(self)
        return start, end

    def interval(self, direction: str) -> tuple[int, int]:
        return self.fw_interval if direction == "fw" else self.rev_interval

    def region(self, direction: str) -> str:
        """Template substring of the allowed binding interval (forward strand)."""
        start, end = self.interval(direction)
        return self.sequence[start - 1 : end]

    def validate(self) -> list[str]:
        """
        Check the template invariants.

        Returns:
            A list of problems; empty if the template is usable.
        """
        problems = []
        if not self.sequence:
            problems.append("empty sequence")
        invalid = sorted(set(self.sequence) - IUPAC_CODES.keys())
        if invalid:
            problems.append(f"invalid symbol(s): {', '.join(invalid)}")
        for direction in ("fw", "rev"):
            start, end = self.interval(direction)
            if start < 1 or end > len(self) or start > end:
                problems.append(
                    f"{direction} interval [{start}, {end}] outside sequence of length {len(self)}"
                )
        return problems
