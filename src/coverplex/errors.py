# ================================================================================
# Exceptions and per-entity input issues
# ================================================================================

from dataclasses import dataclass


class CoverplexError(Exception):
    """Base exception for coverplex."""

    pass


class OptimizerError(CoverplexError):
    """Raised when the exact optimizer cannot produce a solution."""

    pass


@dataclass(frozen=True)
class InputIssue:
    """
    A non-fatal problem with a single input entity.

        entity: Template or primer identifier (or "templates" for the pool)
        message: Human-readable description
    """

    entity: str
    message: str

    def __str__(self) -> str:
        return f"{self.entity}: {self.message}"

    def to_record(self) -> dict:
        return {"Entity": self.entity, "Message": self.message}
