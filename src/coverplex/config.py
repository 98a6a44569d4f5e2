# ================================================================================
# Configuration models for coverage-driven primer design
#
# Uses Pydantic for runtime validation of configuration parameters. Settings are
# frozen: the relaxation controller derives new snapshots with model_copy()
# instead of mutating a shared object.
# ================================================================================

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, model_validator

from coverplex.utils.root_dir import ROOT_DIR

# Constraints checked on single primers by the constraint checker
PRIMER_CONSTRAINTS = (
    "primer_length",
    "gc_ratio",
    "gc_clamp",
    "no_runs",
    "no_repeats",
    "melting_temp_range",
    "self_dimerization",
    "secondary_structure",
    "primer_coverage",
)

# Constraints applied to individual binding events by the coverage model
COVERAGE_CONSTRAINTS = (
    "annealing_DeltaG",
    "terminal_mismatch_pos",
)

# Constraints on the selected primer set as a whole
SET_CONSTRAINTS = (
    "cross_dimerization",
    "melting_temp_diff",
)

ALL_CONSTRAINTS = PRIMER_CONSTRAINTS + COVERAGE_CONSTRAINTS + SET_CONSTRAINTS

COVERAGE_RULES = ("identity", "mismatch_threshold", "probabilistic")


class ConstraintRange(BaseModel):
    """A closed [min, max] range; a missing bound is unbounded on that side."""

    model_config = ConfigDict(frozen=True)

    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def validate_order(self) -> ConstraintRange:
        """Validate that min <= max."""
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(
                f"Constraint range must satisfy min ({self.min}) <= max ({self.max})"
            )
        return self

    def contains_range(self, other: ConstraintRange) -> bool:
        """True if `other` lies entirely inside this range."""
        if self.min is not None and (other.min is None or other.min < self.min):
            return False
        if self.max is not None and (other.max is None or other.max > self.max):
            return False
        return True

    def __str__(self) -> str:
        lo = "-inf" if self.min is None else f"{self.min:g}"
        hi = "inf" if self.max is None else f"{self.max:g}"
        return f"[{lo}, {hi}]"


class CoverageModelParameters(BaseModel):
    """Coverage rule selection and its thresholds."""

    model_config = ConfigDict(frozen=True)

    rule: Literal["identity", "mismatch_threshold", "probabilistic"] = Field(
        default="mismatch_threshold",
        description="Coverage rule deciding whether a binding event amplifies.",
    )

    # Probabilistic rule
    confidence_threshold: float = Field(
        default=0.5,
        ge=0.0,
        lt=1.0,
        description="Minimum amplification probability (exclusive).",
    )
    intercept: float = Field(default=4.0, gt=0.0)
    ddg_coefficient: float = Field(
        default=0.9,
        ge=0.0,
        description="Weight of the duplex destabilisation (kcal/mol) caused by mismatches.",
    )
    terminal_coefficient: float = Field(
        default=2.0,
        ge=0.0,
        description="Weight of each mismatch inside the 3' terminal window.",
    )
    terminal_window: int = Field(default=3, ge=1, le=10)


class DesignOptions(BaseModel):
    """Option flags for binding, degeneracy, relaxation and optimization."""

    model_config = ConfigDict(frozen=True)

    allowed_mismatches: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Maximum mismatches for a binding event to be considered at all.",
    )
    allowed_other_binding_ratio: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Maximum fraction of bound templates with off-region binding. None disables the check.",
    )
    allowed_region_definition: Literal["within", "any"] = Field(
        default="within",
        description="'within': binding must lie inside the allowed region; 'any': overlap suffices.",
    )

    # Tree initialization
    max_degeneracy_per_position: int = Field(default=2, ge=1, le=4)
    max_degeneracy: int = Field(default=16, ge=1, le=4096)

    # Relaxation
    relaxation_steps: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Number of relaxation steps needed to reach a constraint's boundary.",
    )
    max_relaxation_iterations: int = Field(default=20, ge=1, le=1000)

    # Melting temperature window sweep
    tm_window_step: float = Field(default=1.0, gt=0.0, le=10.0)

    # Optimization / evaluation resources
    ilp_time_limit: float = Field(default=60.0, gt=0.0)
    workers: int = Field(default=4, ge=1, le=256)


class PCRConditions(BaseModel):
    """PCR reaction conditions for thermodynamic calculations."""

    model_config = ConfigDict(frozen=True)

    annealing_temperature: float = Field(default=55.0, ge=40.0, le=72.0)
    primer_concentration: float = Field(default=50.0, ge=1.0, le=1000.0)  # nM
    template_concentration: float = Field(default=0.5, ge=0.0, le=1000.0)  # nM
    dntp_concentration: float = Field(default=0.8, ge=0.0, le=10.0)  # mM
    mv_concentration: float = Field(default=50.0, ge=0.0, le=500.0)  # mM (monovalent)
    dv_concentration: float = Field(default=1.5, ge=0.0, le=50.0)  # mM (divalent)
    dmso_concentration: float = Field(default=0.0, ge=0.0, le=20.0)  # %
    dmso_fact: float = Field(default=0.6, ge=0.0, le=1.0)
    formamide_concentration: float = Field(default=0.0, ge=0.0, le=10.0)  # M


class DesignSettings(BaseModel):
    """Complete, immutable settings snapshot for one design or analysis run."""

    model_config = ConfigDict(frozen=True)

    constraints: dict[str, ConstraintRange] = Field(default_factory=dict)
    constraint_limits: dict[str, ConstraintRange] = Field(default_factory=dict)
    coverage_model: CoverageModelParameters = Field(
        default_factory=CoverageModelParameters
    )
    options: DesignOptions = Field(default_factory=DesignOptions)
    pcr_conditions: PCRConditions = Field(default_factory=PCRConditions)

    @model_validator(mode="after")
    def validate_constraint_names(self) -> DesignSettings:
        """Reject unknown constraint names in constraints and limits."""
        for section in ("constraints", "constraint_limits"):
            unknown = sorted(set(getattr(self, section)) - set(ALL_CONSTRAINTS))
            if unknown:
                raise ValueError(
                    f"Unknown constraint(s) in {section}: {', '.join(unknown)}. "
                    f"Known: {', '.join(ALL_CONSTRAINTS)}"
                )
        return self

    @model_validator(mode="after")
    def validate_limits(self) -> DesignSettings:
        """Each relaxation boundary must belong to an active constraint and enclose it."""
        for name, limit in self.constraint_limits.items():
            if name not in self.constraints:
                raise ValueError(
                    f"Relaxation boundary given for inactive constraint '{name}'"
                )
            if not limit.contains_range(self.constraints[name]):
                raise ValueError(
                    f"Relaxation boundary {limit} for '{name}' is narrower than "
                    f"the nominal range {self.constraints[name]}"
                )
        return self

    @model_validator(mode="after")
    def validate_primer_length(self) -> DesignSettings:
        """The primer length constraint drives candidate generation and must be closed."""
        length = self.constraints.get("primer_length")
        if length is None or length.min is None or length.max is None:
            raise ValueError("'primer_length' must be set with both min and max")
        if length.min < 1:
            raise ValueError("'primer_length' min must be at least 1")
        return self

    # ------------------------------------------------------------------
    # Convenience accessors
    # ------------------------------------------------------------------

    def active(self, names: tuple[str, ...]) -> dict[str, ConstraintRange]:
        """Active constraints restricted to the given names, in canonical order."""
        return {n: self.constraints[n] for n in names if n in self.constraints}

    def length_bounds(self) -> tuple[int, int]:
        """Widest primer length range candidates may ever need (nominal or boundary)."""
        rng = self.constraint_limits.get("primer_length", self.constraints["primer_length"])
        lo = rng.min if rng.min is not None else self.constraints["primer_length"].min
        hi = rng.max if rng.max is not None else self.constraints["primer_length"].max
        return int(lo), int(hi)

    def with_constraints(self, constraints: dict[str, ConstraintRange]) -> DesignSettings:
        """Return a copy of these settings with replaced constraint ranges."""
        return self.model_copy(update={"constraints": dict(constraints)})

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    @classmethod
    def from_json_file(cls, file_path: str | Path) -> DesignSettings:
        """
        Load settings from a JSON file.

        Parameters
        ----------
        file_path : str | Path
            Path to the JSON settings file.

        Returns
        -------
        DesignSettings
            Validated settings object.

        Raises
        ------
        FileNotFoundError
            If the settings file does not exist.
        ValidationError
            If the settings fail validation.
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path) as f:
            data = json.load(f)

        return cls.model_validate(data)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> DesignSettings:
        """Load settings from a dictionary, raising ValidationError if invalid."""
        return cls.model_validate(config_dict)

    @classmethod
    def from_preset(
        cls, preset: Literal["default", "lenient"] = "default"
    ) -> DesignSettings:
        """
        Load a preset configuration.

        Parameters
        ----------
        preset : str
            Preset name, either "default" or "lenient".

        Raises
        ------
        ValueError
            If the preset name is not recognized.
        """
        if preset not in ("default", "lenient"):
            raise ValueError(f"Unknown preset: {preset}. Use 'default' or 'lenient'.")

        return cls.from_json_file(Path(ROOT_DIR) / "data" / f"{preset}_settings.json")

    def to_dict(self) -> dict[str, Any]:
        """Export settings to a dictionary."""
        return self.model_dump(mode="json")

    def to_json_file(self, file_path: str | Path) -> None:
        """Save settings to a JSON file."""
        path = Path(file_path)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=4)
        logger.info(f"Settings saved to: {path}")


def load_config(
    preset: str = "default",
    config_path: str | Path | None = None,
) -> DesignSettings:
    """
    Load and validate design settings.

    Priority order: config_path > preset

    Raises
    ------
    ValidationError
        If the settings fail validation.
    FileNotFoundError
        If the specified settings file does not exist.
    """
    if config_path is not None:
        logger.info(f"Loading settings from: {config_path}")
        return DesignSettings.from_json_file(config_path)

    if preset not in ("default", "lenient"):
        logger.warning(
            f"Preset value `{preset}` must be either 'default' or 'lenient'. Using default instead."
        )
        preset = "default"

    logger.info(f"Loading preset settings: {preset}")
    return DesignSettings.from_preset(preset)  # type: ignore[arg-type]
