# ================================================================================
# Tabular input and output for the command line
#
# Templates and primers are read from CSV with pandas and validated row by row
# with pydantic. Results are written as CSV files. The design engine itself
# never touches files.
# ================================================================================

from __future__ import annotations

import json
import math
from pathlib import Path

import pandas as pd
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from coverplex.designer.primer import Primer
from coverplex.designer.template import Template

# ================================================================================
# Pydantic models for input validation
# ================================================================================


def _none_if_missing(value):
    """pandas reports empty cells as NaN and numbers as numpy scalars."""
    if hasattr(value, "item"):
        value = value.item()
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return value


class TemplateInput(BaseModel):
    """
    Schema for validating template input from CSV.

    Allowed regions are given either as explicit 1-based bounds or as region
    lengths anchored at the template ends, not both.
    """

    id: str = Field(alias="ID")
    sequence: str = Field(alias="Sequence")
    group: str = Field(default="default", alias="Group")
    allowed_fw_start: int = Field(default=1, ge=1, alias="Allowed_Start_fw")
    allowed_fw_end: int | None = Field(default=None, ge=1, alias="Allowed_End_fw")
    allowed_rev_start: int | None = Field(default=None, ge=1, alias="Allowed_Start_rev")
    allowed_rev_end: int | None = Field(default=None, ge=1, alias="Allowed_End_rev")
    region_length_fw: int | None = Field(default=None, ge=1, alias="Region_Length_fw")
    region_length_rev: int | None = Field(default=None, ge=1, alias="Region_Length_rev")

    @field_validator(
        "group",
        "allowed_fw_start",
        "allowed_fw_end",
        "allowed_rev_start",
        "allowed_rev_end",
        "region_length_fw",
        "region_length_rev",
        mode="before",
    )
    @classmethod
    def empty_cells(cls, value, info):
        value = _none_if_missing(value)
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @model_validator(mode="after")
    def one_region_form(self):
        uses_lengths = self.region_length_fw is not None or self.region_length_rev is not None
        uses_bounds = self.allowed_fw_start != 1 or any(
            v is not None
            for v in (self.allowed_fw_end, self.allowed_rev_start, self.allowed_rev_end)
        )
        if uses_lengths and uses_bounds:
            raise ValueError("Give either region lengths or allowed bounds, not both")
        return self

    def to_template(self) -> Template:
        if self.region_length_fw is not None or self.region_length_rev is not None:
            return Template.from_region_lengths(
                id=str(self.id),
                sequence=self.sequence.strip(),
                fw_length=self.region_length_fw,
                rev_length=self.region_length_rev,
                group=str(self.group),
            )
        return Template(
            id=str(self.id),
            sequence=self.sequence.strip(),
            group=str(self.group),
            allowed_fw_start=self.allowed_fw_start,
            allowed_fw_end=self.allowed_fw_end,
            allowed_rev_start=self.allowed_rev_start,
            allowed_rev_end=self.allowed_rev_end,
        )


class PrimerInput(BaseModel):
    """Schema for validating primer input from CSV."""

    id: str = Field(alias="ID")
    sequence: str = Field(alias="Sequence")
    direction: str = Field(default="fw", alias="Direction")

    @field_validator("direction", mode="before")
    @classmethod
    def empty_direction(cls, value):
        value = _none_if_missing(value)
        return "fw" if value is None else value

    @field_validator("direction")
    @classmethod
    def known_direction(cls, value: str) -> str:
        if value not in ("fw", "rev"):
            raise ValueError(f"Direction must be 'fw' or 'rev', got '{value}'")
        return value

    def to_primer(self) -> Primer:
        return Primer(name=str(self.id), seq=self.sequence.strip().upper(), direction=self.direction)


def read_templates_csv(file_path: str | Path) -> list[Template]:
    """
    Import templates from a CSV file.

    Raises:
        ValueError: If a row fails validation.
    """
    df = pd.read_csv(file_path, dtype={"ID": str, "Group": str})
    templates = []
    for i, row in df.iterrows():
        try:
            templates.append(TemplateInput(**row.to_dict()).to_template())
        except ValidationError as e:
            logger.error(f"Invalid template data at row {i}: {e}")
            raise ValueError(f"Invalid template data at row {i}") from e
    logger.info(f"Successfully imported {len(templates)} templates from {file_path}")
    return templates


def read_primers_csv(file_path: str | Path) -> list[Primer]:
    """
    Import primers from a CSV file with columns ID, Sequence, Direction.

    Raises:
        ValueError: If a row fails validation.
    """
    df = pd.read_csv(file_path, dtype={"ID": str})
    primers = []
    for i, row in df.iterrows():
        try:
            primers.append(PrimerInput(**row.to_dict()).to_primer())
        except ValidationError as e:
            logger.error(f"Invalid primer data at row {i}: {e}")
            raise ValueError(f"Invalid primer data at row {i}") from e
    logger.info(f"Successfully imported {len(primers)} primers from {file_path}")
    return primers


def write_frames(frames: dict[str, pd.DataFrame], output_dir: str | Path) -> list[Path]:
    """Write each DataFrame to <output_dir>/<name>.csv."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, df in frames.items():
        path = output_dir / f"{name}.csv"
        df.to_csv(path, index=False)
        written.append(path)
        logger.info(f"Saved {name} ({len(df)} rows) to {path}")
    return written


def write_summary(summary: dict, output_dir: str | Path) -> Path:
    path = Path(output_dir) / "design_summary.json"
    with open(path, "w") as f:
        json.dump(summary, f, indent=2, default=str)
    logger.info(f"Saved run summary to {path}")
    return path
