"""Shared pytest fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from coverplex.config import DesignSettings
from coverplex.coverage.stats import CoverageMatrix
from coverplex.designer.template import Template

# 20-mer present in both scenario templates
SHARED_SITE = "ACGTACGGTCAGTCCATGCA"


def make_settings(
    constraints: dict | None = None,
    limits: dict | None = None,
    rule: str = "identity",
    **options,
) -> DesignSettings:
    """Small settings snapshot; only primer_length is active unless given."""
    base = {"primer_length": {"min": 20, "max": 20}}
    base.update(constraints or {})
    opts = {"workers": 1}
    opts.update(options)
    return DesignSettings.from_dict(
        {
            "constraints": base,
            "constraint_limits": limits or {},
            "coverage_model": {"rule": rule},
            "options": opts,
        }
    )


def make_matrix(columns: dict[str, set[int]], n_templates: int, conflicts=None) -> CoverageMatrix:
    """Coverage matrix from primer name -> covered template numbers (1-based)."""
    matrix = np.zeros((n_templates, len(columns)), dtype=bool)
    for j, covered in enumerate(columns.values()):
        for t in covered:
            matrix[t - 1, j] = True
    return CoverageMatrix(
        matrix=matrix,
        template_ids=[f"t{i}" for i in range(1, n_templates + 1)],
        primer_names=list(columns),
        penalties=np.zeros(len(columns)),
        conflicts=list(conflicts or []),
    )


@pytest.fixture
def identity_settings() -> DesignSettings:
    return make_settings()


@pytest.fixture
def shared_site_templates() -> list[Template]:
    """Two 60-base templates sharing one 20-mer inside the forward region [1, 30]."""
    t1 = SHARED_SITE + "GATTACAGATTACAGATTACAGATTACAGATTACAGATTA"
    t2 = "CCTGA" + SHARED_SITE + "TTGCATTGCATTGCATTGCATTGCATTGCATTGCA"
    return [
        Template(id="T1", sequence=t1, allowed_fw_start=1, allowed_fw_end=30),
        Template(id="T2", sequence=t2, allowed_fw_start=1, allowed_fw_end=30),
    ]


@pytest.fixture
def disjoint_templates() -> list[Template]:
    """Three templates without a common 20-mer; the last one is pure A/T."""
    return [
        Template(id="T1", sequence="ACGT" * 10, group="g1"),
        Template(id="T2", sequence="AGCT" * 10, group="g1"),
        Template(id="T3", sequence="AT" * 20, group="g2"),
    ]
