# ================================================================================
# Tests for CSV input and output
# ================================================================================

import json

import pandas as pd
import pytest

from coverplex.tables import read_primers_csv, read_templates_csv, write_frames, write_summary

SEQ = "ACGT" * 25


def _write(tmp_path, rows):
    path = tmp_path / "templates.csv"
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


class TestReadTemplates:
    def test_explicit_bounds_and_empty_cells(self, tmp_path):
        path = _write(
            tmp_path,
            [
                {"ID": "T1", "Sequence": SEQ, "Group": "g1", "Allowed_Start_fw": 5, "Allowed_End_fw": 40},
                {"ID": "T2", "Sequence": SEQ, "Group": None, "Allowed_Start_fw": None, "Allowed_End_fw": None},
            ],
        )
        t1, t2 = read_templates_csv(path)
        assert t1.fw_interval == (5, 40)
        assert t2.group == "default"
        assert t2.fw_interval == (1, 100)

    def test_region_lengths(self, tmp_path):
        path = _write(
            tmp_path,
            [
                {"ID": "T1", "Sequence": SEQ, "Region_Length_fw": 30, "Region_Length_rev": 25},
                {"ID": "T2", "Sequence": SEQ, "Region_Length_fw": 150, "Region_Length_rev": None},
            ],
        )
        t1, t2 = read_templates_csv(path)
        assert t1.fw_interval == (1, 30)
        assert t1.rev_interval == (76, 100)
        assert t2.fw_interval == (1, 100)
        assert t2.rev_interval == (1, 100)

    def test_lengths_and_bounds_exclude_each_other(self, tmp_path):
        path = _write(
            tmp_path,
            [{"ID": "T1", "Sequence": SEQ, "Allowed_End_fw": 40, "Region_Length_rev": 25}],
        )
        with pytest.raises(ValueError, match="row 0"):
            read_templates_csv(path)


class TestReadPrimers:
    def test_sequences_are_normalised(self, tmp_path):
        path = tmp_path / "primers.csv"
        path.write_text("ID,Sequence,Direction\n1,acgtacgtac ,rev\n2,GGCC,\n")
        p1, p2 = read_primers_csv(path)
        assert (p1.name, p1.seq, p1.direction) == ("1", "ACGTACGTAC", "rev")
        assert p2.direction == "fw"


def test_write_frames_and_summary(tmp_path):
    frames = {"subsets": pd.DataFrame([{"Size": 1, "Primers": "p1"}])}
    written = write_frames(frames, tmp_path / "out")
    assert [p.name for p in written] == ["subsets.csv"]
    path = write_summary({"target_met": True}, tmp_path / "out")
    assert json.loads(path.read_text()) == {"target_met": True}
