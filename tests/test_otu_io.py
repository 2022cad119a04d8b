"""Tests for OTU count files, generations and cohort compilation."""

import pytest
import yaml

from otu_pipeline.exceptions import OtuFileError, OtuPipelineError
from otu_pipeline.otu import (
    PROVENANCE_FILE,
    SUMMARY_FILE,
    compile_cohort,
    count_file_name,
    read_cohort,
    read_count_file,
    sample_id_from_count_file,
    write_count_file,
    write_generation,
)

COHORT = {
    "S1": {"d__Bacteria;p__Firmicutes": 10, "d__Bacteria;p__Bacteroidetes": 5},
    "S2": {"d__Bacteria;p__Firmicutes": 3},
    "S3": {"d__Archaea": 1, "d__Bacteria;p__Bacteroidetes": 2, "d__Bacteria;p__Firmicutes": 4},
}


def test_count_file_names(tmp_path):
    assert count_file_name("S1") == "otuCount_S1.tsv"
    assert count_file_name("S1", "min2") == "min2_otuCount_S1.tsv"
    assert sample_id_from_count_file(tmp_path / "min2_otuCount_S_1.tsv") == "S_1"


def test_count_file_sorted_round_trip(tmp_path):
    path = tmp_path / "otuCount_S1.tsv"

    write_count_file(path, COHORT["S1"])

    assert path.read_text() == (
        "d__Bacteria;p__Bacteroidetes\t5\n"
        "d__Bacteria;p__Firmicutes\t10\n"
    )
    assert read_count_file(path) == COHORT["S1"]


@pytest.mark.parametrize("content,line_number", [
    ("d__Bacteria\t5\nd__Archaea\n", 2),
    ("d__Bacteria\t5\t6\n", 1),
    ("d__Bacteria\tfive\n", 1),
    ("d__Bacteria\t5\nd__Bacteria\t6\n", 2),
    ("d__Bacteria\t5\nd__Archaea\t-5\n", 2),
])
def test_malformed_count_file(tmp_path, content, line_number):
    path = tmp_path / "otuCount_S1.tsv"
    path.write_text(content)

    with pytest.raises(OtuFileError) as exc_info:
        read_count_file(path)

    assert exc_info.value.line_number == line_number
    assert "otuCount_S1.tsv" in str(exc_info.value)


def test_read_cohort_requires_count_files(tmp_path):
    (tmp_path / "notes.txt").write_text("nothing here\n")

    with pytest.raises(OtuFileError, match="No OTU count files"):
        read_cohort(tmp_path)


def test_read_cohort_rejects_two_files_per_sample(tmp_path):
    write_count_file(tmp_path / "otuCount_S1.tsv", {"d__Bacteria": 1})
    write_count_file(tmp_path / "min2_otuCount_S1.tsv", {"d__Bacteria": 1})

    with pytest.raises(OtuFileError, match="more than one"):
        read_cohort(tmp_path)


def test_compile_cohort():
    summary = compile_cohort(COHORT)

    assert summary.summary == {
        "d__Archaea": 1,
        "d__Bacteria;p__Bacteroidetes": 7,
        "d__Bacteria;p__Firmicutes": 17,
    }
    assert summary.unique_otus == {"S1": 2, "S2": 1, "S3": 3}
    assert summary.min_unique == ("S2", 1)
    assert summary.max_unique == ("S3", 3)
    assert summary.totals["S1"] == 15
    assert summary.statistics()["total_count"] == 25


def test_compile_cohort_ties_pick_smallest_id():
    summary = compile_cohort({"B": {"x": 1}, "A": {"y": 1}})

    assert summary.min_unique == ("A", 1)
    assert summary.max_unique == ("A", 1)


def test_compile_empty_cohort():
    summary = compile_cohort({})

    assert summary.min_unique is None
    assert summary.statistics() == {"samples": 0, "unique_otus": 0, "total_count": 0}


def test_write_generation(tmp_path):
    output_dir = tmp_path / "min2"

    paths = write_generation(
        output_dir,
        COHORT,
        stage="filter_low",
        tag="min2",
        details={"min_count": 2},
        audit_files={"lowCountOtus.txt": ["S3: d__Archaea"]},
    )

    assert paths["dir"] == output_dir
    assert sorted(p.name for p in output_dir.iterdir()) == [
        PROVENANCE_FILE,
        "lowCountOtus.txt",
        "min2_otuCount_S1.tsv",
        "min2_otuCount_S2.tsv",
        "min2_otuCount_S3.tsv",
        SUMMARY_FILE,
    ]
    assert read_cohort(output_dir) == COHORT
    assert (output_dir / "lowCountOtus.txt").read_text() == "S3: d__Archaea\n"

    with open(paths["provenance"]) as f:
        provenance = yaml.safe_load(f)
    assert provenance["stage"] == "filter_low"
    assert provenance["tag"] == "min2"
    assert provenance["details"] == {"min_count": 2}
    assert provenance["statistics"]["samples"] == 3
    assert provenance["audit_files"] == ["lowCountOtus.txt"]


def test_write_generation_refuses_existing(tmp_path):
    output_dir = tmp_path / "parsed"
    write_generation(output_dir, COHORT, stage="parse")

    with pytest.raises(OtuPipelineError, match="already exists"):
        write_generation(output_dir, {"S9": {"d__Bacteria": 1}}, stage="parse")

    write_generation(output_dir, {"S9": {"d__Bacteria": 1}}, stage="parse", overwrite=True)
    assert read_cohort(output_dir) == {"S9": {"d__Bacteria": 1}}


def test_write_generation_leaves_nothing_on_failure(tmp_path):
    output_dir = tmp_path / "parsed"

    with pytest.raises(TypeError):
        write_generation(output_dir, {"S1": {"d__Bacteria": None}}, stage="parse")

    assert not output_dir.exists()
    assert list(tmp_path.iterdir()) == []
