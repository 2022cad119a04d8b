"""Tests for classifier report adapters."""

import pytest

from otu_pipeline.exceptions import DuplicateSampleError, ParseError
from otu_pipeline.parsers import (
    FormatKind,
    MatrixFlavor,
    ParseContext,
    SampleIdMap,
    group_input_files,
    parse_cohort,
    parse_sample_file,
    sample_id_from_file,
)
from otu_pipeline.parsers import lineage, matrix, per_level, score_gated
from otu_pipeline.parsers.lineage import SUBRANK
from otu_pipeline.taxonomy import TaxonomyLevels

ORDER_LEVELS = TaxonomyLevels(("domain", "phylum", "class", "order"))


def rdp_line(read_id, *triplets):
    """Build an RDP line from (name, rank, confidence) triplets."""
    tokens = [read_id, ""]
    for name, rank, confidence in triplets:
        tokens.extend([name, rank, confidence])
    return "\t".join(tokens) + "\n"


RDP_TRIPLETS = [
    ("Root", "rootrank", "1.0"),
    ("Bacteria", "domain", "1.0"),
    ("Bacteroidetes", "phylum", "1.0"),
    ("Bacteroidia", "class", "1.0"),
    ("Bacteroidales", "order", "0.82"),
]


def parse_counts(paths, context):
    return {sample.sample_id: sample.otu_counts() for sample in parse_sample_file(paths, context)}


# ============================================================================
# Sample ids
# ============================================================================

@pytest.mark.parametrize("name,expected", [
    ("S1_reported.tsv", "S1"),
    ("S2.kraken.gz", "S2"),
    ("S3.txt", "S3"),
    ("_reported.tsv", "_reported"),
])
def test_sample_id_from_file(tmp_path, name, expected):
    assert sample_id_from_file(tmp_path / name) == expected


# ============================================================================
# Score-gated (RDP)
# ============================================================================

@pytest.mark.parametrize("token,score", [
    ("1.0", 100), ("1", 100), ("0.82", 82), ("0.", 0), ("0", 0), ("0.999", 100),
])
def test_confidence_score(token, score):
    assert score_gated.confidence_score(token) == score


@pytest.mark.parametrize("token", ["1.5", "-0.2", "abc", "82"])
def test_confidence_score_rejects_invalid(token):
    with pytest.raises(ParseError, match="confidence"):
        score_gated.confidence_score(token)


def test_rdp_threshold_80_accepts_all_ranks():
    context = ParseContext(kind=FormatKind.SCORE_GATED, levels=ORDER_LEVELS, rdp_threshold=80)

    assignment = score_gated.parse_line(rdp_line("read_1", *RDP_TRIPLETS), "S1", context)

    assert assignment.taxa == {
        "domain": "Bacteria",
        "phylum": "Bacteroidetes",
        "class": "Bacteroidia",
        "order": "Bacteroidales",
    }
    assert assignment.score == 82
    assert assignment.count == 1


def test_rdp_threshold_85_stops_at_low_confidence_rank():
    context = ParseContext(kind=FormatKind.SCORE_GATED, levels=ORDER_LEVELS, rdp_threshold=85)

    assignment = score_gated.parse_line(rdp_line("read_1", *RDP_TRIPLETS), "S1", context)

    assert list(assignment.taxa) == ["domain", "phylum", "class"]
    assert assignment.score == 100


def test_rdp_low_confidence_top_rank_discards_record():
    context = ParseContext(kind=FormatKind.SCORE_GATED, levels=ORDER_LEVELS, rdp_threshold=80)
    line = rdp_line(
        "read_1",
        ("Bacteria", "domain", "0.5"),
        ("Bacteroidetes", "phylum", "1.0"),
    )

    assert score_gated.parse_line(line, "S1", context) is None


def test_rdp_file_aggregates_reads(tmp_path):
    report = tmp_path / "S1_reported.tsv"
    report.write_text(
        rdp_line("read_1", *RDP_TRIPLETS)
        + rdp_line("read_2", *RDP_TRIPLETS)
        + rdp_line("read_3", *RDP_TRIPLETS[:3])
    )
    context = ParseContext(kind=FormatKind.SCORE_GATED, levels=ORDER_LEVELS)

    counts = parse_counts([report], context)

    assert counts == {"S1": {
        "d__Bacteria;p__Bacteroidetes": 1,
        "d__Bacteria;p__Bacteroidetes;c__Bacteroidia;o__Bacteroidales": 2,
    }}


def test_rdp_reads_below_threshold_logged_once_per_file(tmp_path, capsys):
    report = tmp_path / "S1_reported.tsv"
    report.write_text("".join(
        rdp_line(f"read_{i}", ("Bacteria", "domain", "0.10")) for i in range(500)
    ))
    context = ParseContext(kind=FormatKind.SCORE_GATED, levels=ORDER_LEVELS, rdp_threshold=80)

    assert parse_counts([report], context) == {}

    output = capsys.readouterr().out
    assert len(output.splitlines()) <= 2
    assert "read_" not in output


# ============================================================================
# Lineage grammars (Kraken, MetaPhlAn, Kraken2)
# ============================================================================

def test_split_lineage_kingdom_below_domain_is_subrank():
    tokens = lineage.split_lineage("d__Eukaryota|k__Fungi|p__Ascomycota")

    assert tokens == [("domain", "Eukaryota"), (SUBRANK, "Fungi"), ("phylum", "Ascomycota")]


def test_split_lineage_kingdom_alone_is_domain():
    assert lineage.split_lineage("k__Bacteria|p__Firmicutes") == [
        ("domain", "Bacteria"), ("phylum", "Firmicutes"),
    ]


def test_read_line_requires_two_columns():
    context = ParseContext(kind=FormatKind.READ_LINEAGE, levels=ORDER_LEVELS)

    with pytest.raises(ParseError, match="exactly 2"):
        lineage.parse_read_line("read_1\td__Bacteria\textra\n", "S1", context, line_number=3)


def test_kraken_read_file(tmp_path):
    report = tmp_path / "S1.kraken"
    report.write_text(
        "read_1\td__Bacteria|p__Firmicutes|c__Bacilli\n"
        "read_2\td__Bacteria|p__Firmicutes|c__Bacilli\n"
        "read_3\td__Bacteria|c__Clostridia\n"
        "read_4\tp__Firmicutes\n"
    )
    context = ParseContext(kind=FormatKind.READ_LINEAGE, levels=ORDER_LEVELS)

    counts = parse_counts([report], context)

    assert counts == {"S1": {
        "d__Bacteria;p__Firmicutes;c__Bacilli": 2,
        "d__Bacteria;p__Unclassified Bacteria Domain;c__Clostridia": 1,
    }}


def test_cumulative_example_bottom_order(tmp_path):
    """A MetaPhlAn clade at the bottom rank keeps its whole count."""
    report = tmp_path / "S1.txt"
    report.write_text(
        "#SampleID\tMetaphlan2_Analysis\n"
        "d__Bacteria\t20094\n"
        "d__Bacteria|p__Bacteroidetes\t20094\n"
        "d__Bacteria|p__Bacteroidetes|c__Bacteroidia\t20094\n"
        "d__Bacteria|p__Bacteroidetes|c__Bacteroidia|o__Bacteroidales\t20094\n"
        "d__Bacteria|p__Bacteroidetes|c__Bacteroidia|o__Bacteroidales|f__Bacteroidaceae\t20094\n"
    )
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    counts = parse_counts([report], context)

    assert counts == {"S1": {
        "d__Bacteria;p__Bacteroidetes;c__Bacteroidia;o__Bacteroidales": 20094,
    }}


def test_cumulative_single_line_example(tmp_path):
    report = tmp_path / "S1.txt"
    report.write_text("d__Bacteria|p__Bacteroidetes|c__Bacteroidia|o__Bacteroidales\t20094\n")
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    assert parse_counts([report], context) == {"S1": {
        "d__Bacteria;p__Bacteroidetes;c__Bacteroidia;o__Bacteroidales": 20094,
    }}


def test_cumulative_discards_strain_and_subrank_lines():
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    assert lineage.parse_cumulative_line("k__Bacteria|t__strain\t5\n", "S1", context) is None
    assert lineage.parse_cumulative_line("d__Eukaryota|k__Fungi\t5\n", "S1", context) is None
    assert lineage.parse_cumulative_line("d__Bacteria\t0\n", "S1", context) is None


def test_cumulative_truncates_fractional_counts():
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    assignment = lineage.parse_cumulative_line(
        "k__Bacteria|p__Firmicutes\t0.9\t12.7\n", "S1", context
    )

    assert assignment.count == 12
    assert assignment.taxa == {"domain": "Bacteria", "phylum": "Firmicutes"}


def test_cumulative_non_numeric_count(tmp_path):
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    with pytest.raises(ParseError) as exc_info:
        lineage.parse_cumulative_line("d__Bacteria\tmany\n", "S1", context, tmp_path / "S1.txt", 4)

    assert exc_info.value.line_number == 4
    assert "S1.txt:4" in str(exc_info.value)


def test_kraken2_report_redistributes_remainders(tmp_path):
    report = tmp_path / "S2.kreport"
    report.write_text(
        "d__Bacteria\t100\n"
        "d__Bacteria|p__Firmicutes\t60\n"
        "d__Bacteria|p__Firmicutes|c__Bacilli|o__Lactobacillales\t50\n"
    )
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    counts = parse_counts([report], context)["S2"]

    assert sum(counts.values()) == 100
    assert counts["d__Bacteria;p__Firmicutes;c__Bacilli;o__Lactobacillales"] == 50


# ============================================================================
# Per-level files (SLIMM)
# ============================================================================

SLIMM_HEADER = "No.\tName\tTaxid\tNoOfReads\tRelativeAbundance\tContributers\tCoverage\n"


def test_level_file_info(tmp_path):
    context = ParseContext(kind=FormatKind.PER_LEVEL_FILE, levels=ORDER_LEVELS)

    assert per_level.level_file_info(tmp_path / "7A_1_phylum_reported.tsv", context) == (
        "7A_1", "phylum"
    )
    assert per_level.level_file_info(tmp_path / "7A_1_genus_reported.tsv", context) is None
    assert per_level.level_file_info(tmp_path / "notes.txt", context) is None


def test_per_level_non_integer_count():
    with pytest.raises(ParseError, match="Non-integer"):
        per_level.parse_line("1\tBacteroidetes\t976\tlots\n", "S1", "phylum")


def test_slimm_files_grouped_by_sample(tmp_path):
    (tmp_path / "S1_phylum_reported.tsv").write_text(
        SLIMM_HEADER
        + "1\tBacteroidetes\t976\t1137994\t29.7589\t17\t24.7204\n"
        + "2\tFirmicutes\t1239\t500\t0.1\t3\t1.0\n"
    )
    (tmp_path / "S1_class_reported.tsv").write_text(
        SLIMM_HEADER + "1\tBacteroidia\t200643\t1137000\t29.7\t17\t24.7\n"
    )
    (tmp_path / "S2_phylum_reported.tsv").write_text(
        SLIMM_HEADER + "1\tFirmicutes\t1239\t42\t0.1\t3\t1.0\n"
    )
    (tmp_path / "S2_genus_reported.tsv").write_text(SLIMM_HEADER)
    context = ParseContext(kind=FormatKind.PER_LEVEL_FILE, levels=ORDER_LEVELS)

    groups = group_input_files(tmp_path, context)
    samples = parse_cohort(tmp_path, context)

    assert [[path.name for path in group] for group in groups] == [
        ["S1_class_reported.tsv", "S1_phylum_reported.tsv"],
        ["S2_phylum_reported.tsv"],
    ]
    by_id = {sample.sample_id: sample for sample in samples}
    assert by_id["S1"].counts["phylum"] == {"p__Bacteroidetes": 1137994, "p__Firmicutes": 500}
    assert by_id["S1"].counts["class"] == {"c__Bacteroidia": 1137000}
    assert by_id["S2"].otu_counts() == {"p__Firmicutes": 42}


# ============================================================================
# Matrices (QIIME, HUMAnN2)
# ============================================================================

QIIME_TABLE = (
    "# Constructed from biom file\n"
    "#OTU ID\tS1\tS2\n"
    "k__Bacteria;p__Firmicutes;c__Bacilli\t10.0\t0.0\n"
    "k__Bacteria;p__Bacteroidetes;c__\t5.5\t3.0\n"
)


def test_select_matrix_file_keeps_deepest_level(tmp_path):
    paths = [tmp_path / f"otu_table_L{level}.txt" for level in (2, 6, 3)]

    assert matrix.select_matrix_file(paths) == [tmp_path / "otu_table_L6.txt"]
    assert matrix.select_matrix_file([tmp_path / "table.txt"]) == [tmp_path / "table.txt"]


def test_qiime_matrix(tmp_path):
    (tmp_path / "otu_table_L3.txt").write_text(QIIME_TABLE)
    (tmp_path / "otu_table_L2.txt").write_text("#OTU ID\tS1\tS2\nk__Bacteria;p__Firmicutes\t1\t1\n")
    context = ParseContext(kind=FormatKind.MATRIX, flavor=MatrixFlavor.TAXA, levels=ORDER_LEVELS)

    samples = parse_cohort(tmp_path, context)

    assert {sample.sample_id: sample.otu_counts() for sample in samples} == {
        "S1": {
            "d__Bacteria;p__Bacteroidetes": 5,
            "d__Bacteria;p__Firmicutes;c__Bacilli": 10,
        },
        "S2": {"d__Bacteria;p__Bacteroidetes": 3},
    }


def test_qiime_matrix_with_mapping_file(tmp_path):
    mapping = tmp_path / "mapping.tsv"
    mapping.write_text(
        "#SampleID\tBarcodeSequence\tInputFileName\tDescription\n"
        "S1\tAAAA\tgut_a.fastq.gz\tfirst\n"
        "S2\tCCCC\tgut_b.fastq\tsecond\n"
    )
    table = tmp_path / "otu_table_L3.txt"
    table.write_text(QIIME_TABLE)
    context = ParseContext(
        kind=FormatKind.MATRIX,
        flavor=MatrixFlavor.TAXA,
        levels=ORDER_LEVELS,
        sample_ids=SampleIdMap.from_mapping_file(mapping),
    )

    assert sorted(parse_counts([table], context)) == ["gut_a", "gut_b"]


def test_mapping_file_missing_column(tmp_path):
    mapping = tmp_path / "mapping.tsv"
    mapping.write_text("#SampleID\tBarcodeSequence\nS1\tAAAA\n")

    with pytest.raises(ParseError, match="InputFileName"):
        SampleIdMap.from_mapping_file(mapping)


def test_matrix_header_not_in_mapping(tmp_path):
    table = tmp_path / "otu_table_L3.txt"
    table.write_text(QIIME_TABLE)
    context = ParseContext(
        kind=FormatKind.MATRIX,
        flavor=MatrixFlavor.TAXA,
        levels=ORDER_LEVELS,
        sample_ids=SampleIdMap(ids={"S1": "gut_a"}),
    )

    with pytest.raises(ParseError, match="S2"):
        parse_sample_file([table], context)


def test_matrix_non_numeric_cell_reports_line(tmp_path):
    table = tmp_path / "otu_table_L3.txt"
    table.write_text(
        "#OTU ID\tS1\n"
        "k__Bacteria;p__Firmicutes\t3\n"
        "k__Bacteria;p__Bacteroidetes\tn/a\n"
    )
    context = ParseContext(kind=FormatKind.MATRIX, flavor=MatrixFlavor.TAXA, levels=ORDER_LEVELS)

    with pytest.raises(ParseError) as exc_info:
        parse_sample_file([table], context)

    assert exc_info.value.line_number == 3


def test_humann2_pathway_matrix(tmp_path):
    table = tmp_path / "pathabundance.tsv"
    table.write_text(
        "# Pathway\tS1_Abundance\tS2_kneaddata_Abundance\n"
        "UNMAPPED\t100\t50\n"
        "UNINTEGRATED\t20\t10\n"
        "PWY-1: glycolysis\t30\t0\n"
        "PWY-1: glycolysis|g__Bacteroides.s__Bacteroides_fragilis\t30\t0\n"
        "PWY-2: fermentation\t5.9\t7\n"
    )
    context = ParseContext(kind=FormatKind.MATRIX, flavor=MatrixFlavor.PATHWAY)

    assert parse_counts([table], context) == {
        "S1": {"PWY-1: glycolysis": 30, "PWY-2: fermentation": 5},
        "S2": {"PWY-2: fermentation": 7},
    }


def test_humann2_gene_family_matrix(tmp_path):
    table = tmp_path / "genefamilies.tsv"
    table.write_text(
        "# HUMAnN2 gene families\n"
        "# Gene Family\tS1_Abundance-RPKs\tS2_Abundance-RPKs\n"
        "UNMAPPED\t40.0\t12.0\n"
        "UniRef90_A\t0.0\t3.5\n"
        "UniRef90_A|g__Bacteroides.s__Bacteroides_fragilis\t0.0\t3.5\n"
        "UniRef90_B\t12.0\t5.0\n"
    )
    context = ParseContext(kind=FormatKind.MATRIX, flavor=MatrixFlavor.PATHWAY)

    assert matrix.find_header_row(table) == 1
    assert parse_counts([table], context) == {
        "S1": {"UniRef90_B": 12},
        "S2": {"UniRef90_A": 3, "UniRef90_B": 5},
    }


@pytest.mark.parametrize("header_id,sample_id", [
    ("S1_Abundance", "S1"),
    ("S1_Coverage", "S1"),
    ("S1_Abundance-RPKs", "S1"),
    ("S1_kneaddata_paired_merged_Abundance", "S1"),
])
def test_clean_pathway_sample_id(header_id, sample_id):
    assert matrix.clean_sample_id(header_id, MatrixFlavor.PATHWAY) == sample_id
    assert matrix.clean_sample_id(header_id, MatrixFlavor.TAXA) == header_id


def test_matrix_sample_named_like_a_column(tmp_path):
    table = tmp_path / "otu_table_L3.txt"
    table.write_text(
        "#OTU ID\tfeature\tline_number\tvalue\n"
        "k__Bacteria;p__Firmicutes\t1\t2\t3\n"
    )
    context = ParseContext(kind=FormatKind.MATRIX, flavor=MatrixFlavor.TAXA, levels=ORDER_LEVELS)

    assert parse_counts([table], context) == {
        "feature": {"d__Bacteria;p__Firmicutes": 1},
        "line_number": {"d__Bacteria;p__Firmicutes": 2},
        "value": {"d__Bacteria;p__Firmicutes": 3},
    }


def test_matrix_rejects_reserved_sample_id(tmp_path):
    table = tmp_path / "otu_table_L3.txt"
    table.write_text("#OTU ID\t__feature\nk__Bacteria\t1\n")
    context = ParseContext(kind=FormatKind.MATRIX, flavor=MatrixFlavor.TAXA, levels=ORDER_LEVELS)

    with pytest.raises(ParseError, match="Reserved"):
        parse_sample_file([table], context)


def test_humann2_keeps_unmapped_when_configured(tmp_path):
    table = tmp_path / "pathabundance.tsv"
    table.write_text("# Pathway\tS1_Abundance\nUNMAPPED\t100\nPWY-1: glycolysis\t30\n")
    context = ParseContext(
        kind=FormatKind.MATRIX, flavor=MatrixFlavor.PATHWAY, keep_unmapped_pathways=True
    )

    assert parse_counts([table], context) == {"S1": {"PWY-1: glycolysis": 30, "UNMAPPED": 100}}


# ============================================================================
# Cohort parsing
# ============================================================================

def test_parse_cohort_empty_directory(tmp_path):
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    with pytest.raises(ParseError, match="No classifier reports"):
        parse_cohort(tmp_path, context)


def test_parse_cohort_duplicate_sample(tmp_path):
    (tmp_path / "S1.txt").write_text("d__Bacteria\t5\n")
    (tmp_path / "S1.tsv").write_text("d__Bacteria\t7\n")
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    with pytest.raises(DuplicateSampleError) as exc_info:
        parse_cohort(tmp_path, context)

    assert exc_info.value.sample_id == "S1"


def test_parse_cohort_workers_match_serial(tmp_path):
    for i in range(4):
        (tmp_path / f"S{i}.txt").write_text(
            f"d__Bacteria\t{10 + i}\n"
            f"d__Bacteria|p__Firmicutes\t{5 + i}\n"
        )
    context = ParseContext(kind=FormatKind.CUMULATIVE_PATH, levels=ORDER_LEVELS)

    serial = parse_cohort(tmp_path, context, workers=1)
    parallel = parse_cohort(tmp_path, context, workers=2)

    assert [s.sample_id for s in serial] == ["S0", "S1", "S2", "S3"]
    assert [s.otu_counts() for s in serial] == [s.otu_counts() for s in parallel]
    assert [s.total for s in serial] == [10, 11, 12, 13]
