"""Tests for persistence layer (DuckDB store and provenance tracking)."""

import json

import pytest

from otu_pipeline.config.loader import load_config
from otu_pipeline.persistence import PipelineStore, ProvenanceTracker


@pytest.fixture
def test_config(tmp_path):
    """Create a minimal test config."""
    config_path = tmp_path / "test_config.yaml"
    config_path.write_text("""
data_dir: {data_dir}
duckdb_path: {duckdb_path}
taxonomy:
  levels: [domain, phylum, class]
parser:
  format: score_gated
""".format(
        data_dir=str(tmp_path / "data"),
        duckdb_path=str(tmp_path / "test.duckdb"),
    ))
    return load_config(config_path)


# ============================================================================
# DuckDB Store Tests
# ============================================================================

def test_store_creates_database(tmp_path):
    """Test that PipelineStore creates .duckdb file at specified path."""
    db_path = tmp_path / "test.duckdb"
    assert not db_path.exists()

    store = PipelineStore(db_path)
    store.close()

    assert db_path.exists()


def test_load_sample_hits_before_any_stage(tmp_path):
    with PipelineStore(tmp_path / "test.duckdb") as store:
        assert store.load_sample_hits() is None
        assert not store.has_checkpoint("sample_hits")


def test_sample_hits_columns_accumulate(tmp_path):
    """Each stage adds a column; samples dropped by a stage get NULL."""
    with PipelineStore(tmp_path / "test.duckdb") as store:
        store.save_sample_hits("OTU_COUNT", {"S1": 100, "S2": 40, "S3": 7})
        store.save_sample_hits("min2_OTU_COUNT", {"S1": 98, "S2": 40})

        hits = store.load_sample_hits()

    assert hits.columns == ["sample_id", "OTU_COUNT", "min2_OTU_COUNT"]
    assert hits["sample_id"].to_list() == ["S1", "S2", "S3"]
    assert hits["OTU_COUNT"].to_list() == [100, 40, 7]
    assert hits["min2_OTU_COUNT"].to_list() == [98, 40, None]


def test_sample_hits_rerun_replaces_column(tmp_path):
    with PipelineStore(tmp_path / "test.duckdb") as store:
        store.save_sample_hits("rarefyQ50_OTU_COUNT", {"S1": 10, "S2": 10})
        store.save_sample_hits("rarefyQ50_OTU_COUNT", {"S1": 12})

        hits = store.load_sample_hits()

    assert hits["rarefyQ50_OTU_COUNT"].to_list() == [12, None]


def test_sample_hits_column_name_validated(tmp_path):
    with PipelineStore(tmp_path / "test.duckdb") as store:
        with pytest.raises(ValueError):
            store.save_sample_hits('x"; DROP TABLE sample_hits; --', {"S1": 1})


def test_store_persists_across_connections(tmp_path):
    db_path = tmp_path / "test.duckdb"

    with PipelineStore(db_path) as store:
        store.save_sample_hits("OTU_COUNT", {"S1": 5})

    with PipelineStore(db_path) as store:
        assert store.has_checkpoint("sample_hits")
        assert store.load_sample_hits()["OTU_COUNT"].to_list() == [5]


def test_store_from_config(test_config):
    store = PipelineStore.from_config(test_config)
    store.close()

    assert test_config.duckdb_path.exists()


# ============================================================================
# Provenance Tests
# ============================================================================

def test_provenance_metadata(test_config):
    provenance = ProvenanceTracker("0.1.0", test_config)
    provenance.record_step("parse", {"samples": 3})
    provenance.record_step("compile")

    metadata = provenance.create_metadata()

    assert metadata["pipeline_version"] == "0.1.0"
    assert metadata["config_hash"] == test_config.config_hash()
    assert metadata["taxonomy_levels"] == ["domain", "phylum", "class"]
    assert metadata["input_format"] == "score_gated"
    assert [step["name"] for step in metadata["processing_steps"]] == ["parse", "compile"]
    assert metadata["processing_steps"][0]["details"] == {"samples": 3}
    assert "details" not in metadata["processing_steps"][1]


def test_provenance_sidecar_next_to_generation(tmp_path, test_config):
    provenance = ProvenanceTracker.from_config(test_config)
    provenance.record_step("rarefy", {"depth": 100})

    sidecar = provenance.save_sidecar(tmp_path / "rarefyQ50")

    assert sidecar == tmp_path / "rarefyQ50.provenance.json"
    with open(sidecar) as f:
        loaded = json.load(f)
    assert loaded["processing_steps"][0]["details"] == {"depth": 100}
    assert loaded["config_hash"] == test_config.config_hash()


def test_provenance_save_to_store(tmp_path, test_config):
    provenance = ProvenanceTracker.from_config(test_config)
    provenance.record_step("parse")

    with PipelineStore(tmp_path / "test.duckdb") as store:
        provenance.save_to_store(store)
        provenance.save_to_store(store)
        rows = store.conn.execute(
            "SELECT version, taxonomy_levels FROM _provenance"
        ).fetchall()

    assert len(rows) == 2
    assert rows[0][1] == "domain,phylum,class"
