"""DuckDB-based storage for per-sample side-channel metrics."""

import re
from pathlib import Path
from typing import Optional

import duckdb
import polars as pl

SAMPLE_HITS_TABLE = "sample_hits"

# Hit columns are stage tags such as "rarefyQ12.5_OTU_COUNT"
COLUMN_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.]+$")


class PipelineStore:
    """
    DuckDB-based storage for pipeline results.

    Holds the "hits per sample" table that every stage extends with one
    column, keyed by sample_id, and the run provenance rows.
    """

    def __init__(self, db_path: Path):
        """
        Initialize PipelineStore with a DuckDB database.

        Args:
            db_path: Path to DuckDB database file. Parent directories
                     are created automatically.
        """
        self.db_path = db_path
        # Create parent directories
        db_path.parent.mkdir(parents=True, exist_ok=True)

        # Connect to DuckDB
        self.conn = duckdb.connect(str(db_path))

        # Create metadata table for tracking saved tables
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS _checkpoints (
                table_name VARCHAR PRIMARY KEY,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                row_count INTEGER,
                description VARCHAR
            )
        """)

    def _record_checkpoint(self, table_name: str, row_count: int, description: str) -> None:
        self.conn.execute("""
            INSERT OR REPLACE INTO _checkpoints (table_name, row_count, description, created_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
        """, [table_name, row_count, description])

    def has_checkpoint(self, table_name: str) -> bool:
        """
        Check if a table has been saved.

        Args:
            table_name: Name of the table to check

        Returns:
            True if the table exists, False otherwise
        """
        result = self.conn.execute(
            "SELECT COUNT(*) FROM _checkpoints WHERE table_name = ?",
            [table_name]
        ).fetchone()
        return result[0] > 0

    def save_sample_hits(self, column: str, hits: dict[str, int]) -> None:
        """
        Upsert one per-sample metric column into the sample_hits table.

        Samples missing from hits (e.g. dropped by a filter) get NULL in this
        column; rows of earlier columns are kept.

        Args:
            column: Column name, e.g. "OTU_COUNT" or "min2_OTU_COUNT"
            hits: sample_id -> value
        """
        if not COLUMN_NAME_PATTERN.match(column):
            raise ValueError(f"Invalid sample hits column name: {column}")

        hits_df = pl.DataFrame(
            {"sample_id": list(hits), "hits": list(hits.values())},
            schema={"sample_id": pl.String, "hits": pl.Int64},
        )

        self.conn.execute(f"CREATE TABLE IF NOT EXISTS {SAMPLE_HITS_TABLE} (sample_id VARCHAR)")
        self.conn.execute(
            f'ALTER TABLE {SAMPLE_HITS_TABLE} ADD COLUMN IF NOT EXISTS "{column}" BIGINT'
        )
        self.conn.execute(f"""
            INSERT INTO {SAMPLE_HITS_TABLE} (sample_id)
            SELECT sample_id FROM hits_df
            WHERE sample_id NOT IN (SELECT sample_id FROM {SAMPLE_HITS_TABLE})
        """)
        self.conn.execute(f'UPDATE {SAMPLE_HITS_TABLE} SET "{column}" = NULL')
        self.conn.execute(f"""
            UPDATE {SAMPLE_HITS_TABLE} SET "{column}" = hits_df.hits
            FROM hits_df
            WHERE {SAMPLE_HITS_TABLE}.sample_id = hits_df.sample_id
        """)

        row_count = self.conn.execute(f"SELECT COUNT(*) FROM {SAMPLE_HITS_TABLE}").fetchone()[0]
        self._record_checkpoint(SAMPLE_HITS_TABLE, row_count, f"per-sample hits, last column {column}")

    def load_sample_hits(self) -> Optional[pl.DataFrame]:
        """
        Load the sample_hits table ordered by sample_id.

        Returns:
            DataFrame or None if no stage has saved hits yet
        """
        if not self.has_checkpoint(SAMPLE_HITS_TABLE):
            return None
        return self.conn.execute(
            f"SELECT * FROM {SAMPLE_HITS_TABLE} ORDER BY sample_id"
        ).pl()

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False

    @classmethod
    def from_config(cls, config: "PipelineConfig") -> "PipelineStore":
        """
        Create PipelineStore from a PipelineConfig.

        Args:
            config: PipelineConfig instance

        Returns:
            PipelineStore instance
        """
        return cls(config.duckdb_path)
