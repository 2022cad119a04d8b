"""Taxonomic assignment and path models."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import NamedTuple

from otu_pipeline.taxonomy.levels import LEVEL_PREFIXES, OTU_SEPARATOR, unclassified_taxon


@dataclass
class RawAssignment:
    """One record read from a classifier report.

    Attributes:
        sample_id: Sample the record belongs to
        count: Number of reads represented by the record (positive)
        taxa: Sparse rank -> name mapping, only ranks present in the source line
        score: Minimum accepted confidence (0-100) for score-gated formats
        pathway: Pathway identifier for pathway matrices (taxa left empty)
        source: File the record was read from
        line_number: 1-based line number in source
    """
    sample_id: str
    count: int
    taxa: dict[str, str] = field(default_factory=dict)
    score: int | None = None
    pathway: str | None = None
    source: Path | None = None
    line_number: int | None = None


class TaxonEntry(NamedTuple):
    """One rank of a TaxonPath."""
    level: str
    name: str
    synthetic: bool = False


@dataclass(frozen=True)
class TaxonPath:
    """Contiguous (rank, name) sequence from the top configured rank to a leaf."""

    entries: tuple[TaxonEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def leaf(self) -> TaxonEntry:
        return self.entries[-1]

    @property
    def leaf_level(self) -> str:
        return self.entries[-1].level

    @property
    def levels(self) -> tuple[str, ...]:
        return tuple(entry.level for entry in self.entries)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(entry.name for entry in self.entries)

    def parent(self) -> "TaxonPath | None":
        if len(self.entries) < 2:
            return None
        return TaxonPath(self.entries[:-1])

    def child(self, level: str, name: str, synthetic: bool = False) -> "TaxonPath":
        return TaxonPath(self.entries + (TaxonEntry(level, name, synthetic),))

    def unclassified_child(self, level: str) -> "TaxonPath":
        """Placeholder child one rank below this path's leaf.

        Synthetic leaves already carry an Unclassified name, which is reused so
        every gap under one real taxon shares the same label.
        """
        leaf = self.leaf
        name = leaf.name if leaf.synthetic else unclassified_taxon(leaf.name, leaf.level)
        return self.child(level, name, synthetic=True)

    def render(self) -> str:
        """Render as "d__Bacteria;p__Bacteroidetes;..."."""
        return OTU_SEPARATOR.join(
            f"{LEVEL_PREFIXES[entry.level]}{entry.name}" for entry in self.entries
        )

    def __str__(self) -> str:
        return self.render()
