"""Reconcile sparse rank assignments into contiguous taxon paths.

Two operations:
- reconcile(): fill interior gaps of a single assignment with Unclassified
  placeholders, dropping records that lack the top configured rank.
- CladeCounts: for classifiers that report whole-clade counts, redistribute
  each parent's unexplained remainder to an Unclassified child, level by
  level, so that only bottom-rank leaves carry counts.
"""

from collections import defaultdict
from collections.abc import Iterable

import structlog

from otu_pipeline.exceptions import TaxonomyConsistencyError
from otu_pipeline.taxonomy.levels import TaxonomyLevels
from otu_pipeline.taxonomy.models import RawAssignment, TaxonEntry, TaxonPath

logger = structlog.get_logger()


def reconcile(
    assignment: RawAssignment,
    levels: TaxonomyLevels,
    fill_to_bottom: bool = False,
) -> TaxonPath | None:
    """Build a contiguous TaxonPath from a sparse assignment.

    Args:
        assignment: Record with a sparse rank -> name mapping
        levels: Configured taxonomy ranks
        fill_to_bottom: If True, ranks below the deepest assignment are filled
                        with Unclassified placeholders down to the bottom rank

    Returns:
        TaxonPath from the top configured rank to the leaf, or None if the
        top rank is missing (the record is dropped)
    """
    taxa = {
        level: name.strip()
        for level, name in assignment.taxa.items()
        if level in levels and name is not None and name.strip()
    }

    if levels.top not in taxa:
        return None

    if fill_to_bottom:
        stop = len(levels) - 1
    else:
        stop = max(levels.depth(level) for level in taxa)

    path = TaxonPath((TaxonEntry(levels.top, taxa[levels.top]),))
    for level in levels.levels[1:stop + 1]:
        name = taxa.get(level)
        if name is None:
            path = path.unclassified_child(level)
        else:
            path = path.child(level, name)

    return path


def rank_scoped_path(level: str, name: str) -> TaxonPath:
    """Single-rank path for formats that carry no lineage (one file per rank)."""
    return TaxonPath((TaxonEntry(level, name.strip()),))


class CladeCounts:
    """Accumulates whole-clade counts for one sample.

    Memory is bounded by the number of distinct clades in the report, not by
    the number of reads they summarize.
    """

    def __init__(self, sample_id: str, levels: TaxonomyLevels):
        self.sample_id = sample_id
        self.levels = levels
        self._nodes: dict[tuple[str, ...], TaxonPath] = {}
        self._counts: dict[tuple[str, ...], int] = {}
        self._explicit: set[tuple[str, ...]] = set()

    def __len__(self) -> int:
        return len(self._explicit)

    def add(self, path: TaxonPath, count: int) -> None:
        """Register one reported clade and its count.

        Raises:
            TaxonomyConsistencyError: If the clade was already reported
        """
        key = path.names
        if key in self._explicit:
            raise TaxonomyConsistencyError(
                self.sample_id, path.render(), "clade reported more than once"
            )

        self._explicit.add(key)
        self._nodes[key] = path
        self._counts[key] = count

        # Ancestors without their own line are registered as implicit clades
        ancestor = path.parent()
        while ancestor is not None and ancestor.names not in self._nodes:
            self._nodes[ancestor.names] = ancestor
            ancestor = ancestor.parent()

    def redistribute(self) -> dict[TaxonPath, int]:
        """Push every clade remainder down to an Unclassified child.

        Processed top-down so that a remainder created at one rank is itself
        redistributed at the next, which fills multi-level gaps transitively.

        Returns:
            Bottom-rank TaxonPath -> count; the total equals the total of the
            top-rank clades

        Raises:
            TaxonomyConsistencyError: If child counts exceed a parent count, or
                                      an explicitly reported clade collides with
                                      the Unclassified remainder
        """
        n_levels = len(self.levels)
        by_depth: list[list[tuple[str, ...]]] = [[] for _ in range(n_levels)]
        children: dict[tuple[str, ...], list[tuple[str, ...]]] = defaultdict(list)
        for key in self._nodes:
            by_depth[len(key) - 1].append(key)
            if len(key) > 1:
                children[key[:-1]].append(key)

        counts = dict(self._counts)

        # Implicit clades take the sum of their children, deepest first
        for depth in reversed(range(n_levels)):
            for key in by_depth[depth]:
                if key not in self._explicit:
                    counts[key] = sum(counts[child] for child in children[key])

        for depth in range(n_levels - 1):
            child_level = self.levels.levels[depth + 1]
            for key in sorted(by_depth[depth]):
                child_sum = sum(counts[child] for child in children.get(key, []))
                remainder = counts[key] - child_sum

                if remainder < 0:
                    raise TaxonomyConsistencyError(
                        self.sample_id,
                        self._nodes[key].render(),
                        f"child counts ({child_sum}) exceed parent count ({counts[key]})",
                    )
                if remainder == 0:
                    continue

                unclassified = self._nodes[key].unclassified_child(child_level)
                uc_key = unclassified.names
                if uc_key in self._explicit:
                    raise TaxonomyConsistencyError(
                        self.sample_id,
                        self._nodes[key].render(),
                        f"remainder {remainder} is ambiguous: {unclassified.render()} "
                        "is also reported explicitly",
                    )

                if uc_key in self._nodes:
                    # Gap placeholder created during reconcile: absorb the remainder
                    counts[uc_key] += remainder
                else:
                    self._nodes[uc_key] = unclassified
                    counts[uc_key] = remainder
                    by_depth[depth + 1].append(uc_key)
                    children[key].append(uc_key)

        leaves = {
            self._nodes[key]: counts[key]
            for key in by_depth[-1]
            if counts[key] > 0
        }

        logger.debug(
            "clade_redistribution_complete",
            sample_id=self.sample_id,
            clades=len(self._explicit),
            leaves=len(leaves),
            total=sum(leaves.values()),
        )

        return leaves


def redistribute_clade_counts(
    sample_id: str,
    clade_counts: Iterable[tuple[TaxonPath, int]],
    levels: TaxonomyLevels,
) -> dict[TaxonPath, int]:
    """Redistribute one sample's whole-clade counts to bottom-rank leaves."""
    clades = CladeCounts(sample_id, levels)
    for path, count in clade_counts:
        clades.add(path, count)
    return clades.redistribute()
