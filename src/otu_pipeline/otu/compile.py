"""Compile cohort-level summaries from per-sample OTU counts."""

from dataclasses import dataclass, field


@dataclass
class CohortSummary:
    """Cohort totals and per-sample diagnostics.

    Attributes:
        summary: Union of all pathways with counts summed across samples
        unique_otus: sample_id -> number of distinct pathways
        totals: sample_id -> total count
    """
    summary: dict[str, int] = field(default_factory=dict)
    unique_otus: dict[str, int] = field(default_factory=dict)
    totals: dict[str, int] = field(default_factory=dict)

    @property
    def n_samples(self) -> int:
        return len(self.unique_otus)

    @property
    def min_unique(self) -> tuple[str, int] | None:
        """(sample_id, count) of the sample with the fewest distinct pathways."""
        if not self.unique_otus:
            return None
        sample_id = min(self.unique_otus, key=lambda s: (self.unique_otus[s], s))
        return sample_id, self.unique_otus[sample_id]

    @property
    def max_unique(self) -> tuple[str, int] | None:
        if not self.unique_otus:
            return None
        sample_id = min(self.unique_otus, key=lambda s: (-self.unique_otus[s], s))
        return sample_id, self.unique_otus[sample_id]

    def statistics(self) -> dict:
        """Plain-dict statistics for provenance sidecars."""
        stats = {
            "samples": self.n_samples,
            "unique_otus": len(self.summary),
            "total_count": sum(self.totals.values()),
        }
        if self.min_unique is not None:
            stats["min_unique_otus"] = {"sample_id": self.min_unique[0], "count": self.min_unique[1]}
            stats["max_unique_otus"] = {"sample_id": self.max_unique[0], "count": self.max_unique[1]}
        return stats


def compile_cohort(cohort: dict[str, dict[str, int]]) -> CohortSummary:
    """Single reduction over every sample of a cohort."""
    result = CohortSummary()
    for sample_id, counts in cohort.items():
        result.unique_otus[sample_id] = len(counts)
        result.totals[sample_id] = sum(counts.values())
        for otu, count in counts.items():
            result.summary[otu] = result.summary.get(otu, 0) + count
    result.summary = dict(sorted(result.summary.items()))
    return result
