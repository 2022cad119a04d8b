"""Result model shared by the post-processing stages."""

from dataclasses import dataclass, field


@dataclass
class StageResult:
    """Output of one count-table stage.

    Attributes:
        stage: Stage name ("rarefy", "filter_low", ...)
        tag: File name tag of the emitted generation
        cohort: sample_id -> {pathway -> count} after the stage
        hits: sample_id -> total count after the stage (side channel)
        removed_unique: Number of distinct pathways removed
        removed_total: Total count removed
        dropped_samples: Samples absent from the output cohort
        audit: Audit file name -> lines
        details: Stage parameters recorded in provenance
    """
    stage: str
    tag: str
    cohort: dict[str, dict[str, int]] = field(default_factory=dict)
    hits: dict[str, int] = field(default_factory=dict)
    removed_unique: int = 0
    removed_total: int = 0
    dropped_samples: list[str] = field(default_factory=list)
    audit: dict[str, list[str]] = field(default_factory=dict)
    details: dict = field(default_factory=dict)

    @property
    def hits_column(self) -> str:
        """Side-channel column name, e.g. "min2_OTU_COUNT"."""
        return f"{self.tag}_OTU_COUNT"

    def provenance_details(self) -> dict:
        return {
            **self.details,
            "removed_unique": self.removed_unique,
            "removed_total": self.removed_total,
            "dropped_samples": list(self.dropped_samples),
        }


def percent_label(fraction: float) -> str:
    """Render a fraction as a percent for tags: 0.5 -> "50", 0.125 -> "12.5"."""
    return f"{round(fraction * 100, 6):g}"


def removal_stats(
    before: dict[str, dict[str, int]],
    after: dict[str, dict[str, int]],
) -> tuple[int, int]:
    """(distinct pathways removed from at least one sample, total count removed)."""
    removed = set()
    removed_total = 0
    for sample_id, counts in before.items():
        kept = after.get(sample_id, {})
        for otu, count in counts.items():
            kept_count = kept.get(otu, 0)
            if kept_count == 0:
                removed.add(otu)
            removed_total += count - kept_count
    return len(removed), removed_total
