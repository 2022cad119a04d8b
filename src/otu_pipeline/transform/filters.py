"""Low-count and scarce-OTU filters.

Both filters only remove pathways, so no sample's total or unique count can
grow. Samples left empty are dropped from the output generation.
"""

import math
from collections import Counter

import structlog

from otu_pipeline.taxonomy.levels import TaxonomyLevels
from otu_pipeline.transform.models import StageResult, percent_label, removal_stats

logger = structlog.get_logger()

LOW_COUNT_AUDIT_FILE = "lowCountOtus.txt"
SCARCE_AUDIT_FILE = "scarceOtus.txt"


def low_count_tag(min_count: int) -> str:
    return f"min{min_count}"


def scarce_tag(cutoff: float) -> str:
    return f"scarce{percent_label(cutoff)}"


def _finish(
    result: StageResult,
    cohort: dict[str, dict[str, int]],
    kept: dict[str, dict[str, int]],
) -> StageResult:
    for sample_id in cohort:
        counts = kept.get(sample_id)
        if not counts:
            result.dropped_samples.append(sample_id)
            logger.info("filter_sample_removed", stage=result.stage, sample_id=sample_id)
            continue
        result.cohort[sample_id] = counts
        result.hits[sample_id] = sum(counts.values())

    result.removed_unique, result.removed_total = removal_stats(cohort, result.cohort)
    logger.info(
        "filter_complete",
        stage=result.stage,
        samples=len(result.cohort),
        dropped=len(result.dropped_samples),
        removed_unique=result.removed_unique,
        removed_total=result.removed_total,
    )
    return result


def filter_low_counts(cohort: dict[str, dict[str, int]], min_count: int) -> StageResult:
    """Remove, per sample, every pathway whose count is below min_count.

    Args:
        cohort: sample_id -> {pathway -> count}
        min_count: Absolute count threshold (>= 1)

    Returns:
        StageResult tagged min<min_count> with a "sample: pathway" audit list
    """
    if min_count < 1:
        raise ValueError(f"min_count must be at least 1, got {min_count}")

    result = StageResult(
        stage="filter_low",
        tag=low_count_tag(min_count),
        details={"min_count": min_count},
    )

    kept = {}
    audit = []
    for sample_id, counts in cohort.items():
        kept[sample_id] = {}
        for otu, count in counts.items():
            if count < min_count:
                audit.append(f"{sample_id}: {otu}")
            else:
                kept[sample_id][otu] = count

    result.audit[LOW_COUNT_AUDIT_FILE] = audit
    return _finish(result, cohort, kept)


def taxon_keys(otu: str, levels: TaxonomyLevels) -> list[str]:
    """Lineage prefixes identifying each rank's taxon in a pathway.

    Pathways without rank prefixes (metabolic pathways) are their own key.
    """
    keys = []
    for level in levels:
        lineage = levels.lineage(otu, level)
        if lineage is not None:
            keys.append(lineage)
    return keys or [otu]


def find_scarce_taxa(
    cohort: dict[str, dict[str, int]],
    levels: TaxonomyLevels,
    cutoff_fraction: float,
) -> tuple[set[str], int]:
    """Taxa present in fewer than ceil(cutoff_fraction * n_samples) samples.

    Returns:
        (scarce taxon keys, sample cutoff)
    """
    if not 0.0 < cutoff_fraction < 1.0:
        raise ValueError(f"Scarce cutoff must be in (0, 1), got {cutoff_fraction}")

    cutoff = math.ceil(cutoff_fraction * len(cohort))
    presence = Counter()
    for counts in cohort.values():
        sample_taxa = set()
        for otu, count in counts.items():
            if count > 0:
                sample_taxa.update(taxon_keys(otu, levels))
        presence.update(sample_taxa)

    scarce = {taxon for taxon, n_samples in presence.items() if n_samples < cutoff}
    return scarce, cutoff


def filter_scarce_otus(
    cohort: dict[str, dict[str, int]],
    levels: TaxonomyLevels,
    cutoff_fraction: float,
) -> StageResult:
    """Remove every pathway containing a taxon found in too few samples.

    Args:
        cohort: sample_id -> {pathway -> count}
        levels: Configured taxonomy ranks
        cutoff_fraction: Minimum fraction of samples a taxon must appear in

    Returns:
        StageResult tagged scarce<percent> with the sorted removed pathways
    """
    scarce, cutoff = find_scarce_taxa(cohort, levels, cutoff_fraction)
    logger.info(
        "scarce_taxa_found",
        samples=len(cohort),
        cutoff=cutoff,
        scarce_taxa=len(scarce),
    )

    result = StageResult(
        stage="filter_scarce",
        tag=scarce_tag(cutoff_fraction),
        details={"scarce_cutoff": cutoff_fraction, "min_samples": cutoff},
    )

    kept = {}
    removed = set()
    for sample_id, counts in cohort.items():
        kept[sample_id] = {}
        for otu, count in counts.items():
            if scarce.intersection(taxon_keys(otu, levels)):
                removed.add(otu)
            else:
                kept[sample_id][otu] = count

    result.audit[SCARCE_AUDIT_FILE] = sorted(removed)
    return _finish(result, cohort, kept)
