"""Rarefy OTU counts to a common depth by repeated random subsampling.

The depth is the configured quantile of the sorted per-sample totals. Each
sample's OTU occurrences are shuffled and truncated to the depth once per
iteration; the floor of the mean tally per OTU becomes the rarefied count.
Every sample draws from its own generator seeded by (seed, crc32(sample_id)),
so results do not depend on cohort order or on other samples.
"""

import zlib

import numpy as np
import structlog

from otu_pipeline.config.schema import RarefyConfig
from otu_pipeline.transform.models import StageResult, percent_label, removal_stats

logger = structlog.get_logger()


def rarefy_tag(quantile: float) -> str:
    """Generation tag, e.g. "rarefyQ50" for the median."""
    return f"rarefyQ{percent_label(quantile)}"


def rarefaction_depth(totals: list[int], quantile: float) -> int:
    """sorted(totals)[floor(quantile * n)].

    Raises:
        ValueError: If quantile is not strictly between 0 and 1, or totals is empty
    """
    if not 0.0 < quantile < 1.0:
        raise ValueError(f"Rarefaction quantile must be in (0, 1), got {quantile}")
    if not totals:
        raise ValueError("Cannot compute a rarefaction depth for an empty cohort")
    ordered = sorted(totals)
    return ordered[int(quantile * len(ordered))]


def sample_rng(seed: int, sample_id: str) -> np.random.Generator:
    """Independent generator for one sample."""
    return np.random.default_rng([seed, zlib.crc32(sample_id.encode("utf-8"))])


def rarefy_sample(
    counts: dict[str, int],
    depth: int,
    iterations: int,
    rng: np.random.Generator,
) -> dict[str, int]:
    """Subsample one sample's OTU multiset.

    Args:
        counts: pathway -> count
        depth: Number of occurrences kept per iteration (all if fewer)
        iterations: Number of shuffles to average over
        rng: Sample-specific random generator

    Returns:
        pathway -> floor of the mean tally, zero means dropped
    """
    otus = sorted(counts)
    if not otus:
        return {}
    occurrences = np.repeat(np.arange(len(otus)), [counts[otu] for otu in otus])
    take = min(depth, occurrences.size)

    tallies = np.zeros(len(otus), dtype=np.int64)
    for _ in range(iterations):
        drawn = rng.permutation(occurrences)[:take]
        tallies += np.bincount(drawn, minlength=len(otus))

    means = tallies // iterations
    return {otus[i]: int(mean) for i, mean in enumerate(means) if mean > 0}


def rarefy_cohort(cohort: dict[str, dict[str, int]], config: RarefyConfig) -> StageResult:
    """Rarefy every sample of a cohort.

    Args:
        cohort: sample_id -> {pathway -> count}
        config: Quantile, iterations, low-sample removal and seed

    Returns:
        StageResult tagged rarefyQ<quantile percent>
    """
    totals = {sample_id: sum(counts.values()) for sample_id, counts in cohort.items()}
    depth = rarefaction_depth(list(totals.values()), config.quantile)

    logger.info(
        "rarefy_start",
        samples=len(cohort),
        quantile=config.quantile,
        depth=depth,
        iterations=config.iterations,
    )

    result = StageResult(
        stage="rarefy",
        tag=rarefy_tag(config.quantile),
        details={
            "quantile": config.quantile,
            "depth": depth,
            "iterations": config.iterations,
            "seed": config.seed,
            "remove_low_samples": config.remove_low_samples,
        },
    )

    for sample_id, counts in cohort.items():
        if totals[sample_id] < depth:
            if config.remove_low_samples:
                logger.info(
                    "rarefy_sample_removed",
                    sample_id=sample_id,
                    total=totals[sample_id],
                    depth=depth,
                )
                result.dropped_samples.append(sample_id)
                continue
            logger.warning(
                "rarefy_sample_below_depth",
                sample_id=sample_id,
                total=totals[sample_id],
                depth=depth,
            )

        rng = sample_rng(config.seed, sample_id)
        rarefied = rarefy_sample(counts, depth, config.iterations, rng)
        if not rarefied:
            result.dropped_samples.append(sample_id)
            continue
        result.cohort[sample_id] = rarefied
        result.hits[sample_id] = sum(rarefied.values())

    result.removed_unique, result.removed_total = removal_stats(cohort, result.cohort)

    logger.info(
        "rarefy_complete",
        samples=len(result.cohort),
        dropped=len(result.dropped_samples),
        removed_total=result.removed_total,
    )
    return result
