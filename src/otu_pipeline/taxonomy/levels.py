"""Taxonomy rank definitions and the configured-rank context.

The configured ranks are passed around as a TaxonomyLevels value rather
than held in module state, so parser workers stay independent.
"""

from dataclasses import dataclass

from otu_pipeline.config.schema import TAXONOMY_LEVELS, TaxonomyConfig

# Canonical rank prefixes used in rendered OTU paths
LEVEL_PREFIXES = {
    "domain": "d__",
    "phylum": "p__",
    "class": "c__",
    "order": "o__",
    "family": "f__",
    "genus": "g__",
    "species": "s__",
}

# Classifier-specific prefixes mapped onto canonical ranks
PREFIX_ALIASES = {
    "k__": "domain",
}

OTU_SEPARATOR = ";"
UNCLASSIFIED = "Unclassified"


def unclassified_taxon(name: str, level: str) -> str:
    """Name for a placeholder taxon below a real assignment.

    Example: unclassified_taxon("Bacteroidetes", "phylum")
    -> "Unclassified Bacteroidetes Phylum"
    """
    return f"{UNCLASSIFIED} {name} {level.capitalize()}"


def strip_quotes(value: str) -> str:
    """Remove single and double quotes from a token."""
    return value.replace("'", "").replace('"', "")


def level_for_prefix(prefix: str) -> str | None:
    """Map a rank prefix such as "p__" or "k__" to its rank, None if unknown."""
    if prefix in PREFIX_ALIASES:
        return PREFIX_ALIASES[prefix]
    for level, level_prefix in LEVEL_PREFIXES.items():
        if level_prefix == prefix:
            return level
    return None


@dataclass(frozen=True)
class TaxonomyLevels:
    """Ordered, contiguous run of configured taxonomy ranks."""

    levels: tuple[str, ...] = tuple(TAXONOMY_LEVELS)

    def __post_init__(self):
        if not self.levels:
            raise ValueError("TaxonomyLevels requires at least one rank")
        for level in self.levels:
            if level not in TAXONOMY_LEVELS:
                raise ValueError(f"Unknown taxonomy rank: {level}")

    @classmethod
    def from_config(cls, config: TaxonomyConfig) -> "TaxonomyLevels":
        return cls(tuple(config.levels))

    @property
    def top(self) -> str:
        return self.levels[0]

    @property
    def bottom(self) -> str:
        return self.levels[-1]

    def __contains__(self, level: str) -> bool:
        return level in self.levels

    def __iter__(self):
        return iter(self.levels)

    def __len__(self) -> int:
        return len(self.levels)

    def depth(self, level: str) -> int:
        """Zero-based position of a configured rank (top = 0)."""
        return self.levels.index(level)

    def is_below_bottom(self, level: str) -> bool:
        """True if the rank is deeper than the bottom configured rank."""
        return TAXONOMY_LEVELS.index(level) > TAXONOMY_LEVELS.index(self.bottom)

    def parse_otu(self, otu: str) -> dict[str, str]:
        """Split a rendered OTU path into a rank -> name mapping.

        Only configured ranks are returned; unknown tokens are ignored.
        """
        taxa = {}
        for token in otu.split(OTU_SEPARATOR):
            level = level_for_prefix(token[:3])
            if level is not None and level in self.levels:
                taxa[level] = token[3:]
        return taxa

    def taxon_name(self, otu: str, level: str) -> str | None:
        """Name assigned at one rank of a rendered OTU path."""
        return self.parse_otu(otu).get(level)

    def lineage(self, otu: str, level: str) -> str | None:
        """Rendered path prefix of an OTU down to the given rank.

        Example: lineage("d__A;p__B;c__C", "phylum") -> "d__A;p__B"
        """
        prefix = LEVEL_PREFIXES[level]
        tokens = otu.split(OTU_SEPARATOR)
        for i, token in enumerate(tokens):
            if token.startswith(prefix):
                return OTU_SEPARATOR.join(tokens[: i + 1])
        return None

    def leaf_level(self, otu: str) -> str | None:
        """Deepest configured rank present in a rendered OTU path."""
        taxa = self.parse_otu(otu)
        leaf = None
        for level in self.levels:
            if level in taxa:
                leaf = level
        return leaf
