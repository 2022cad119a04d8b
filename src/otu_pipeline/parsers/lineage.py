"""Parse pipe-delimited lineage reports.

Two grammars share the "d__Bacteria|p__Firmicutes|..." lineage syntax:

- Read lineage (Kraken per-read output): "readId<TAB>lineage", one read per
  line, count 1.
- Cumulative path (MetaPhlAn2, Kraken2 mpa-style report): "lineage<TAB>...<TAB>count",
  one clade per line whose count includes every read assigned below it.
  These counts are redistributed per sample by CladeCounts.
"""

from collections.abc import Iterator
from pathlib import Path

import structlog

from otu_pipeline.exceptions import ParseError
from otu_pipeline.parsers.models import ParseContext
from otu_pipeline.taxonomy.levels import (
    PREFIX_ALIASES,
    TaxonomyLevels,
    level_for_prefix,
    strip_quotes,
)
from otu_pipeline.taxonomy.models import RawAssignment

logger = structlog.get_logger()

LINEAGE_DELIM = "|"
COMMENT_PREFIX = "#"

# Intermediate rank that is not part of the tracked hierarchy
SUBRANK = "kingdom"


def split_lineage(lineage: str) -> list[tuple[str | None, str]]:
    """Split a lineage into (rank, name) tokens.

    The rank is None for unknown prefixes. A kingdom token ("k__") normally
    stands in for the domain, but below an explicit "d__" token it is an
    intermediate rank and is reported as SUBRANK.
    """
    tokens = []
    seen = set()
    for token in strip_quotes(lineage).strip().split(LINEAGE_DELIM):
        token = token.strip()
        if not token:
            continue
        prefix = token[:3]
        level = level_for_prefix(prefix)
        if level in seen and prefix in PREFIX_ALIASES:
            level = SUBRANK
        elif level is not None:
            seen.add(level)
        tokens.append((level, token[3:].strip()))
    return tokens


def parse_count(token: str, path: Path | None, line_number: int | None) -> int:
    """Parse a count column, truncating fractional values.

    Raises:
        ParseError: If the token is not numeric
    """
    try:
        return int(float(token.strip()))
    except ValueError as e:
        raise ParseError(f"Non-numeric count: {token.strip()!r}", path, line_number) from e


def parse_read_line(
    line: str,
    sample_id: str,
    context: ParseContext,
    path: Path | None = None,
    line_number: int | None = None,
) -> RawAssignment | None:
    """Parse one per-read lineage record.

    Ranks outside the configured run are ignored; the read still counts at
    the deepest configured rank it reached.

    Raises:
        ParseError: If the line does not have exactly two tab columns
    """
    columns = line.rstrip("\r\n").split("\t")
    if len(columns) != 2:
        raise ParseError(
            f"Read lineage output must have exactly 2 tab delimited columns, found {len(columns)}",
            path,
            line_number,
        )

    taxa = {
        level: name
        for level, name in split_lineage(columns[1])
        if level is not None and level in context.levels and name
    }
    if not taxa:
        return None

    return RawAssignment(
        sample_id=sample_id,
        count=1,
        taxa=taxa,
        source=path,
        line_number=line_number,
    )


def parse_cumulative_line(
    line: str,
    sample_id: str,
    context: ParseContext,
    path: Path | None = None,
    line_number: int | None = None,
) -> RawAssignment | None:
    """Parse one cumulative clade record.

    Lines naming a rank below the bottom configured rank, or a prefix that is
    not a taxonomy rank (strain "t__", "unclassified"), are discarded: their
    reads are already included in the ancestor clade counts.

    Raises:
        ParseError: On fewer than two columns or a non-numeric count
    """
    columns = line.rstrip("\r\n").split("\t")
    if len(columns) < 2:
        raise ParseError(
            f"Cumulative report lines need a lineage and a count, found {len(columns)} column(s)",
            path,
            line_number,
        )

    count = parse_count(columns[-1], path, line_number)
    tokens = split_lineage(columns[0])

    if not is_reportable(tokens, context.levels):
        return None

    if count <= 0:
        return None

    return RawAssignment(
        sample_id=sample_id,
        count=count,
        taxa={level: name for level, name in tokens if level in context.levels and name},
        source=path,
        line_number=line_number,
    )


def is_reportable(tokens: list[tuple[str | None, str]], levels: TaxonomyLevels) -> bool:
    """False if a lineage has an unknown prefix or reaches below the bottom rank.

    A lineage ending at an intermediate SUBRANK is not reportable either, its
    reads belong to the enclosing domain clade.
    """
    if not tokens or tokens[-1][0] == SUBRANK:
        return False
    for level, _name in tokens:
        if level is None:
            return False
        if level != SUBRANK and levels.is_below_bottom(level):
            return False
    return True


def iter_read_assignments(path: Path, sample_id: str, context: ParseContext) -> Iterator[RawAssignment]:
    """Stream per-read lineage records."""
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            assignment = parse_read_line(line, sample_id, context, path, line_number)
            if assignment is not None:
                yield assignment


def iter_cumulative_assignments(
    path: Path, sample_id: str, context: ParseContext
) -> Iterator[RawAssignment]:
    """Stream cumulative clade records, skipping comment lines."""
    discarded = 0
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip() or line.startswith(COMMENT_PREFIX):
                continue
            assignment = parse_cumulative_line(line, sample_id, context, path, line_number)
            if assignment is None:
                discarded += 1
            else:
                yield assignment

    logger.debug("cumulative_file_read", file=path.name, discarded=discarded)
