"""Parse per-level-per-file reports (SLIMM).

Each file holds one taxonomy rank for one sample; both are encoded in the
file name, e.g. "7A_1_phylum_reported.tsv" -> sample "7A_1", rank "phylum".
After a header row, column 1 is the taxon name and column 3 the read count:

    No.  Name           Taxid  NoOfReads  RelativeAbundance  Contributers  Coverage
    1    Bacteroidetes  976    1137994    29.7589            17            24.7204
"""

import re
from collections.abc import Iterator
from pathlib import Path

import structlog

from otu_pipeline.config.schema import TAXONOMY_LEVELS
from otu_pipeline.exceptions import ParseError
from otu_pipeline.parsers.models import ParseContext
from otu_pipeline.taxonomy.levels import strip_quotes
from otu_pipeline.taxonomy.models import RawAssignment

logger = structlog.get_logger()

FILE_NAME_PATTERN = re.compile(
    r"^(?P<sample_id>.+?)_(?P<level>" + "|".join(TAXONOMY_LEVELS) + r")(?:[_.].*)?$",
    re.IGNORECASE,
)

NAME_COLUMN = 1
COUNT_COLUMN = 3


def level_file_info(path: Path, context: ParseContext) -> tuple[str, str] | None:
    """Recover (sample_id, rank) from a per-level file name.

    Returns:
        None if the name matches no configured rank (the file is skipped)
    """
    match = FILE_NAME_PATTERN.match(path.name)
    if match is None:
        return None
    level = match.group("level").lower()
    if level not in context.levels:
        return None
    return match.group("sample_id"), level


def parse_line(
    line: str,
    sample_id: str,
    level: str,
    path: Path | None = None,
    line_number: int | None = None,
) -> RawAssignment | None:
    """Parse one (name, count) row of a per-level file.

    Raises:
        ParseError: On too few columns or a non-integer count
    """
    columns = line.rstrip("\r\n").split("\t")
    if len(columns) <= COUNT_COLUMN:
        raise ParseError(
            f"Expected at least {COUNT_COLUMN + 1} tab delimited columns, found {len(columns)}",
            path,
            line_number,
        )

    name = strip_quotes(columns[NAME_COLUMN]).strip()
    try:
        count = int(columns[COUNT_COLUMN].strip())
    except ValueError as e:
        raise ParseError(
            f"Non-integer count: {columns[COUNT_COLUMN].strip()!r}", path, line_number
        ) from e

    if not name or count <= 0:
        return None

    return RawAssignment(
        sample_id=sample_id,
        count=count,
        taxa={level: name},
        source=path,
        line_number=line_number,
    )


def iter_assignments(path: Path, context: ParseContext) -> Iterator[RawAssignment]:
    """Stream the rows of one per-level file; yields nothing for unmatched names."""
    info = level_file_info(path, context)
    if info is None:
        logger.info("per_level_file_skipped", file=path.name, reason="no configured rank in file name")
        return
    sample_id, level = info

    with open(path) as f:
        next(f, None)  # header
        for line_number, line in enumerate(f, start=2):
            if not line.strip():
                continue
            assignment = parse_line(line, sample_id, level, path, line_number)
            if assignment is not None:
                yield assignment
