"""Parse score-gated classifier reports (RDP).

One line per read: a read id followed by tab-separated (name, rank, confidence)
triplets, shallowest rank first. Example:

    read_1<TAB><TAB>Root<TAB>rootrank<TAB>1.0<TAB>Bacteria<TAB>domain<TAB>1.0<TAB>...

Assignments are accepted top-down while each configured rank's confidence
stays at or above the threshold.
"""

import re
from collections.abc import Iterator
from pathlib import Path

import structlog

from otu_pipeline.exceptions import ParseError
from otu_pipeline.parsers.models import ParseContext
from otu_pipeline.taxonomy.levels import strip_quotes
from otu_pipeline.taxonomy.models import RawAssignment

logger = structlog.get_logger()

# 0, 0., 0.ddd, 1, 1., 1.000
CONFIDENCE_PATTERN = re.compile(r"^(?:1(?:\.0*)?|0(?:\.\d*)?)$")

SKIPPED_NAME_TOKENS = {"", "-"}


def confidence_score(
    token: str,
    path: Path | None = None,
    line_number: int | None = None,
) -> int:
    """Convert a 0.0-1.0 confidence string to a 0-100 score.

    Raises:
        ParseError: If the token is not a confidence value in [0, 1]
    """
    token = token.strip()
    if not CONFIDENCE_PATTERN.match(token):
        raise ParseError(f"Unexpected confidence score: {token!r}", path, line_number)
    return round(float(token) * 100)


def parse_line(
    line: str,
    sample_id: str,
    context: ParseContext,
    path: Path | None = None,
    line_number: int | None = None,
) -> RawAssignment | None:
    """Parse one score-gated record.

    Returns:
        RawAssignment with count 1 and the minimum accepted score, or None if
        no configured rank passed the threshold

    Raises:
        ParseError: On a malformed confidence value
    """
    tokens = line.rstrip("\r\n").split("\t")
    taxa = {}
    min_score = None

    i = 1
    while i < len(tokens):
        name = strip_quotes(tokens[i]).strip()
        if name in SKIPPED_NAME_TOKENS:
            i += 1
            continue

        if i + 2 >= len(tokens):
            break

        level = strip_quotes(tokens[i + 1]).strip().lower()
        score = confidence_score(tokens[i + 2], path, line_number)
        i += 3

        if level not in context.levels:
            continue
        if score < context.rdp_threshold:
            break

        taxa[level] = name
        min_score = score if min_score is None else min(min_score, score)

    if not taxa:
        return None

    return RawAssignment(
        sample_id=sample_id,
        count=1,
        taxa=taxa,
        score=min_score,
        source=path,
        line_number=line_number,
    )


def iter_assignments(path: Path, sample_id: str, context: ParseContext) -> Iterator[RawAssignment]:
    """Stream the accepted records of one score-gated report."""
    below_threshold = 0
    with open(path) as f:
        for line_number, line in enumerate(f, start=1):
            if not line.strip():
                continue
            assignment = parse_line(line, sample_id, context, path, line_number)
            if assignment is None:
                below_threshold += 1
            else:
                yield assignment

    logger.debug("score_gated_file_read", file=path.name, below_threshold=below_threshold)
