"""Pipeline exceptions.

Every exception here aborts the current stage. Recoverable per-record
problems are logged and skipped by the caller instead of raised.
"""

from pathlib import Path


class OtuPipelineError(Exception):
    """Base class for fatal pipeline errors."""


class ParseError(OtuPipelineError):
    """Malformed classifier report content."""

    def __init__(self, message: str, path: Path | str | None = None, line_number: int | None = None):
        self.path = Path(path) if path is not None else None
        self.line_number = line_number
        location = ""
        if self.path is not None:
            location = f"{self.path.name}"
            if line_number is not None:
                location += f":{line_number}"
            location += ": "
        super().__init__(f"{location}{message}")


class OtuFileError(ParseError):
    """Malformed OTU count file."""


class TaxonomyConsistencyError(OtuPipelineError):
    """Clade counts that cannot be reconciled (child counts exceed the parent)."""

    def __init__(self, sample_id: str, taxon: str, message: str):
        self.sample_id = sample_id
        self.taxon = taxon
        super().__init__(f"Sample {sample_id}, taxon {taxon}: {message}")


class DuplicateSampleError(OtuPipelineError):
    """The same sample id was aggregated from more than one input."""

    def __init__(self, sample_id: str):
        self.sample_id = sample_id
        super().__init__(f"Attempt to add duplicate sample: {sample_id}")


class NormalizationError(OtuPipelineError):
    """A count table row cannot be normalized."""

    def __init__(self, sample_id: str, message: str):
        self.sample_id = sample_id
        super().__init__(f"Sample {sample_id}: {message}")
