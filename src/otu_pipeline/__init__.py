"""otu-pipeline: canonical OTU count tables from taxonomic classifier reports."""

__version__ = "0.1.0"
