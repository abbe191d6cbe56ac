"""kubeingest: cluster resource ingestion and graph synthesis for developer catalogs."""

__version__ = "0.3.0"
