"""sitekb: website ingestion and semantic retrieval for tenant chat agents."""

__version__ = "0.1.0"
