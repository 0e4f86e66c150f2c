"""Ingestion progress reporting."""
