"""Ingestion state provider implementations."""
