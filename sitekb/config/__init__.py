"""Configuration module: exports Settings."""

from sitekb.config.settings import Settings

__all__ = ["Settings"]
