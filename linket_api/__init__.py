"""Linket tag service: tag resolution, claims and batch minting."""

__version__ = "0.3.0"
