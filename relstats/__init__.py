"""Relationship stat extraction orchestration and delta-merge engine."""

from relstats.core.logging_config import setup_logging

__version__ = "0.1.0"

__all__ = ["setup_logging"]
