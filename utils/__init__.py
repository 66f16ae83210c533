"""Shared utilities for the narrator."""

from .logging import setup_logging

__all__ = ["setup_logging"]
