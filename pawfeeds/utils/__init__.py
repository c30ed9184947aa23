"""Utility functions for pawfeeds."""

from pawfeeds.utils.helpers import ensure_dir, get_data_path

__all__ = ["ensure_dir", "get_data_path"]
