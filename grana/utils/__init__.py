"""Shared utility functions for the GranaStream client."""

from grana.utils.date_coder import format_timestamp, parse_timestamp

__all__ = ["format_timestamp", "parse_timestamp"]
