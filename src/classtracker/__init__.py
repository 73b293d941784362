"""Catalog browsing and course subscription tracking."""

from __future__ import annotations

from classtracker.errors import ClassTrackerError, ErrorCode
from classtracker.session import CatalogRow, TrackerSession

__all__ = ["CatalogRow", "ClassTrackerError", "ErrorCode", "TrackerSession"]
