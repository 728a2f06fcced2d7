"""Normalization, overlay cache and duplicate detection for tracked requests."""

from triage_tracker.records.cache import LookupTicket, OverlayCache, PatchHandle
from triage_tracker.records.duplicate_guard import (
    duplicate_conflict_message,
    has_conflict,
)
from triage_tracker.records.normalizer import denormalize, normalize, normalize_all

__all__ = [
    "LookupTicket",
    "OverlayCache",
    "PatchHandle",
    "denormalize",
    "duplicate_conflict_message",
    "has_conflict",
    "normalize",
    "normalize_all",
]
