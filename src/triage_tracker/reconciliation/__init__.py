"""Delayed re-lookups that confirm optimistic writes."""

from triage_tracker.reconciliation.scheduler import ReconciliationScheduler

__all__ = ["ReconciliationScheduler"]
