"""In-memory overlay of confirmed and optimistic request records.

The cache is the only mutable shared state of a session. Every operation is
synchronous, so between the event loop's suspension points no reader can
observe a half-applied update. Reads return immutable snapshots.

Two kinds of optimistic state are layered over the confirmed records:

* placeholders for creates the server has acknowledged but not yet shown
  in a lookup, and
* pending patches for updates whose effect a lookup does not reflect yet.

A *generation* counts full replacements. Background reconciliations carry a
``LookupTicket`` and are dropped when the generation moved on in the interim
or a later-issued lookup already reconciled.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from triage_tracker.domain.models import Request, RequestPatch, is_placeholder_identity
from triage_tracker.records.duplicate_guard import has_conflict
from triage_tracker.records.normalizer import DiagnosticSink, normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupTicket:
    correlation_key: str
    generation: int
    sequence: int


@dataclass(frozen=True)
class PatchHandle:
    identity: str
    previous: Request
    generation: int


class OverlayCache:
    """Authoritative in-memory collection of requests for one open email."""

    def __init__(self, sink: DiagnosticSink | None = None) -> None:
        self._sink = sink
        self._records: tuple[Request, ...] = ()
        self._patches: dict[str, RequestPatch] = {}
        self._generation = 0
        self._issued = 0
        self._applied = 0

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    @property
    def generation(self) -> int:
        return self._generation

    def all(self) -> tuple[Request, ...]:
        return self._records

    def find(self, identity: str) -> Request | None:
        for record in self._records:
            if record.identity == identity:
                return record
        return None

    def for_key(self, correlation_key: str) -> tuple[Request, ...]:
        return tuple(r for r in self._records if r.correlation_key == correlation_key)

    def placeholders(self, correlation_key: str | None = None) -> tuple[Request, ...]:
        return tuple(
            r
            for r in self._records
            if r.is_placeholder
            and (correlation_key is None or r.correlation_key == correlation_key)
        )

    def pending_patch(self, identity: str) -> RequestPatch | None:
        return self._patches.get(identity)

    def has_pending(self, correlation_key: str) -> bool:
        if self.placeholders(correlation_key):
            return True
        return any(
            record.identity in self._patches for record in self.for_key(correlation_key)
        )

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------
    def begin_lookup(self, correlation_key: str) -> LookupTicket:
        """Register a reconciliation lookup that is about to be issued."""
        self._issued += 1
        return LookupTicket(
            correlation_key=correlation_key,
            generation=self._generation,
            sequence=self._issued,
        )

    def replace_all(self, records: Iterable[object], *, correlation_key: str = "") -> int:
        """Swap the entire content for the result of a full lookup."""
        fresh = self._normalize(records, correlation_key)
        self._records = tuple(fresh)
        self._patches = {}
        self._generation += 1
        self._applied = self._issued
        logger.debug(
            "Cache replaced: %d records, generation=%d", len(self._records), self._generation
        )
        return self._generation

    def insert_placeholder(self, request: Request) -> Request:
        """Add an optimistic record for an acknowledged create.

        Returns the record now standing for the write: the placeholder, or
        the confirmed counterpart when a lookup already delivered it.
        """
        if not request.is_placeholder or not is_placeholder_identity(request.identity):
            raise ValueError(f"Not a placeholder request: {request.identity!r}")
        if self.find(request.identity) is not None:
            raise ValueError(f"Placeholder identity already cached: {request.identity!r}")

        confirmed = [r for r in self._records if not r.is_placeholder]
        counterpart = has_conflict(confirmed, request.correlation_key, request.category)
        if counterpart is not None:
            logger.info(
                "Create for %s already confirmed as %s; skipping placeholder",
                request.category.value,
                counterpart.identity,
            )
            return counterpart

        self._records = self._records + (request,)
        return request

    def reconcile(self, records: Iterable[object], ticket: LookupTicket | None = None) -> bool:
        """Fold a fresh lookup result into the cache.

        Returns False when the result was dropped as stale.
        """
        if ticket is not None:
            if ticket.generation != self._generation:
                logger.debug(
                    "Dropping reconciliation from generation %d (current %d)",
                    ticket.generation,
                    self._generation,
                )
                return False
            if ticket.sequence < self._applied:
                logger.debug(
                    "Dropping reconciliation #%d superseded by #%d",
                    ticket.sequence,
                    self._applied,
                )
                return False
            self._applied = ticket.sequence

        correlation_key = ticket.correlation_key if ticket is not None else ""
        fresh = self._normalize(records, correlation_key)
        placeholders = [r for r in self._records if r.is_placeholder]

        if not fresh:
            self._records = tuple(placeholders)
            self._patches = {}
            return True

        remaining: list[Request] = []
        for placeholder in placeholders:
            counterpart = has_conflict(fresh, placeholder.correlation_key, placeholder.category)
            if counterpart is None:
                remaining.append(placeholder)
            else:
                logger.info(
                    "Placeholder %s confirmed as %s", placeholder.identity, counterpart.identity
                )

        merged: list[Request] = []
        patches: dict[str, RequestPatch] = {}
        for record in fresh:
            patch = self._patches.get(record.identity)
            if patch is None or record.reflects(patch):
                merged.append(record)
                continue
            patches[record.identity] = patch
            merged.append(record.apply(patch))

        self._records = tuple(merged + remaining)
        self._patches = patches
        return True

    def apply_patch(self, identity: str, patch: RequestPatch) -> PatchHandle:
        """Optimistically apply an update to a confirmed record."""
        current = self.find(identity)
        if current is None:
            raise KeyError(identity)
        if current.is_placeholder:
            raise ValueError(f"Placeholder {identity!r} cannot be updated")
        self._swap(identity, current.apply(patch))
        self._patches[identity] = patch
        return PatchHandle(identity=identity, previous=current, generation=self._generation)

    def revert_patch(self, handle: PatchHandle) -> None:
        """Roll back an optimistic update after the remote call failed."""
        self._patches.pop(handle.identity, None)
        if handle.generation != self._generation:
            return
        if self.find(handle.identity) is not None:
            self._swap(handle.identity, handle.previous)

    def _swap(self, identity: str, replacement: Request) -> None:
        self._records = tuple(
            replacement if record.identity == identity else record for record in self._records
        )

    def _normalize(self, records: Iterable[object], correlation_key: str) -> list[Request]:
        # Lookup results are confirmed records of the key they were queried with.
        seen: set[str] = set()
        fresh: list[Request] = []
        for raw in records:
            record = normalize(raw, sink=self._sink).with_correlation_key(correlation_key)
            if record.is_placeholder:
                record = dataclasses.replace(record, is_placeholder=False)
            if record.identity in seen:
                logger.warning("Duplicate identity %s in lookup result ignored", record.identity)
                continue
            seen.add(record.identity)
            fresh.append(record)
        return fresh
