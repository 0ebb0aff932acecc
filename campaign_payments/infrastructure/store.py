"""
Campaign document store.

The store is the one piece of shared mutable state in the system. All it
must offer is:
1. Per-document atomic read-modify-write (optimistic, version-checked)
2. Equality/range queries by owner, status and time fields
3. Batched deletes for retention cleanup

Example race without versioning:
T0: executor A reads campaign (version 5)
T0: executor B reads campaign (version 5)
T1: A writes item 3 succeeded (version 6)
T2: B writes item 7 failed (version 6) - item 3's outcome is lost

With versioning, B's write at T2 is rejected; B re-reads version 6 and
writes version 7 with both outcomes present.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Protocol

import structlog

from campaign_payments.domain.models import CampaignKind, CampaignRecord, CampaignStatus

logger = structlog.get_logger(__name__)


class ConcurrencyError(Exception):
    """
    Raised when optimistic concurrency check fails.

    This prevents lost updates in concurrent scenarios.
    """

    def __init__(self, campaign_id: str, expected: int, current: Optional[int]):
        self.campaign_id = campaign_id
        self.expected_version = expected
        self.current_version = current
        super().__init__(
            f"Concurrency conflict for {campaign_id}: "
            f"expected version {expected}, current version {current}"
        )


@dataclass(frozen=True)
class CampaignQuery:
    """
    Filter for campaign lookups.

    All set fields must match. Time bounds are inclusive except
    `updated_before`, which is strict.
    """

    created_by: Optional[str] = None
    kind: Optional[CampaignKind] = None
    statuses: Optional[FrozenSet[CampaignStatus]] = None
    scheduled_from: Optional[datetime] = None
    scheduled_until: Optional[datetime] = None
    expires_until: Optional[datetime] = None
    updated_before: Optional[datetime] = None
    order: str = "newest"  # newest | oldest | due
    limit: Optional[int] = None

    def matches(self, record: CampaignRecord) -> bool:
        if self.created_by is not None and record.created_by != self.created_by:
            return False
        if self.kind is not None and record.kind != self.kind:
            return False
        if self.statuses is not None and record.status not in self.statuses:
            return False
        if self.scheduled_from is not None and (
            record.scheduled_date is None or record.scheduled_date < self.scheduled_from
        ):
            return False
        if self.scheduled_until is not None and (
            record.scheduled_date is None or record.scheduled_date > self.scheduled_until
        ):
            return False
        if self.expires_until is not None and (
            record.expires_at is None or record.expires_at > self.expires_until
        ):
            return False
        if self.updated_before is not None and record.updated_at >= self.updated_before:
            return False
        return True

    def sort(self, records: List[CampaignRecord]) -> List[CampaignRecord]:
        if self.order == "due":
            ordered = sorted(records, key=lambda r: (r.scheduled_date is None, r.scheduled_date or r.created_at))
        elif self.order == "oldest":
            ordered = sorted(records, key=lambda r: r.created_at)
        else:
            ordered = sorted(records, key=lambda r: r.created_at, reverse=True)
        if self.limit is not None:
            ordered = ordered[: self.limit]
        return ordered


class CampaignStore(Protocol):
    """Interface for campaign document storage (PostgreSQL, in-memory, etc.)."""

    async def insert(self, record: CampaignRecord) -> CampaignRecord:
        """Persist a new campaign at version 0."""
        ...

    async def get(self, campaign_id: str) -> Optional[CampaignRecord]:
        """Load a campaign, or None if it does not exist."""
        ...

    async def replace(self, record: CampaignRecord, expected_version: int) -> CampaignRecord:
        """
        Overwrite a campaign if its stored version is still `expected_version`.

        CRITICAL: expected_version prevents lost updates.

        Raises:
            ConcurrencyError: If another writer got there first
        """
        ...

    async def find(self, query: CampaignQuery) -> List[CampaignRecord]:
        """Return campaigns matching a query."""
        ...

    async def delete_many(self, campaign_ids: List[str]) -> int:
        """Delete campaigns in one batched write; returns rows removed."""
        ...


# ============================================================================
# IN-MEMORY IMPLEMENTATION (for testing and local development)
# ============================================================================


class InMemoryCampaignStore:
    """
    In-memory campaign store for testing.

    Production uses PostgreSQL, but this is useful for:
    - Unit tests (fast, no DB required)
    - Local development (no infrastructure needed)

    Documents are stored as plain dicts and copied on every read so that
    callers never share state, the way a real document store behaves.
    Each call yields to the event loop once to emulate I/O and let
    concurrent writers interleave.
    """

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self.writes = 0
        self.conflicts = 0

    @staticmethod
    def _load(document: Dict[str, Any]) -> CampaignRecord:
        return CampaignRecord.model_validate(document)

    async def insert(self, record: CampaignRecord) -> CampaignRecord:
        await asyncio.sleep(0)
        if record.id in self._documents:
            raise ValueError(f"Campaign {record.id} already exists")
        stored = record.model_copy(update={"version": 0}, deep=True)
        self._documents[record.id] = stored.model_dump()
        self.writes += 1
        return self._load(self._documents[record.id])

    async def get(self, campaign_id: str) -> Optional[CampaignRecord]:
        await asyncio.sleep(0)
        document = self._documents.get(campaign_id)
        if document is None:
            return None
        return self._load(document)

    async def replace(self, record: CampaignRecord, expected_version: int) -> CampaignRecord:
        await asyncio.sleep(0)
        # Check and write below run without yielding, so they are atomic.
        current = self._documents.get(record.id)
        current_version = current["version"] if current is not None else None
        if current_version != expected_version:
            self.conflicts += 1
            raise ConcurrencyError(record.id, expected_version, current_version)

        stored = record.model_copy(update={"version": expected_version + 1}, deep=True)
        self._documents[record.id] = stored.model_dump()
        self.writes += 1
        return self._load(self._documents[record.id])

    async def find(self, query: CampaignQuery) -> List[CampaignRecord]:
        await asyncio.sleep(0)
        records = [self._load(doc) for doc in self._documents.values()]
        return query.sort([r for r in records if query.matches(r)])

    async def delete_many(self, campaign_ids: List[str]) -> int:
        await asyncio.sleep(0)
        removed = 0
        for campaign_id in campaign_ids:
            if self._documents.pop(campaign_id, None) is not None:
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._documents)
