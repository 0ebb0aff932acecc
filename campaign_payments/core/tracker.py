"""
Progress tracker.

The only writer of campaign documents. Every write is a compare-and-swap
on the record version, retried with jittered exponential backoff:

    read (version N) -> mutate -> recount -> write IF version == N

Counters are recomputed from the full item list on every write, so
concurrent outcomes for different items can never lose one another.
"""
from typing import Callable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from campaign_payments.config import Settings
from campaign_payments.core.clock import Clock
from campaign_payments.domain.errors import CampaignNotFoundError, TrackerContentionError
from campaign_payments.domain.models import CampaignRecord, ItemOutcome
from campaign_payments.infrastructure.store import CampaignStore, ConcurrencyError
from campaign_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Mutates the freshly read record in place and returns it, or returns None
# to decline the write. Raising aborts without retry.
Mutator = Callable[[CampaignRecord], Optional[CampaignRecord]]


class ProgressTracker:
    """Atomic read-modify-write access to campaign records."""

    def __init__(self, store: CampaignStore, clock: Clock, settings: Settings):
        self.store = store
        self.clock = clock
        self.settings = settings

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(ConcurrencyError),
            stop=stop_after_attempt(self.settings.tracker_max_attempts),
            wait=wait_exponential(
                multiplier=self.settings.tracker_backoff_initial,
                max=self.settings.tracker_backoff_max,
            )
            + wait_random(0, self.settings.tracker_backoff_initial),
            reraise=True,
        )

    async def update(self, campaign_id: str, mutator: Mutator) -> Optional[CampaignRecord]:
        """
        Apply `mutator` to the latest record and write it atomically.

        Returns:
            The stored record, or None if the mutator declined

        Raises:
            CampaignNotFoundError: If the campaign does not exist
            TrackerContentionError: If every attempt conflicted
        """
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._apply(campaign_id, mutator)
        except ConcurrencyError:
            metrics.record_tracker_exhausted()
            logger.error(
                "campaign_write_contention_exhausted",
                campaign_id=campaign_id,
                attempts=self.settings.tracker_max_attempts,
            )
            raise TrackerContentionError(campaign_id, self.settings.tracker_max_attempts)
        return None

    async def _apply(self, campaign_id: str, mutator: Mutator) -> Optional[CampaignRecord]:
        record = await self.store.get(campaign_id)
        if record is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found", campaign_id)

        expected_version = record.version
        updated = mutator(record)
        if updated is None:
            return None

        updated.refresh_counters()
        updated.updated_at = self.clock.now()

        try:
            return await self.store.replace(updated, expected_version)
        except ConcurrencyError as e:
            metrics.record_tracker_conflict()
            logger.debug(
                "campaign_write_conflict",
                campaign_id=campaign_id,
                expected_version=e.expected_version,
                current_version=e.current_version,
            )
            raise

    async def record_outcome(
        self, campaign_id: str, item_id: str, outcome: ItemOutcome
    ) -> CampaignRecord:
        """
        Persist one item's outcome and refresh the counters.

        Never touches campaign status; outcomes arriving after a cancel
        are still stored.
        """
        at = self.clock.now()

        def apply(record: CampaignRecord) -> CampaignRecord:
            item = record.get_item(item_id)
            if item is None:
                raise CampaignNotFoundError(
                    f"Item {item_id} not found in campaign {campaign_id}", campaign_id
                )
            item.apply_outcome(outcome, at)
            return record

        record = await self.update(campaign_id, apply)
        logger.debug(
            "item_outcome_recorded",
            campaign_id=campaign_id,
            item_id=item_id,
            status=outcome.status.value,
            success_count=record.success_count,
            failure_count=record.failure_count,
        )
        return record
