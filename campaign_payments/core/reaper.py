"""
Time-driven reaper.

Has no timer of its own: an external scheduler (see
workers/reaper_worker.py) calls `run_once` periodically. Every
transition re-checks eligibility inside the CAS write, so overlapping
runs and races with user actions are harmless.
"""
import asyncio
from datetime import timedelta
from typing import Dict, Optional

import structlog

from campaign_payments.core.orchestrator import CampaignOrchestrator
from campaign_payments.domain.errors import CampaignError
from campaign_payments.domain.models import (
    FINAL_STATUSES,
    OUTCOME_STATUSES,
    CampaignKind,
    CampaignRecord,
    CampaignStatus,
)
from campaign_payments.domain.policies import SplitPolicy
from campaign_payments.infrastructure.store import CampaignQuery
from campaign_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CampaignReaper:
    """Periodic scans for due, overdue, stalled and retired campaigns."""

    def __init__(self, orchestrator: CampaignOrchestrator):
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.tracker = orchestrator.tracker
        self.clock = orchestrator.clock
        self.settings = orchestrator.settings

    async def run_due_scheduled(self) -> Dict[str, int]:
        """
        Process scheduled campaigns whose date has arrived.

        A failure on one campaign is logged and the scan moves on.
        """
        now = self.clock.now()
        due = await self.store.find(
            CampaignQuery(
                kind=CampaignKind.SCHEDULED,
                statuses=frozenset({CampaignStatus.SCHEDULED}),
                scheduled_until=now,
                order="due",
            )
        )

        summary = {"due": len(due), "processed": 0, "failed": 0}
        for index, campaign in enumerate(due):
            if index > 0 and self.settings.reaper_execution_delay > 0:
                await asyncio.sleep(self.settings.reaper_execution_delay)
            try:
                result = await self.orchestrator.process(campaign.id)
            except CampaignError as e:
                summary["failed"] += 1
                logger.error(
                    "scheduled_campaign_execution_failed",
                    campaign_id=campaign.id,
                    error=str(e),
                )
                continue

            summary["processed"] += 1
            logger.info(
                "scheduled_campaign_executed",
                campaign_id=campaign.id,
                status=result.status.value,
            )

        metrics.record_reaper_scan("due_scheduled", "processed", summary["processed"])
        metrics.record_reaper_scan("due_scheduled", "failed", summary["failed"])
        return summary

    async def expire_overdue(self) -> Dict[str, int]:
        """Move split campaigns past `expires_at` to EXPIRED. Items are untouched."""
        now = self.clock.now()
        policy = self.orchestrator.policy_for(CampaignKind.SPLIT)
        candidates = await self.store.find(
            CampaignQuery(
                kind=CampaignKind.SPLIT,
                statuses=SplitPolicy.collecting_statuses,
                expires_until=now,
                order="oldest",
            )
        )

        def expire(record: CampaignRecord) -> Optional[CampaignRecord]:
            if not policy.is_overdue(record, now):
                return None
            record.status = CampaignStatus.EXPIRED
            return record

        expired = 0
        for campaign in candidates:
            try:
                result = await self.tracker.update(campaign.id, expire)
            except CampaignError as e:
                logger.error("split_expiry_failed", campaign_id=campaign.id, error=str(e))
                continue
            if result is None:
                continue
            expired += 1
            logger.info("split_campaign_expired", campaign_id=campaign.id)
            await self.orchestrator.announce(result)

        metrics.record_reaper_scan("expire_overdue", "expired", expired)
        return {"candidates": len(candidates), "expired": expired}

    async def release_stalled(self) -> Dict[str, int]:
        """
        Return campaigns stuck in PROCESSING to PENDING.

        A run that crashed mid-way leaves PROCESSING behind with no further
        writes; once quiet for `stalled_after_seconds` it can be resumed
        with `process`, which skips items that already succeeded.
        """
        cutoff = self.clock.now() - timedelta(seconds=self.settings.stalled_after_seconds)
        stalled = await self.store.find(
            CampaignQuery(
                statuses=frozenset({CampaignStatus.PROCESSING}),
                updated_before=cutoff,
                order="oldest",
            )
        )

        def release(record: CampaignRecord) -> Optional[CampaignRecord]:
            if record.status != CampaignStatus.PROCESSING or record.updated_at >= cutoff:
                return None
            record.status = CampaignStatus.PENDING
            return record

        released = 0
        for campaign in stalled:
            try:
                result = await self.tracker.update(campaign.id, release)
            except CampaignError as e:
                logger.error("stalled_release_failed", campaign_id=campaign.id, error=str(e))
                continue
            if result is not None:
                released += 1
                logger.warning(
                    "stalled_campaign_released",
                    campaign_id=campaign.id,
                    pending_items=len(result.pending_items()),
                )

        metrics.record_reaper_scan("release_stalled", "released", released)
        return {"stalled": len(stalled), "released": released}

    async def purge_retired(self) -> Dict[str, int]:
        """Delete settled campaigns untouched for `retention_days`, in batches."""
        cutoff = self.clock.now() - timedelta(days=self.settings.retention_days)
        batch_size = self.settings.purge_batch_size
        deleted = 0

        while True:
            retired = await self.store.find(
                CampaignQuery(
                    statuses=FINAL_STATUSES | OUTCOME_STATUSES,
                    updated_before=cutoff,
                    order="oldest",
                    limit=batch_size,
                )
            )
            if not retired:
                break

            removed = await self.store.delete_many([c.id for c in retired])
            deleted += removed
            logger.info("retired_campaigns_purged", count=removed, cutoff=cutoff.isoformat())
            if len(retired) < batch_size or removed == 0:
                break

        metrics.record_reaper_scan("purge_retired", "deleted", deleted)
        return {"deleted": deleted}

    async def run_once(self) -> Dict[str, Dict[str, int]]:
        """Run every scan once and return a summary keyed by scan."""
        summary = {
            "released": await self.release_stalled(),
            "scheduled": await self.run_due_scheduled(),
            "expired": await self.expire_overdue(),
            "purged": await self.purge_retired(),
        }
        metrics.mark_reaper_run()
        logger.info("reaper_run_completed", **summary)
        return summary
