"""
Tests for the time-driven reaper scans.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from campaign_payments.core import CampaignOrchestrator, CampaignReaper
from campaign_payments.domain import CampaignStatus, ItemStatus, OrchestrationError
from campaign_payments.infrastructure import InMemoryCampaignStore
from tests.factories import (
    OWNER,
    ManualClock,
    RecordingNotifier,
    StubGateway,
    bulk_request,
    scheduled_request,
    split_request,
)


async def _force_processing(orchestrator: CampaignOrchestrator, campaign_id: str):
    def claim(record):
        record.status = CampaignStatus.PROCESSING
        return record

    return await orchestrator.tracker.update(campaign_id, claim)


class TestDueScheduled:
    """Scheduled campaigns run once their date arrives."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_runs_only_when_due(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
        gateway: StubGateway,
    ) -> None:
        record = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(days=1), 500, 700), OWNER
        )

        early = await reaper.run_due_scheduled()
        assert early == {"due": 0, "processed": 0, "failed": 0}
        assert gateway.calls == []

        clock.advance(days=1)
        summary = await reaper.run_due_scheduled()

        assert summary == {"due": 1, "processed": 1, "failed": 0}
        assert (await orchestrator.get_campaign(record.id)).status == CampaignStatus.COMPLETED
        assert len(gateway.calls) == 2

        again = await reaper.run_due_scheduled()
        assert again["due"] == 0
        assert len(gateway.calls) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_scan(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
    ) -> None:
        broken = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(hours=1), 500), OWNER
        )
        healthy = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(hours=2), 500), OWNER
        )
        real_process = orchestrator.process

        async def process(campaign_id, requested_by=None):
            if campaign_id == broken.id:
                raise OrchestrationError("store unavailable", campaign_id)
            return await real_process(campaign_id, requested_by)

        orchestrator.process = AsyncMock(side_effect=process)
        clock.advance(hours=3)

        summary = await reaper.run_due_scheduled()

        assert summary == {"due": 2, "processed": 1, "failed": 1}
        assert [c.args[0] for c in orchestrator.process.await_args_list] == [broken.id, healthy.id]
        assert (await orchestrator.get_campaign(healthy.id)).status == CampaignStatus.COMPLETED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_canceled_scheduled_campaign_is_skipped(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
        gateway: StubGateway,
    ) -> None:
        record = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(hours=1), 500), OWNER
        )
        await orchestrator.cancel(record.id)
        clock.advance(hours=2)

        summary = await reaper.run_due_scheduled()

        assert summary["due"] == 0
        assert gateway.calls == []


class TestExpireOverdue:
    """Split collection windows closing."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expires_overdue_split(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
        notifier: RecordingNotifier,
    ) -> None:
        record = await orchestrator.create_campaign(
            split_request(200, 100, 100, expires_in_hours=1), OWNER
        )
        await orchestrator.pay_participant(record.id, "payer1@example.com")

        assert (await reaper.expire_overdue())["expired"] == 0

        clock.advance(hours=1, minutes=1)
        summary = await reaper.expire_overdue()

        assert summary == {"candidates": 1, "expired": 1}
        expired = await orchestrator.get_campaign(record.id)
        assert expired.status == CampaignStatus.EXPIRED
        assert expired.items[0].status == ItemStatus.SUCCEEDED
        assert expired.items[1].status == ItemStatus.PENDING
        assert notifier.names()[-1] == "campaign.expired"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settled_split_is_left_alone(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
    ) -> None:
        record = await orchestrator.create_campaign(
            split_request(100, 100, expires_in_hours=1), OWNER
        )
        await orchestrator.pay_participant(record.id, "payer1@example.com")
        clock.advance(hours=2)

        summary = await reaper.expire_overdue()

        assert summary == {"candidates": 0, "expired": 0}
        assert (await orchestrator.get_campaign(record.id)).status == CampaignStatus.COMPLETED


class TestReleaseStalled:
    """PROCESSING campaigns left behind by a crashed run."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stalled_campaign_released_and_resumed(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
        gateway: StubGateway,
    ) -> None:
        record = await orchestrator.create_campaign(bulk_request(100, 200), OWNER)
        await _force_processing(orchestrator, record.id)

        assert (await reaper.release_stalled())["released"] == 0

        clock.advance(seconds=orchestrator.settings.stalled_after_seconds + 1)
        summary = await reaper.release_stalled()

        assert summary == {"stalled": 1, "released": 1}
        released = await orchestrator.get_campaign(record.id)
        assert released.status == CampaignStatus.PENDING

        resumed = await orchestrator.process(record.id)
        assert resumed.status == CampaignStatus.COMPLETED
        assert len(gateway.calls) == 2


class TestPurgeRetired:
    """Retention of settled campaigns."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_purges_only_old_settled_campaigns(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        store: InMemoryCampaignStore,
        clock: ManualClock,
    ) -> None:
        done = await orchestrator.create_campaign(bulk_request(100), OWNER)
        await orchestrator.process(done.id)
        waiting = await orchestrator.create_campaign(bulk_request(100), OWNER)

        assert (await reaper.purge_retired())["deleted"] == 0

        clock.advance(days=orchestrator.settings.retention_days + 1)
        summary = await reaper.purge_retired()

        assert summary == {"deleted": 1}
        assert await store.get(done.id) is None
        assert await store.get(waiting.id) is not None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_purge_runs_in_batches(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        store: InMemoryCampaignStore,
        clock: ManualClock,
    ) -> None:
        reaper.settings = orchestrator.settings.model_copy(update={"purge_batch_size": 2})
        for _ in range(5):
            record = await orchestrator.create_campaign(bulk_request(100), OWNER)
            await orchestrator.cancel(record.id)
        clock.advance(days=orchestrator.settings.retention_days + 1)

        summary = await reaper.purge_retired()

        assert summary == {"deleted": 5}
        assert len(store) == 0


class TestRunOnce:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_once_reports_every_scan(
        self,
        orchestrator: CampaignOrchestrator,
        reaper: CampaignReaper,
        clock: ManualClock,
    ) -> None:
        await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(minutes=5), 500), OWNER
        )
        await orchestrator.create_campaign(
            split_request(200, 100, 100, expires_in_hours=0.05), OWNER
        )
        clock.advance(minutes=10)

        summary = await reaper.run_once()

        assert set(summary) == {"released", "scheduled", "expired", "purged"}
        assert summary["scheduled"]["processed"] == 1
        assert summary["expired"]["expired"] == 1
        assert summary["released"]["released"] == 0
        assert summary["purged"]["deleted"] == 0
