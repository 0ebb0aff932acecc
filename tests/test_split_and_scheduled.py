"""
Tests for split collection and scheduled campaign operations.
"""
from datetime import timedelta

import pytest

from campaign_payments.core import CampaignOrchestrator
from campaign_payments.domain import (
    CampaignNotFoundError,
    CampaignStateError,
    CampaignStatus,
    CampaignValidationError,
    ItemStatus,
)
from tests.factories import (
    OWNER,
    ManualClock,
    RecordingNotifier,
    StubGateway,
    bulk_request,
    scheduled_request,
    split_request,
)


class TestSplitCampaigns:
    """Participants paying their own shares."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_split_rejects_mismatched_total(self, orchestrator: CampaignOrchestrator) -> None:
        accepted = await orchestrator.create_campaign(split_request(1000, 334, 333, 333), OWNER)
        assert accepted.total_amount == 1000

        with pytest.raises(CampaignValidationError, match="must equal total amount"):
            await orchestrator.create_campaign(split_request(900, 334, 333, 333), OWNER)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_participants_pay_until_completed(
        self,
        orchestrator: CampaignOrchestrator,
        gateway: StubGateway,
        notifier: RecordingNotifier,
    ) -> None:
        record = await orchestrator.create_campaign(split_request(1000, 334, 333, 333), OWNER)

        first = await orchestrator.pay_participant(record.id, "PAYER1@example.com")
        assert first.status == CampaignStatus.PARTIAL
        assert first.items[0].status == ItemStatus.SUCCEEDED
        assert first.success_count == 1

        second = await orchestrator.pay_participant(record.id, "payer2@example.com")
        assert second.status == CampaignStatus.PARTIAL

        final = await orchestrator.pay_participant(record.id, "payer3@example.com")
        assert final.status == CampaignStatus.COMPLETED
        assert final.success_count == 3
        assert [c["amount"] for c in gateway.calls] == [334, 333, 333]
        assert notifier.names() == [
            "campaign.created",
            "campaign.partial",
            "campaign.completed",
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_paid_participant_cannot_pay_twice(
        self, orchestrator: CampaignOrchestrator, gateway: StubGateway
    ) -> None:
        record = await orchestrator.create_campaign(split_request(200, 100, 100), OWNER)
        await orchestrator.pay_participant(record.id, "payer1@example.com")

        with pytest.raises(CampaignStateError, match="already paid"):
            await orchestrator.pay_participant(record.id, "payer1@example.com")
        assert len(gateway.calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_declined_participant_can_pay_again(
        self, orchestrator: CampaignOrchestrator, gateway: StubGateway
    ) -> None:
        record = await orchestrator.create_campaign(split_request(200, 100, 100), OWNER)
        gateway.fail_emails.add("payer1@example.com")

        declined = await orchestrator.pay_participant(record.id, "payer1@example.com")

        assert declined.status == CampaignStatus.PENDING
        assert declined.items[0].status == ItemStatus.FAILED
        assert declined.items[0].error_message == "Your card was declined."

        gateway.fail_emails.clear()
        paid = await orchestrator.pay_participant(record.id, "payer1@example.com")

        assert paid.items[0].status == ItemStatus.SUCCEEDED
        assert paid.status == CampaignStatus.PARTIAL
        keys = [c["idempotency_key"] for c in gateway.calls_for("payer1@example.com")]
        assert keys[0].endswith(":attempt:1")
        assert keys[1].endswith(":attempt:2")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_participant(self, orchestrator: CampaignOrchestrator) -> None:
        record = await orchestrator.create_campaign(split_request(200, 100, 100), OWNER)

        with pytest.raises(CampaignNotFoundError, match="Participant not found"):
            await orchestrator.pay_participant(record.id, "stranger@example.com")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bulk_campaign_rejects_participant_payment(
        self, orchestrator: CampaignOrchestrator
    ) -> None:
        record = await orchestrator.create_campaign(bulk_request(100), OWNER)

        with pytest.raises(CampaignStateError, match="Only split campaigns"):
            await orchestrator.pay_participant(record.id, "payee1@example.com")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_split_blocks_payments(
        self,
        orchestrator: CampaignOrchestrator,
        gateway: StubGateway,
        clock: ManualClock,
    ) -> None:
        record = await orchestrator.create_campaign(
            split_request(200, 100, 100, expires_in_hours=2), OWNER
        )
        clock.advance(hours=2)

        with pytest.raises(CampaignStateError, match="expired"):
            await orchestrator.pay_participant(record.id, "payer1@example.com")
        with pytest.raises(CampaignStateError, match="expired"):
            await orchestrator.process(record.id)
        with pytest.raises(CampaignStateError, match="expired"):
            await orchestrator.remind_participants(record.id)

        assert gateway.calls == []
        assert (await orchestrator.get_campaign(record.id)).status == CampaignStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_charges_every_participant(
        self, orchestrator: CampaignOrchestrator
    ) -> None:
        record = await orchestrator.create_campaign(split_request(1000, 334, 333, 333), OWNER)

        result = await orchestrator.process(record.id)

        assert result.status == CampaignStatus.COMPLETED
        assert result.total_amount == 1000

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remind_lists_unpaid_participants(
        self, orchestrator: CampaignOrchestrator, notifier: RecordingNotifier
    ) -> None:
        record = await orchestrator.create_campaign(split_request(300, 100, 100, 100), OWNER)
        await orchestrator.pay_participant(record.id, "payer2@example.com")

        reminded = await orchestrator.remind_participants(record.id, requested_by=OWNER)

        assert reminded == ["payer1@example.com", "payer3@example.com"]
        event, campaign_id, details = notifier.events[-1]
        assert event == "campaign.reminder"
        assert campaign_id == record.id
        assert details["participants"] == reminded

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remind_with_everyone_paid(self, orchestrator: CampaignOrchestrator) -> None:
        record = await orchestrator.create_campaign(split_request(100, 100), OWNER)
        await orchestrator.pay_participant(record.id, "payer1@example.com")

        with pytest.raises(CampaignStateError, match="Split payment is completed"):
            await orchestrator.remind_participants(record.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remind_rejects_bulk(self, orchestrator: CampaignOrchestrator) -> None:
        record = await orchestrator.create_campaign(bulk_request(100), OWNER)

        with pytest.raises(CampaignStateError, match="Only split campaigns have participants"):
            await orchestrator.remind_participants(record.id)


class TestScheduledCampaigns:
    """Rescheduling and manual execution."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reschedule_moves_date(
        self, orchestrator: CampaignOrchestrator, clock: ManualClock
    ) -> None:
        record = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(days=2), 500), OWNER
        )
        new_date = clock.now() + timedelta(days=10)

        moved = await orchestrator.reschedule(
            record.id, new_date, description="Rent, moved", requested_by=OWNER
        )

        assert moved.scheduled_date == new_date
        assert moved.description == "Rent, moved"
        assert moved.status == CampaignStatus.SCHEDULED
        assert moved.total_amount == 500
        assert moved.version == record.version + 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reschedule_validates_date(
        self, orchestrator: CampaignOrchestrator, clock: ManualClock
    ) -> None:
        record = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(days=2), 500), OWNER
        )

        with pytest.raises(CampaignValidationError, match="must be in the future"):
            await orchestrator.reschedule(record.id, clock.now() - timedelta(hours=1))
        with pytest.raises(CampaignValidationError, match="days in advance"):
            await orchestrator.reschedule(record.id, clock.now() + timedelta(days=400))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reschedule_after_cancel_rejected(
        self, orchestrator: CampaignOrchestrator, clock: ManualClock
    ) -> None:
        record = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(days=2), 500), OWNER
        )
        await orchestrator.cancel(record.id)

        with pytest.raises(CampaignStateError, match="Cannot reschedule a canceled campaign"):
            await orchestrator.reschedule(record.id, clock.now() + timedelta(days=3))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reschedule_rejects_other_kinds(
        self, orchestrator: CampaignOrchestrator, clock: ManualClock
    ) -> None:
        record = await orchestrator.create_campaign(bulk_request(100), OWNER)

        with pytest.raises(CampaignStateError, match="Only scheduled campaigns"):
            await orchestrator.reschedule(record.id, clock.now() + timedelta(days=3))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_scheduled_campaign_can_run_early_on_demand(
        self, orchestrator: CampaignOrchestrator, clock: ManualClock, gateway: StubGateway
    ) -> None:
        record = await orchestrator.create_campaign(
            scheduled_request(clock.now() + timedelta(days=2), 500, 700), OWNER
        )

        result = await orchestrator.process(record.id)

        assert result.status == CampaignStatus.COMPLETED
        assert len(gateway.calls) == 2
