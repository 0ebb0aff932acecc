"""
Campaign orchestrator.

Drives a campaign from creation to a terminal verdict:

1. Guarded start: PENDING/SCHEDULED -> PROCESSING in one CAS write, so
   two concurrent `process` calls cannot both dispatch
2. Pending items split into batches; batches run one after another,
   items inside a batch run concurrently
3. Every outcome lands through the progress tracker
4. Finalize: COMPLETED, PARTIAL or FAILED from the recounted items

Crash safety comes from the record itself: succeeded items are never
dispatched again, and a run that dies mid-way leaves the campaign in
PROCESSING for the reaper to release.
"""
import asyncio
import time
from datetime import datetime
from typing import List, Optional

import structlog

from campaign_payments.config import Settings, get_settings
from campaign_payments.core.clock import Clock, SystemClock
from campaign_payments.core.executor import ItemExecutor
from campaign_payments.core.notifications import (
    CAMPAIGN_CREATED,
    CAMPAIGN_REMINDER,
    CampaignEvents,
    CampaignNotifier,
)
from campaign_payments.core.tracker import ProgressTracker
from campaign_payments.domain.errors import (
    CampaignAccessError,
    CampaignNotFoundError,
    CampaignStateError,
    OrchestrationError,
    TrackerContentionError,
)
from campaign_payments.domain.models import (
    OUTCOME_STATUSES,
    STARTABLE_STATUSES,
    CampaignKind,
    CampaignRecord,
    CampaignStatus,
    ItemStatus,
    LineItem,
)
from campaign_payments.domain.policies import CampaignPolicy, SplitPolicy, get_policy
from campaign_payments.domain.requests import CampaignRequest
from campaign_payments.infrastructure.ledger import Ledger
from campaign_payments.infrastructure.store import CampaignQuery, CampaignStore
from campaign_payments.integrations.gateway import PaymentGateway
from campaign_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Cancel is refused once a campaign has reached one of these.
UNCANCELABLE_STATUSES = frozenset(
    {CampaignStatus.COMPLETED, CampaignStatus.CANCELED, CampaignStatus.EXPIRED}
)

# Single-item retries are accepted while the aggregate is in one of these.
ITEM_RETRY_STATUSES = frozenset(
    {CampaignStatus.PENDING, CampaignStatus.PARTIAL, CampaignStatus.FAILED}
)


class CampaignOrchestrator:
    """
    Owns campaign lifecycle operations.

    All writes go through the ProgressTracker; the orchestrator never
    writes the store directly except for the initial insert.
    """

    def __init__(
        self,
        store: CampaignStore,
        gateway: PaymentGateway,
        ledger: Ledger,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[CampaignNotifier] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Campaign document store
            gateway: Payment gateway for item attempts
            ledger: Transaction ledger for successful attempts
            clock: Time source (UTC wall clock by default)
            settings: Application settings
            notifier: Lifecycle event sink (logs by default)
        """
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.store = store
        self.tracker = ProgressTracker(store, self.clock, self.settings)
        self.executor = ItemExecutor(gateway, ledger, self.clock)
        self.events = CampaignEvents(notifier)

        logger.info(
            "campaign_orchestrator_initialized",
            batch_size=self.settings.batch_size,
            batch_delay_seconds=self.settings.batch_delay_seconds,
        )

    def policy_for(self, kind: CampaignKind) -> CampaignPolicy:
        return get_policy(kind, self.settings)

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    async def create_campaign(self, request: CampaignRequest, created_by: str) -> CampaignRecord:
        """
        Validate a creation request and store the campaign.

        Raises:
            CampaignValidationError: If the request breaks a creation rule;
                nothing is stored in that case
        """
        policy = self.policy_for(request.kind)
        record = policy.build(request, created_by, self.clock.now())
        stored = await self.store.insert(record)

        metrics.record_campaign_created(stored.kind.value)
        logger.info(
            "campaign_created",
            campaign_id=stored.id,
            kind=stored.kind.value,
            status=stored.status.value,
            item_count=len(stored.items),
            total_amount=stored.total_amount,
            currency=stored.currency,
            created_by=created_by,
        )
        await self.events.emit(CAMPAIGN_CREATED, stored)
        return stored

    async def get_campaign(
        self, campaign_id: str, requested_by: Optional[str] = None
    ) -> CampaignRecord:
        """
        Load a campaign.

        Raises:
            CampaignNotFoundError: If it does not exist
            CampaignAccessError: If `requested_by` is given and is not the owner
        """
        record = await self.store.get(campaign_id)
        if record is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found", campaign_id)
        self._authorize(record, requested_by)
        return record

    async def list_campaigns(
        self,
        owner: str,
        kind: Optional[CampaignKind] = None,
        limit: Optional[int] = None,
    ) -> List[CampaignRecord]:
        """List an owner's campaigns, newest first."""
        return await self.store.find(
            CampaignQuery(created_by=owner, kind=kind, order="newest", limit=limit)
        )

    @staticmethod
    def _authorize(record: CampaignRecord, requested_by: Optional[str]) -> None:
        if requested_by is not None and record.created_by != requested_by:
            raise CampaignAccessError("Not authorized to access this campaign", record.id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process(
        self, campaign_id: str, requested_by: Optional[str] = None
    ) -> CampaignRecord:
        """
        Run every pending item of a campaign and settle its status.

        A campaign that is not PENDING or SCHEDULED is left untouched and
        returned as is; calling `process` twice is safe.

        Raises:
            CampaignStateError: If a split campaign's collection window closed
            OrchestrationError: If the store or another collaborator failed
                outside an item attempt
        """
        record = await self.get_campaign(campaign_id, requested_by)
        policy = self.policy_for(record.kind)
        now = self.clock.now()

        def start(current: CampaignRecord) -> Optional[CampaignRecord]:
            if current.status not in STARTABLE_STATUSES:
                return None
            policy.ensure_accepting(current, now)
            current.status = CampaignStatus.PROCESSING
            current.error_message = None
            return current

        with structlog.contextvars.bound_contextvars(
            campaign_id=campaign_id, kind=record.kind.value
        ):
            started = await self.tracker.update(campaign_id, start)
            if started is None:
                current = await self.get_campaign(campaign_id)
                logger.info("campaign_process_skipped", status=current.status.value)
                return current

            await self.announce(started)
            return await self._run(started)

    async def _run(self, record: CampaignRecord) -> CampaignRecord:
        started_at = time.perf_counter()
        logger.info(
            "campaign_processing_started",
            pending_items=len(record.pending_items()),
            batch_size=self.settings.batch_size,
        )

        try:
            await self._dispatch(record)
            final = await self.tracker.update(record.id, self._finish)
        except Exception as e:
            logger.error("campaign_processing_error", error=str(e), exc_info=True)
            await self._abort(record.id, e)
            raise OrchestrationError(f"Campaign processing failed: {e}", record.id) from e

        metrics.record_processing_duration(record.kind.value, time.perf_counter() - started_at)

        if final is None:
            current = await self.get_campaign(record.id)
            logger.info("campaign_processing_interrupted", status=current.status.value)
            return current

        logger.info(
            "campaign_processing_finished",
            status=final.status.value,
            success_count=final.success_count,
            failure_count=final.failure_count,
        )
        await self.announce(final)
        return final

    async def _dispatch(self, record: CampaignRecord) -> None:
        item_ids = [item.item_id for item in record.pending_items()]
        size = self.settings.batch_size
        batches = [item_ids[i : i + size] for i in range(0, len(item_ids), size)]

        for index, batch_ids in enumerate(batches):
            if index > 0 and self.settings.batch_delay_seconds > 0:
                await asyncio.sleep(self.settings.batch_delay_seconds)

            current = await self.get_campaign(record.id)
            if current.status != CampaignStatus.PROCESSING:
                logger.info(
                    "campaign_dispatch_stopped",
                    status=current.status.value,
                    remaining_batches=len(batches) - index,
                )
                return

            items = [
                item
                for item in (current.get_item(item_id) for item_id in batch_ids)
                if item is not None and item.status == ItemStatus.PENDING
            ]
            results = await asyncio.gather(
                *(self._run_item(current, item) for item in items),
                return_exceptions=True,
            )

            escalate: Optional[BaseException] = None
            for item, result in zip(items, results):
                if isinstance(result, TrackerContentionError):
                    logger.warning("item_outcome_not_recorded", item_id=item.item_id)
                elif isinstance(result, BaseException) and escalate is None:
                    escalate = result
            if escalate is not None:
                raise escalate

            logger.debug("campaign_batch_dispatched", batch=index + 1, items=len(items))

    async def _run_item(self, campaign: CampaignRecord, item: LineItem) -> None:
        outcome = await self.executor.execute(campaign, item)
        await self.tracker.record_outcome(campaign.id, item.item_id, outcome)

    @staticmethod
    def _finish(record: CampaignRecord) -> Optional[CampaignRecord]:
        if record.status != CampaignStatus.PROCESSING:
            return None
        if record.pending_items():
            # Some outcomes could not be written; leave them for another pass.
            record.status = CampaignStatus.PENDING
        else:
            record.status = record.outcome_status()
        return record

    async def _abort(self, campaign_id: str, error: Exception) -> None:
        message = f"Processing aborted: {error}"

        def fail(record: CampaignRecord) -> Optional[CampaignRecord]:
            if record.status != CampaignStatus.PROCESSING:
                return None
            for item in record.pending_items():
                item.mark_aborted(message)
            record.status = CampaignStatus.FAILED
            record.error_message = str(error)
            return record

        try:
            failed = await self.tracker.update(campaign_id, fail)
        except Exception as nested:
            logger.error(
                "campaign_abort_not_recorded",
                error=str(error),
                write_error=str(nested),
            )
            return

        if failed is not None:
            await self.announce(failed, error=str(error))

    async def announce(self, record: CampaignRecord, **details: object) -> None:
        metrics.record_status_transition(record.kind.value, record.status.value)
        await self.events.emit_status(record, **details)

    # ------------------------------------------------------------------
    # Retry and cancel
    # ------------------------------------------------------------------

    async def retry(self, campaign_id: str, requested_by: Optional[str] = None) -> CampaignRecord:
        """
        Reset failed items to pending and process the campaign again.

        A campaign left PENDING by an interrupted retry is resumed.

        Raises:
            CampaignStateError: If nothing is retryable, the campaign is
                canceled/expired, or it is still processing
        """
        record = await self.get_campaign(campaign_id, requested_by)
        policy = self.policy_for(record.kind)
        now = self.clock.now()

        def reset(current: CampaignRecord) -> Optional[CampaignRecord]:
            if current.status in (CampaignStatus.CANCELED, CampaignStatus.EXPIRED):
                raise CampaignStateError(
                    f"Cannot retry a {current.status.value} campaign", current.id
                )
            policy.ensure_accepting(current, now)

            failed = current.failed_items()
            if failed:
                if current.status == CampaignStatus.PROCESSING:
                    raise CampaignStateError("Campaign is currently processing", current.id)
                for item in failed:
                    item.reset_for_retry()
                current.status = CampaignStatus.PENDING
                current.error_message = None
                return current

            if current.pending_items():
                if current.status == CampaignStatus.PENDING:
                    return None
                collecting = (
                    current.kind == CampaignKind.SPLIT
                    and current.status in SplitPolicy.collecting_statuses
                )
                if current.status in OUTCOME_STATUSES and not collecting:
                    # A single-item attempt died before its claim was released.
                    current.status = CampaignStatus.PENDING
                    current.error_message = None
                    return current
            raise CampaignStateError("No failed items to retry", current.id)

        reset_record = await self.tracker.update(campaign_id, reset)
        logger.info(
            "campaign_retry_requested",
            campaign_id=campaign_id,
            resumed=reset_record is None,
        )
        return await self.process(campaign_id)

    async def retry_item(
        self, campaign_id: str, item_id: str, requested_by: Optional[str] = None
    ) -> CampaignRecord:
        """
        Retry one failed item immediately.

        Allowed while the campaign is PENDING, PARTIAL or FAILED (and, for
        split campaigns, before expiry).
        """
        record = await self.get_campaign(campaign_id, requested_by)
        policy = self.policy_for(record.kind)
        now = self.clock.now()

        def claim(current: CampaignRecord) -> CampaignRecord:
            if current.status not in ITEM_RETRY_STATUSES:
                raise CampaignStateError(
                    f"Cannot retry items of a {current.status.value} campaign", current.id
                )
            policy.ensure_accepting(current, now)
            item = current.get_item(item_id)
            if item is None:
                raise CampaignNotFoundError(f"Item {item_id} not found", current.id)
            if item.status != ItemStatus.FAILED:
                raise CampaignStateError("Only failed items can be retried", current.id)
            item.reset_for_retry()
            return current

        claimed = await self.tracker.update(campaign_id, claim)
        return await self._execute_single(claimed, item_id, policy)

    async def cancel(self, campaign_id: str, requested_by: Optional[str] = None) -> CampaignRecord:
        """
        Cancel a campaign.

        Cooperative: a running pass stops before its next batch, and
        outcomes of attempts already in flight are still recorded.
        """
        await self.get_campaign(campaign_id, requested_by)

        def mark_canceled(current: CampaignRecord) -> CampaignRecord:
            if current.status in UNCANCELABLE_STATUSES:
                raise CampaignStateError(
                    f"Cannot cancel a {current.status.value} campaign", current.id
                )
            current.status = CampaignStatus.CANCELED
            return current

        canceled = await self.tracker.update(campaign_id, mark_canceled)
        logger.info("campaign_canceled", campaign_id=campaign_id)
        await self.announce(canceled)
        return canceled

    # ------------------------------------------------------------------
    # Split and scheduled operations
    # ------------------------------------------------------------------

    async def pay_participant(self, campaign_id: str, participant_email: str) -> CampaignRecord:
        """
        Charge one participant's share of a split campaign now.

        Concurrent calls for the same share carry the same idempotency key,
        so the gateway deduplicates them.
        """
        record = await self.get_campaign(campaign_id)
        if record.kind != CampaignKind.SPLIT:
            raise CampaignStateError("Only split campaigns accept participant payments", campaign_id)

        policy = self.policy_for(record.kind)
        now = self.clock.now()
        email = participant_email.strip().lower()
        claimed_item_id: List[str] = []

        def claim(current: CampaignRecord) -> CampaignRecord:
            if current.status not in SplitPolicy.collecting_statuses:
                raise CampaignStateError(
                    f"Split payment is {current.status.value}", current.id
                )
            policy.ensure_accepting(current, now)
            item = next(
                (i for i in current.items if i.recipient_email.lower() == email), None
            )
            if item is None:
                raise CampaignNotFoundError("Participant not found in split payment", current.id)
            if item.status == ItemStatus.SUCCEEDED:
                raise CampaignStateError("Participant has already paid", current.id)
            item.reset_for_retry()
            claimed_item_id[:] = [item.item_id]
            return current

        claimed = await self.tracker.update(campaign_id, claim)
        return await self._execute_single(claimed, claimed_item_id[0], policy)

    async def _execute_single(
        self, record: CampaignRecord, item_id: str, policy: CampaignPolicy
    ) -> CampaignRecord:
        item = record.get_item(item_id)
        outcome = await self.executor.execute(record, item)
        try:
            await self.tracker.record_outcome(record.id, item_id, outcome)
        except Exception as e:
            logger.error(
                "single_item_outcome_not_recorded",
                campaign_id=record.id,
                item_id=item_id,
                outcome=outcome.status.value,
                gateway_reference=outcome.gateway_reference,
                error=str(e),
            )
            await self._release_claim(record.id, item_id, e)
            raise

        def settle(current: CampaignRecord) -> Optional[CampaignRecord]:
            if current.status not in ITEM_RETRY_STATUSES:
                return None
            status = policy.settle_status(current)
            if status is None or status == current.status:
                return None
            current.status = status
            return current

        settled = await self.tracker.update(record.id, settle)
        logger.info(
            "campaign_item_settled",
            campaign_id=record.id,
            item_id=item_id,
            outcome=outcome.status.value,
        )
        if settled is None:
            return await self.get_campaign(record.id)
        await self.announce(settled)
        return settled

    async def _release_claim(self, campaign_id: str, item_id: str, error: Exception) -> None:
        """
        Return a claimed item to FAILED after its outcome could not be stored.

        The attempt counter is left alone, so the next retry of the item
        reuses the same idempotency key and the gateway returns the same
        charge. If this write fails too, `retry` still recovers the item.
        """
        message = f"Payment outcome not recorded: {error}"

        def release(current: CampaignRecord) -> Optional[CampaignRecord]:
            item = current.get_item(item_id)
            if item is None or item.status != ItemStatus.PENDING:
                return None
            item.mark_aborted(message)
            return current

        try:
            await self.tracker.update(campaign_id, release)
        except Exception as nested:
            logger.error(
                "item_claim_not_released",
                campaign_id=campaign_id,
                item_id=item_id,
                error=str(error),
                write_error=str(nested),
            )

    async def remind_participants(
        self, campaign_id: str, requested_by: Optional[str] = None
    ) -> List[str]:
        """Emit a reminder for every split participant who has not paid."""
        record = await self.get_campaign(campaign_id, requested_by)
        if record.kind != CampaignKind.SPLIT:
            raise CampaignStateError("Only split campaigns have participants", campaign_id)
        if record.status not in SplitPolicy.collecting_statuses:
            raise CampaignStateError(f"Split payment is {record.status.value}", campaign_id)
        self.policy_for(record.kind).ensure_accepting(record, self.clock.now())

        pending = [item.recipient_email for item in record.pending_items()]
        if not pending:
            raise CampaignStateError("No pending participants to remind", campaign_id)

        await self.events.emit(CAMPAIGN_REMINDER, record, participants=pending)
        logger.info("split_reminders_sent", campaign_id=campaign_id, count=len(pending))
        return pending

    async def reschedule(
        self,
        campaign_id: str,
        scheduled_date: datetime,
        description: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> CampaignRecord:
        """
        Move a scheduled campaign to a new date.

        Amounts are fixed at creation and cannot be changed here.
        """
        record = await self.get_campaign(campaign_id, requested_by)
        if record.kind != CampaignKind.SCHEDULED:
            raise CampaignStateError("Only scheduled campaigns can be rescheduled", campaign_id)

        policy = self.policy_for(record.kind)
        now = self.clock.now()

        def move(current: CampaignRecord) -> CampaignRecord:
            if current.status != CampaignStatus.SCHEDULED:
                raise CampaignStateError(
                    f"Cannot reschedule a {current.status.value} campaign", current.id
                )
            current.scheduled_date = policy.validate_schedule(scheduled_date, now)
            if description is not None:
                current.description = description
            return current

        moved = await self.tracker.update(campaign_id, move)
        logger.info(
            "campaign_rescheduled",
            campaign_id=campaign_id,
            scheduled_date=moved.scheduled_date.isoformat(),
        )
        return moved
