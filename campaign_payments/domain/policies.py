"""
Kind policies.

Bulk, split and scheduled campaigns share orchestration but differ in
creation rules and time semantics. Each kind gets one policy object;
the orchestrator and reaper consult it instead of branching on `kind`.
"""
from __future__ import annotations

import re
from abc import ABC
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from campaign_payments.config import Settings
from campaign_payments.domain.errors import CampaignStateError, CampaignValidationError
from campaign_payments.domain.models import (
    CampaignKind,
    CampaignRecord,
    CampaignStatus,
    LineItem,
    ensure_utc,
)
from campaign_payments.domain.requests import (
    CampaignRequest,
    LineItemRequest,
    ScheduledCampaignRequest,
    SplitCampaignRequest,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


class CampaignPolicy(ABC):
    """Creation and time rules for one campaign kind."""

    kind: CampaignKind
    initial_status: CampaignStatus = CampaignStatus.PENDING

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def max_items(self) -> int:
        return self.settings.max_items_per_campaign

    def build(self, request: CampaignRequest, created_by: str, now: datetime) -> CampaignRecord:
        """
        Validate a request and produce the initial record.

        Raises:
            CampaignValidationError: If any rule fails
        """
        if not created_by:
            raise CampaignValidationError("Campaign owner is required")

        self.validate(request, now)

        items = [
            LineItem(
                recipient_email=entry.recipient_email,
                recipient_name=entry.recipient_name.strip(),
                amount=entry.amount,
                description=entry.description,
            )
            for entry in request.items
        ]

        record = CampaignRecord(
            kind=self.kind,
            currency=request.currency,
            total_amount=self.total_amount(request),
            description=request.description,
            items=items,
            status=self.initial_status,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **self.time_fields(request, now),
        )
        record.refresh_counters()
        return record

    def validate(self, request: CampaignRequest, now: datetime) -> None:
        if not CURRENCY_PATTERN.match(request.currency):
            raise CampaignValidationError("Currency must be 3-letter code")

        entries = request.items
        if not entries:
            raise CampaignValidationError("At least one payment is required")

        if len(entries) > self.max_items:
            raise CampaignValidationError(
                f"Maximum {self.max_items} payments allowed per {self.kind.value} campaign"
            )

        for entry in entries:
            self._validate_entry(entry)

    def _validate_entry(self, entry: LineItemRequest) -> None:
        if not EMAIL_PATTERN.match(entry.recipient_email):
            raise CampaignValidationError(f"Invalid email address: {entry.recipient_email}")

        if not entry.recipient_name or not entry.recipient_name.strip():
            raise CampaignValidationError(f"Recipient name is required for {entry.recipient_email}")

        if entry.amount <= 0:
            raise CampaignValidationError(f"Amount must be positive for {entry.recipient_email}")

        if entry.amount < self.settings.min_item_amount:
            raise CampaignValidationError(
                f"Minimum amount is {self.settings.min_item_amount} "
                f"for {entry.recipient_email}"
            )

    def total_amount(self, request: CampaignRequest) -> int:
        return sum(entry.amount for entry in request.items)

    def time_fields(self, request: CampaignRequest, now: datetime) -> Dict[str, Any]:
        return {}

    def ensure_accepting(self, record: CampaignRecord, now: datetime) -> None:
        """Raise if a time gate forbids further attempts on this campaign."""
        return None

    def is_overdue(self, record: CampaignRecord, now: datetime) -> bool:
        """Whether the reaper should expire this campaign."""
        return False

    def settle_status(self, record: CampaignRecord) -> Optional[CampaignStatus]:
        """
        Aggregate status after a single-item attempt outside a full pass.

        None leaves the status alone.
        """
        if record.all_items_terminal:
            return record.outcome_status()
        return None


class BulkPolicy(CampaignPolicy):
    """Payout to many recipients; total is the item sum."""

    kind = CampaignKind.BULK


class SplitPolicy(CampaignPolicy):
    """
    Shared payment across payers.

    The requested total is the contract; participant shares must add up
    to it within the rounding tolerance. Collection stops at `expires_at`.
    """

    kind = CampaignKind.SPLIT

    # Aggregate states in which payers may still pay.
    collecting_statuses = frozenset({CampaignStatus.PENDING, CampaignStatus.PARTIAL})

    def validate(self, request: SplitCampaignRequest, now: datetime) -> None:
        super().validate(request, now)

        if request.total_amount <= 0:
            raise CampaignValidationError("Total amount must be positive")

        participant_total = sum(p.amount for p in request.participants)
        if abs(participant_total - request.total_amount) > self.settings.split_rounding_tolerance:
            raise CampaignValidationError(
                f"Participant amounts ({participant_total}) must equal "
                f"total amount ({request.total_amount})"
            )

        emails = [p.recipient_email.lower() for p in request.participants]
        if len(set(emails)) != len(emails):
            raise CampaignValidationError("Each participant may appear only once")

        if request.expires_in_hours is not None and request.expires_in_hours <= 0:
            raise CampaignValidationError("Expiry window must be positive")

    def total_amount(self, request: SplitCampaignRequest) -> int:
        return request.total_amount

    def time_fields(self, request: SplitCampaignRequest, now: datetime) -> Dict[str, Any]:
        hours = request.expires_in_hours or self.settings.split_default_expiry_hours
        return {"expires_at": now + timedelta(hours=hours)}

    def ensure_accepting(self, record: CampaignRecord, now: datetime) -> None:
        if record.expires_at is not None and now >= record.expires_at:
            raise CampaignStateError("Split payment has expired", record.id)

    def is_overdue(self, record: CampaignRecord, now: datetime) -> bool:
        return (
            record.status in self.collecting_statuses
            and record.expires_at is not None
            and record.expires_at <= now
        )

    def settle_status(self, record: CampaignRecord) -> Optional[CampaignStatus]:
        if record.all_items_terminal:
            return record.outcome_status()
        if record.success_count > 0:
            return CampaignStatus.PARTIAL
        return CampaignStatus.PENDING


class ScheduledPolicy(CampaignPolicy):
    """Payments deferred until `scheduled_date`."""

    kind = CampaignKind.SCHEDULED
    initial_status = CampaignStatus.SCHEDULED

    @property
    def max_items(self) -> int:
        return self.settings.max_items_per_scheduled_campaign

    def validate(self, request: ScheduledCampaignRequest, now: datetime) -> None:
        super().validate(request, now)
        self.validate_schedule(request.scheduled_date, now)

    def validate_schedule(self, scheduled_date: Optional[datetime], now: datetime) -> datetime:
        scheduled_date = ensure_utc(scheduled_date)
        if scheduled_date is None or scheduled_date <= now:
            raise CampaignValidationError("Scheduled date must be in the future")

        horizon = now + timedelta(days=self.settings.scheduling_horizon_days)
        if scheduled_date > horizon:
            raise CampaignValidationError(
                f"Cannot schedule payments more than "
                f"{self.settings.scheduling_horizon_days} days in advance"
            )
        return scheduled_date

    def time_fields(self, request: ScheduledCampaignRequest, now: datetime) -> Dict[str, Any]:
        return {"scheduled_date": ensure_utc(request.scheduled_date)}


POLICY_CLASSES = {
    CampaignKind.BULK: BulkPolicy,
    CampaignKind.SPLIT: SplitPolicy,
    CampaignKind.SCHEDULED: ScheduledPolicy,
}


def get_policy(kind: CampaignKind, settings: Settings) -> CampaignPolicy:
    """Resolve the policy for a campaign kind."""
    return POLICY_CLASSES[kind](settings)
