"""
Campaign record model.

One tagged-variant record covers all three campaign kinds. The `kind`
discriminator selects the policy that validates creation and governs
time-driven transitions; everything else (items, counters, status) is
shared.

State machine:
    PENDING ──┐
              ├─→ PROCESSING ─→ COMPLETED | PARTIAL | FAILED
    SCHEDULED ┘
    any but COMPLETED ─→ CANCELED
    SPLIT (PENDING | PARTIAL) ─→ EXPIRED
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class CampaignKind(str, Enum):
    """Campaign variants."""

    BULK = "bulk"
    SPLIT = "split"
    SCHEDULED = "scheduled"


class CampaignStatus(str, Enum):
    """Campaign-level lifecycle states."""

    SCHEDULED = "scheduled"
    PENDING = "pending"
    PROCESSING = "processing"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    EXPIRED = "expired"


class ItemStatus(str, Enum):
    """Per-item attempt states."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Only these may move to PROCESSING; everything else makes `process` a no-op.
STARTABLE_STATUSES = frozenset({CampaignStatus.PENDING, CampaignStatus.SCHEDULED})

# States reached once processing has finished with a verdict.
OUTCOME_STATUSES = frozenset(
    {CampaignStatus.COMPLETED, CampaignStatus.PARTIAL, CampaignStatus.FAILED}
)

# No transition happens from these without operator action.
FINAL_STATUSES = frozenset(
    {
        CampaignStatus.COMPLETED,
        CampaignStatus.FAILED,
        CampaignStatus.CANCELED,
        CampaignStatus.EXPIRED,
    }
)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_item_id() -> str:
    """Stable key used to address an item inside its campaign."""
    return uuid.uuid4().hex


class ItemOutcome(BaseModel):
    """Terminal result of one item attempt."""

    status: ItemStatus
    gateway_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_terminal(self) -> "ItemOutcome":
        if self.status == ItemStatus.PENDING:
            raise ValueError("An outcome must be succeeded or failed")
        if self.status == ItemStatus.SUCCEEDED and not self.gateway_reference:
            raise ValueError("A succeeded outcome needs a gateway reference")
        return self

    @classmethod
    def succeeded(cls, gateway_reference: str, transaction_id: Optional[str] = None) -> "ItemOutcome":
        return cls(
            status=ItemStatus.SUCCEEDED,
            gateway_reference=gateway_reference,
            transaction_id=transaction_id,
        )

    @classmethod
    def failed(cls, error_message: str) -> "ItemOutcome":
        return cls(status=ItemStatus.FAILED, error_message=error_message or "Unknown error")


class LineItem(BaseModel):
    """One payment attempt within a campaign."""

    item_id: str = Field(default_factory=new_item_id)
    recipient_email: str
    recipient_name: str
    amount: int
    description: Optional[str] = None
    status: ItemStatus = ItemStatus.PENDING
    gateway_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ItemStatus.PENDING

    def apply_outcome(self, outcome: ItemOutcome, at: datetime) -> None:
        """Overwrite this item's state with a terminal outcome."""
        self.status = outcome.status
        self.attempts += 1
        self.last_attempt_at = at
        if outcome.status == ItemStatus.SUCCEEDED:
            self.gateway_reference = outcome.gateway_reference
            self.transaction_id = outcome.transaction_id
            self.error_message = None
        else:
            self.error_message = outcome.error_message

    def mark_aborted(self, message: str) -> None:
        """Fail an item without counting an attempt; a retry reuses its idempotency key."""
        self.status = ItemStatus.FAILED
        self.error_message = message

    def reset_for_retry(self) -> None:
        """Return a failed item to pending so the next pass attempts it again."""
        self.status = ItemStatus.PENDING
        self.error_message = None


class CampaignRecord(BaseModel):
    """
    Parent record of a campaign and all of its line items.

    Invariants:
    - success_count/failure_count always equal a recount of `items`
    - total_amount is fixed at creation
    - COMPLETED and FAILED campaigns hold no pending items
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: CampaignKind
    currency: str
    total_amount: int
    description: str = ""
    items: list[LineItem]
    status: CampaignStatus
    success_count: int = 0
    failure_count: int = 0
    created_by: str
    expires_at: Optional[datetime] = None
    scheduled_date: Optional[datetime] = None
    error_message: Optional[str] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at", "expires_at", "scheduled_date")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def refresh_counters(self) -> None:
        """Recompute aggregate counters from the full item list."""
        self.success_count = sum(1 for i in self.items if i.status == ItemStatus.SUCCEEDED)
        self.failure_count = sum(1 for i in self.items if i.status == ItemStatus.FAILED)

    def get_item(self, item_id: str) -> Optional[LineItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def pending_items(self) -> list[LineItem]:
        return [i for i in self.items if i.status == ItemStatus.PENDING]

    def failed_items(self) -> list[LineItem]:
        return [i for i in self.items if i.status == ItemStatus.FAILED]

    @property
    def all_items_terminal(self) -> bool:
        return all(i.is_terminal for i in self.items)

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES

    def outcome_status(self) -> CampaignStatus:
        """
        Verdict once every item is terminal.

        COMPLETED when every item succeeded, FAILED when none did,
        PARTIAL otherwise.
        """
        total = len(self.items)
        if self.success_count == total:
            return CampaignStatus.COMPLETED
        if self.success_count == 0:
            return CampaignStatus.FAILED
        return CampaignStatus.PARTIAL

    def item_total(self) -> int:
        return sum(i.amount for i in self.items)
