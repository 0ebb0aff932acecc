"""
Creation request schemas.

Structural typing only; business validation (amount floor, totals,
dates) happens in the kind policies so every rejection carries a precise
campaign-level reason.
"""
from datetime import datetime
from typing import ClassVar, Optional

from pydantic import BaseModel, Field, field_validator

from campaign_payments.domain.models import CampaignKind


class LineItemRequest(BaseModel):
    """One recipient/payer entry of a creation request."""

    recipient_email: str = Field(..., description="Recipient or payer email")
    recipient_name: str = Field(..., description="Recipient or payer display name")
    amount: int = Field(..., description="Amount in minor units (e.g. cents)")
    description: Optional[str] = Field(default=None, description="Per-item description")

    @field_validator("recipient_email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip()


class CampaignRequest(BaseModel):
    """Fields shared by every campaign kind."""

    kind: ClassVar[CampaignKind]

    currency: str = Field(..., description="ISO currency code (e.g. usd)")
    description: str = Field(default="", description="Campaign description")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        return v.strip().upper()


class BulkCampaignRequest(CampaignRequest):
    """Payout to many recipients."""

    kind: ClassVar[CampaignKind] = CampaignKind.BULK

    items: list[LineItemRequest] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "currency": "usd",
                    "description": "October contractor payouts",
                    "items": [
                        {"recipient_email": "a@example.com", "recipient_name": "A", "amount": 1000},
                        {"recipient_email": "b@example.com", "recipient_name": "B", "amount": 2500},
                    ],
                }
            ]
        }
    }


class SplitCampaignRequest(CampaignRequest):
    """One payment divided across several payers."""

    kind: ClassVar[CampaignKind] = CampaignKind.SPLIT

    total_amount: int = Field(..., description="Amount to collect in minor units")
    participants: list[LineItemRequest] = Field(default_factory=list)
    expires_in_hours: Optional[float] = Field(
        default=None, description="Collection window; settings default when omitted"
    )

    @property
    def items(self) -> list[LineItemRequest]:
        return self.participants


class ScheduledCampaignRequest(CampaignRequest):
    """One or more payments deferred to a future instant."""

    kind: ClassVar[CampaignKind] = CampaignKind.SCHEDULED

    items: list[LineItemRequest] = Field(default_factory=list)
    scheduled_date: datetime = Field(..., description="Instant the payments become due")
