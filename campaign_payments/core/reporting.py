"""
Campaign statistics and CSV export.

Read-only: nothing here writes the store, and failures are reported as
ReportingError without retry.
"""
import csv
import io
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from campaign_payments.core.clock import Clock, SystemClock
from campaign_payments.domain.errors import (
    CampaignAccessError,
    CampaignError,
    CampaignNotFoundError,
    ReportingError,
)
from campaign_payments.domain.models import CampaignKind, CampaignRecord, CampaignStatus
from campaign_payments.infrastructure.store import CampaignQuery, CampaignStore

logger = structlog.get_logger(__name__)

EXPORT_HEADER = [
    "Email",
    "Name",
    "Amount",
    "Currency",
    "Status",
    "Reference",
    "Transaction ID",
    "Error Message",
]

# ISO 4217 currencies without a minor unit.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)


def format_amount(amount: int, currency: str) -> str:
    """Render minor units as a decimal string in the currency's major unit."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return str(amount)
    return str((Decimal(amount) / 100).quantize(Decimal("0.01")))


class CampaignStats(BaseModel):
    """Aggregates over one owner's campaigns."""

    total_campaigns: int = 0
    total_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    success_rate: float = Field(default=0.0, description="Percent of items succeeded")
    total_volume: int = Field(default=0, description="Sum of campaign totals, minor units")
    completed_campaigns: int = 0
    average_campaign_amount: float = 0.0
    status_counts: Dict[str, int] = Field(default_factory=dict)


@dataclass(frozen=True)
class ExportFile:
    filename: str
    content: str
    media_type: str = "text/csv"


class CampaignReporter:
    """Stats, upcoming-schedule and export views over the campaign store."""

    def __init__(self, store: CampaignStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    async def campaign_stats(
        self, owner: str, kind: Optional[CampaignKind] = None
    ) -> CampaignStats:
        """
        Summarize an owner's campaigns, optionally of one kind.

        Raises:
            ReportingError: If the campaigns cannot be read
        """
        try:
            campaigns = await self.store.find(CampaignQuery(created_by=owner, kind=kind))
        except Exception as e:
            logger.error("campaign_stats_failed", owner=owner, error=str(e))
            raise ReportingError(f"Failed to fetch campaign stats: {e}") from e

        stats = CampaignStats(total_campaigns=len(campaigns))
        for campaign in campaigns:
            stats.total_items += len(campaign.items)
            stats.successful_items += campaign.success_count
            stats.failed_items += campaign.failure_count
            stats.total_volume += campaign.total_amount
            if campaign.status == CampaignStatus.COMPLETED:
                stats.completed_campaigns += 1
            status = campaign.status.value
            stats.status_counts[status] = stats.status_counts.get(status, 0) + 1

        if stats.total_items:
            stats.success_rate = stats.successful_items / stats.total_items * 100
        if stats.total_campaigns:
            stats.average_campaign_amount = stats.total_volume / stats.total_campaigns
        return stats

    async def upcoming_scheduled(self, owner: str, days: int = 7) -> List[CampaignRecord]:
        """Scheduled campaigns due within the next `days`, soonest first."""
        now = self.clock.now()
        try:
            return await self.store.find(
                CampaignQuery(
                    created_by=owner,
                    kind=CampaignKind.SCHEDULED,
                    statuses=frozenset({CampaignStatus.SCHEDULED}),
                    scheduled_from=now,
                    scheduled_until=now + timedelta(days=days),
                    order="due",
                )
            )
        except Exception as e:
            raise ReportingError(f"Failed to fetch upcoming scheduled campaigns: {e}") from e

    async def export_campaign(
        self, campaign_id: str, requested_by: Optional[str] = None
    ) -> ExportFile:
        """
        Render a campaign's items as CSV.

        Raises:
            CampaignNotFoundError: If the campaign does not exist
            CampaignAccessError: If `requested_by` does not own it
            ReportingError: If the export cannot be produced
        """
        try:
            record = await self.store.get(campaign_id)
        except Exception as e:
            raise ReportingError(f"Failed to export campaign: {e}", campaign_id) from e

        if record is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found", campaign_id)
        if requested_by is not None and record.created_by != requested_by:
            raise CampaignAccessError("You can only export your own campaigns", campaign_id)

        try:
            content = self._render(record)
        except CampaignError:
            raise
        except Exception as e:
            logger.error("campaign_export_failed", campaign_id=campaign_id, error=str(e))
            raise ReportingError(f"Failed to export campaign: {e}", campaign_id) from e

        filename = (
            f"{record.kind.value}-campaign-{record.id}-"
            f"{self.clock.now().date().isoformat()}.csv"
        )
        logger.info("campaign_exported", campaign_id=campaign_id, rows=len(record.items))
        return ExportFile(filename=filename, content=content)

    @staticmethod
    def _render(record: CampaignRecord) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(EXPORT_HEADER)
        for item in record.items:
            writer.writerow(
                [
                    item.recipient_email,
                    item.recipient_name,
                    format_amount(item.amount, record.currency),
                    record.currency,
                    item.status.value,
                    item.gateway_reference or "",
                    item.transaction_id or "",
                    item.error_message or "",
                ]
            )
        return buffer.getvalue()
