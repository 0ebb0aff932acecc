"""
Campaign lifecycle notifications.

Delivery (email, webhooks) lives outside this package. The orchestrator
and reaper call `CampaignEvents.emit`, which never lets a notifier
failure affect payment processing.
"""
from typing import Any, Optional, Protocol

import structlog

from campaign_payments.domain.models import CampaignRecord, CampaignStatus

logger = structlog.get_logger(__name__)

CAMPAIGN_CREATED = "campaign.created"
CAMPAIGN_PROCESSING = "campaign.processing"
CAMPAIGN_COMPLETED = "campaign.completed"
CAMPAIGN_PARTIAL = "campaign.partial"
CAMPAIGN_FAILED = "campaign.failed"
CAMPAIGN_CANCELED = "campaign.canceled"
CAMPAIGN_EXPIRED = "campaign.expired"
CAMPAIGN_REMINDER = "campaign.reminder"

STATUS_EVENTS = {
    CampaignStatus.PROCESSING: CAMPAIGN_PROCESSING,
    CampaignStatus.COMPLETED: CAMPAIGN_COMPLETED,
    CampaignStatus.PARTIAL: CAMPAIGN_PARTIAL,
    CampaignStatus.FAILED: CAMPAIGN_FAILED,
    CampaignStatus.CANCELED: CAMPAIGN_CANCELED,
    CampaignStatus.EXPIRED: CAMPAIGN_EXPIRED,
}


class CampaignNotifier(Protocol):
    async def notify(self, event: str, campaign: CampaignRecord, **details: Any) -> None:
        ...


class LoggingNotifier:
    """
    Default notifier that just logs events.

    Replace with an email or message queue publisher.
    """

    async def notify(self, event: str, campaign: CampaignRecord, **details: Any) -> None:
        logger.info(
            "campaign_event",
            event_type=event,
            campaign_id=campaign.id,
            kind=campaign.kind.value,
            status=campaign.status.value,
            **details,
        )


class CampaignEvents:
    """Fire-and-forget wrapper around a notifier."""

    def __init__(self, notifier: Optional[CampaignNotifier] = None):
        self.notifier = notifier or LoggingNotifier()

    async def emit(self, event: str, campaign: CampaignRecord, **details: Any) -> None:
        try:
            await self.notifier.notify(event, campaign, **details)
        except Exception as e:
            logger.warning(
                "campaign_notification_failed",
                event_type=event,
                campaign_id=campaign.id,
                error=str(e),
            )

    async def emit_status(self, campaign: CampaignRecord, **details: Any) -> None:
        """Emit the event matching the campaign's current status, if any."""
        event = STATUS_EVENTS.get(campaign.status)
        if event is not None:
            await self.emit(event, campaign, **details)
