"""
Item executor.

Turns one line item into one gateway attempt plus one ledger entry.
Whatever happens, the caller gets an ItemOutcome back; item failures
never escape into the batch.
"""
import time

import structlog

from campaign_payments.core.clock import Clock
from campaign_payments.domain.errors import ItemExecutionError
from campaign_payments.domain.models import CampaignRecord, ItemOutcome, LineItem
from campaign_payments.infrastructure.ledger import Ledger
from campaign_payments.integrations.gateway import GatewayError, PaymentGateway
from campaign_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def idempotency_key(campaign: CampaignRecord, item: LineItem) -> str:
    """
    Key for the next attempt on `item`.

    Transport retries of one attempt share a key; a retry of a failed
    item is a new attempt and gets a new one.
    """
    return f"campaign:{campaign.id}:item:{item.item_id}:attempt:{item.attempts + 1}"


class ItemExecutor:
    """Executes single line items against the gateway and ledger."""

    def __init__(self, gateway: PaymentGateway, ledger: Ledger, clock: Clock):
        self.gateway = gateway
        self.ledger = ledger
        self.clock = clock

    async def execute(self, campaign: CampaignRecord, item: LineItem) -> ItemOutcome:
        """
        Attempt one item.

        Returns:
            ItemOutcome: succeeded with the gateway reference and ledger id,
            or failed with a human-readable message
        """
        try:
            outcome = await self._attempt(campaign, item)
        except ItemExecutionError as e:
            logger.warning(
                "item_attempt_failed",
                campaign_id=campaign.id,
                item_id=item.item_id,
                error=str(e),
            )
            outcome = ItemOutcome.failed(str(e))

        metrics.record_item_outcome(campaign.kind.value, outcome.status.value, item.amount)
        return outcome

    async def _attempt(self, campaign: CampaignRecord, item: LineItem) -> ItemOutcome:
        key = idempotency_key(campaign, item)
        started = time.perf_counter()
        try:
            attempt = await self.gateway.create_payment_attempt(
                amount=item.amount,
                currency=campaign.currency,
                recipient_email=item.recipient_email,
                recipient_name=item.recipient_name,
                description=item.description or campaign.description or None,
                idempotency_key=key,
                metadata={
                    "campaign_id": campaign.id,
                    "campaign_kind": campaign.kind.value,
                    "item_id": item.item_id,
                },
            )
        except GatewayError as e:
            raise ItemExecutionError(str(e), campaign.id, item.item_id) from e
        except Exception as e:
            raise ItemExecutionError(
                f"Payment gateway error: {e}", campaign.id, item.item_id
            ) from e
        finally:
            metrics.record_gateway_duration(time.perf_counter() - started)

        try:
            transaction_id = await self.ledger.record_transaction(
                campaign, item, attempt.reference, self.clock.now()
            )
        except Exception as e:
            # The charge went through; keep its reference for reconciliation.
            logger.error(
                "transaction_record_failed",
                campaign_id=campaign.id,
                item_id=item.item_id,
                gateway_reference=attempt.reference,
                error=str(e),
            )
            raise ItemExecutionError(
                f"Payment {attempt.reference} accepted but not recorded: {e}",
                campaign.id,
                item.item_id,
            ) from e

        logger.info(
            "item_attempt_succeeded",
            campaign_id=campaign.id,
            item_id=item.item_id,
            gateway_reference=attempt.reference,
            idempotency_key=key,
        )
        return ItemOutcome.succeeded(attempt.reference, transaction_id)
