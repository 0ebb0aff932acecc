"""
Payment gateway capability.

The core only needs to create one payment attempt per line item and
learn whether it was accepted. Stripe is one implementation.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import structlog

from campaign_payments.integrations.stripe_client import StripeClient, StripeError

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """A payment attempt was rejected or could not be made."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass(frozen=True)
class GatewayAttempt:
    """Accepted payment attempt."""

    reference: str
    status: Optional[str] = None


class PaymentGateway(Protocol):
    """External payment processor."""

    async def create_payment_attempt(
        self,
        amount: int,
        currency: str,
        recipient_email: str,
        recipient_name: str,
        description: Optional[str],
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayAttempt:
        """
        Create one payment attempt.

        `metadata` travels with the charge so it can be traced back to
        its campaign item.

        Raises:
            GatewayError: If the attempt is rejected
        """
        ...


class StripeGateway:
    """PaymentGateway backed by Stripe PaymentIntents."""

    def __init__(self, client: Optional[StripeClient] = None):
        self.client = client or StripeClient()

    async def create_payment_attempt(
        self,
        amount: int,
        currency: str,
        recipient_email: str,
        recipient_name: str,
        description: Optional[str],
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayAttempt:
        try:
            intent = await self.client.create_payment_intent(
                amount_cents=amount,
                currency=currency,
                idempotency_key=idempotency_key,
                description=description,
                receipt_email=recipient_email,
                metadata={
                    **(metadata or {}),
                    "customer_email": recipient_email,
                    "customer_name": recipient_name,
                },
            )
        except StripeError as e:
            raise GatewayError(str(e), retryable=e.retryable) from e

        return GatewayAttempt(reference=intent.id, status=getattr(intent, "status", None))
