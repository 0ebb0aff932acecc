"""External service integrations."""
from campaign_payments.integrations.gateway import (
    GatewayAttempt,
    GatewayError,
    PaymentGateway,
    StripeGateway,
)
from campaign_payments.integrations.stripe_client import (
    CircuitBreaker,
    StripeClient,
    StripeError,
    StripeErrorType,
)

__all__ = [
    "CircuitBreaker",
    "GatewayAttempt",
    "GatewayError",
    "PaymentGateway",
    "StripeClient",
    "StripeError",
    "StripeErrorType",
    "StripeGateway",
]
