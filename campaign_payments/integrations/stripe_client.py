"""
Stripe API client with retry logic and error classification.

Implements:
- Exponential backoff for transient errors
- Circuit breaker pattern
- Idempotent PaymentIntent creation
"""
import asyncio
import time
from enum import Enum
from typing import Any, Dict, Optional

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from campaign_payments.config import Settings, get_settings
from campaign_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class StripeError(Exception):
    """Base exception for Stripe-related errors."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize Stripe error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Original Stripe exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return self.error_type != StripeErrorType.PERMANENT


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, StripeError) and error.retryable


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold. Only transient failures count;
    a declined card says nothing about Stripe's health.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    async def call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """
        Run a blocking Stripe call in a worker thread, guarded by the breaker.

        Raises:
            StripeError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise StripeError(
                    "Circuit breaker is open",
                    StripeErrorType.TRANSIENT,
                )

        try:
            result = await asyncio.to_thread(func, *args, **kwargs)
        except (stripe.CardError, stripe.InvalidRequestError):
            self.on_success()
            raise
        except Exception:
            self.on_failure()
            raise

        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


class StripeClient:
    """
    Wrapper for Stripe API with production-grade error handling.

    Features:
    - Automatic retry with exponential backoff (transient errors only)
    - Circuit breaker pattern
    - Idempotent payment creation
    - Error classification
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Initialize Stripe client."""
        settings = settings or get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings
        self.circuit_breaker = CircuitBreaker()

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        """
        Classify Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            StripeErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _handle_stripe_error(self, error: stripe.StripeError) -> StripeError:
        """
        Classify a Stripe error and wrap it.

        Args:
            error: Stripe error

        Returns:
            StripeError: Classified error, ready to raise
        """
        error_type = self._classify_error(error)
        metrics.record_stripe_api_error(error_type.value)

        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )

        return StripeError(
            message=getattr(error, "user_message", None) or str(error),
            error_type=error_type,
            original_error=error,
        )

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=16),
        reraise=True,
    )
    async def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        description: Optional[str] = None,
        receipt_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a Stripe PaymentIntent with idempotency.

        Args:
            amount_cents: Amount in minor units
            currency: Currency code (e.g., 'USD'); lowercased for Stripe
            idempotency_key: Idempotency key for preventing duplicates
            description: Optional description
            receipt_email: Optional receipt recipient
            metadata: Optional metadata

        Returns:
            stripe.PaymentIntent: Created payment intent

        Raises:
            StripeError: If payment creation fails
        """
        logger.info(
            "creating_payment_intent",
            amount_cents=amount_cents,
            currency=currency,
            idempotency_key=idempotency_key,
        )

        def _create() -> stripe.PaymentIntent:
            kwargs: Dict[str, Any] = {
                "amount": amount_cents,
                "currency": currency.lower(),
                "idempotency_key": idempotency_key,
                "metadata": metadata or {},
                "automatic_payment_methods": {"enabled": True},
            }
            if description:
                kwargs["description"] = description
            if receipt_email:
                kwargs["receipt_email"] = receipt_email
            return stripe.PaymentIntent.create(**kwargs)

        started = time.perf_counter()
        try:
            payment_intent = await self.circuit_breaker.call(_create)
        except stripe.StripeError as e:
            metrics.record_stripe_api_call(
                "create_intent", "error", time.perf_counter() - started
            )
            raise self._handle_stripe_error(e) from e

        metrics.record_stripe_api_call(
            "create_intent", "success", time.perf_counter() - started
        )
        logger.info(
            "payment_intent_created",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )

        return payment_intent
