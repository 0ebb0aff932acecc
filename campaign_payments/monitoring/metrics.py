"""
Prometheus metrics for campaign processing.

Tracks:
- Campaign creations and status transitions by kind
- Item outcomes and amounts
- Gateway call duration and Stripe API errors
- Progress tracker write conflicts
- Reaper scan results
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Campaign metrics
campaigns_created_total = Counter(
    "campaigns_created_total",
    "Total number of campaigns created",
    ["kind"],
)

campaign_status_transitions_total = Counter(
    "campaign_status_transitions_total",
    "Total campaign status transitions",
    ["kind", "status"],
)

campaign_processing_duration_seconds = Histogram(
    "campaign_processing_duration_seconds",
    "Duration of one processing pass over a campaign",
    ["kind"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Item metrics
campaign_items_processed_total = Counter(
    "campaign_items_processed_total",
    "Total line items attempted",
    ["kind", "outcome"],  # succeeded, failed
)

campaign_item_amount_minor = Histogram(
    "campaign_item_amount_minor",
    "Line item amounts in minor units",
    buckets=(50, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

gateway_attempt_duration_seconds = Histogram(
    "gateway_attempt_duration_seconds",
    "Gateway payment attempt duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Stripe API metrics
stripe_api_requests_total = Counter(
    "stripe_api_requests_total",
    "Total Stripe API requests",
    ["operation", "status"],
)

stripe_api_errors_total = Counter(
    "stripe_api_errors_total",
    "Total Stripe API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

stripe_api_duration_seconds = Histogram(
    "stripe_api_duration_seconds",
    "Stripe API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

stripe_circuit_breaker_state = Gauge(
    "stripe_circuit_breaker_state",
    "Stripe circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Progress tracker metrics
tracker_write_conflicts_total = Counter(
    "tracker_write_conflicts_total",
    "Total optimistic concurrency conflicts on campaign writes",
)

tracker_writes_exhausted_total = Counter(
    "tracker_writes_exhausted_total",
    "Campaign writes abandoned after exhausting retries",
)

# Reaper metrics
reaper_scan_results_total = Counter(
    "reaper_scan_results_total",
    "Campaigns handled by reaper scans",
    ["scan", "result"],
)

reaper_last_run_timestamp = Gauge(
    "reaper_last_run_timestamp",
    "Timestamp of last reaper run",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_campaign_created(kind: str) -> None:
        """Record a campaign creation."""
        campaigns_created_total.labels(kind=kind).inc()

    @staticmethod
    def record_status_transition(kind: str, status: str) -> None:
        """Record a campaign entering a status."""
        campaign_status_transitions_total.labels(kind=kind, status=status).inc()

    @staticmethod
    def record_processing_duration(kind: str, duration_seconds: float) -> None:
        """Record one processing pass."""
        campaign_processing_duration_seconds.labels(kind=kind).observe(duration_seconds)

    @staticmethod
    def record_item_outcome(kind: str, outcome: str, amount: int) -> None:
        """Record an item outcome."""
        campaign_items_processed_total.labels(kind=kind, outcome=outcome).inc()
        campaign_item_amount_minor.observe(amount)

    @staticmethod
    def record_gateway_duration(duration_seconds: float) -> None:
        """Record gateway attempt duration."""
        gateway_attempt_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_stripe_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Stripe API call."""
        stripe_api_requests_total.labels(operation=operation, status=status).inc()
        stripe_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_stripe_api_error(error_type: str) -> None:
        """Record Stripe API error."""
        stripe_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        stripe_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_tracker_conflict() -> None:
        """Record a rejected campaign write."""
        tracker_write_conflicts_total.inc()

    @staticmethod
    def record_tracker_exhausted() -> None:
        """Record a campaign write that gave up."""
        tracker_writes_exhausted_total.inc()

    @staticmethod
    def record_reaper_scan(scan: str, result: str, count: int = 1) -> None:
        """Record reaper scan results."""
        if count > 0:
            reaper_scan_results_total.labels(scan=scan, result=result).inc(count)

    @staticmethod
    def mark_reaper_run() -> None:
        """Stamp the last reaper run."""
        reaper_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
