"""
Prometheus metrics for payment system monitoring.

Tracks:
- Payment initiations by method and outcome
- Payment processing duration and amounts
- Status transitions (applied, duplicate, rejected)
- Fraud decisions
- Settlement gateway calls
- Webhook deliveries and signature failures
- Expiry sweeps
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Payment metrics
payment_requests_total = Counter(
    "payment_requests_total",
    "Total number of payment initiations",
    ["method", "status"],
)

payment_processing_duration_seconds = Histogram(
    "payment_processing_duration_seconds",
    "Payment initiation duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 30.0),
)

payment_amount = Histogram(
    "payment_amount",
    "Payment amounts in major currency units",
    ["method"],
    buckets=(500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000, 5000000),
)

# State machine metrics
payment_status_transitions_total = Counter(
    "payment_status_transitions_total",
    "Total effective payment status transitions",
    ["from_status", "to_status"],
)

payment_transition_conflicts_total = Counter(
    "payment_transition_conflicts_total",
    "Total transition requests rejected or collapsed into no-ops",
    ["to_status", "outcome"],  # outcome: invalid, duplicate
)

# Fraud metrics
fraud_decisions_total = Counter(
    "fraud_decisions_total",
    "Total fraud screening decisions",
    ["recommendation"],  # approve, review, block
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total settlement gateway calls",
    ["method", "outcome"],  # outcome: processing, otp_required, failed, timeout, error
)

gateway_duration_seconds = Histogram(
    "gateway_duration_seconds",
    "Settlement gateway call duration in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook notifications received",
    ["provider_status"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook notifications processed",
    ["provider_status", "status"],  # processed, duplicate, ignored
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["provider_status"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Total webhook notifications rejected by signature or replay checks",
    ["reason"],  # missing, mismatch, stale
)

# Expiry metrics
expired_payments_total = Counter(
    "expired_payments_total",
    "Total payments closed by the expiry sweep",
    ["to_status"],
)

expiry_sweep_last_run_timestamp = Gauge(
    "expiry_sweep_last_run_timestamp",
    "Timestamp of last expiry sweep",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_request(method: str, status: str, amount: float) -> None:
        """Record a payment initiation."""
        payment_requests_total.labels(method=method, status=status).inc()
        payment_amount.labels(method=method).observe(amount)

    @staticmethod
    def record_payment_duration(duration_seconds: float) -> None:
        """Record payment processing duration."""
        payment_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        """Record an applied status transition."""
        payment_status_transitions_total.labels(
            from_status=from_status, to_status=to_status
        ).inc()

    @staticmethod
    def record_transition_conflict(to_status: str, outcome: str) -> None:
        """Record a rejected or no-op transition request."""
        payment_transition_conflicts_total.labels(to_status=to_status, outcome=outcome).inc()

    @staticmethod
    def record_fraud_decision(recommendation: str) -> None:
        """Record a fraud screening decision."""
        fraud_decisions_total.labels(recommendation=recommendation).inc()

    @staticmethod
    def record_gateway_call(method: str, outcome: str, duration_seconds: float) -> None:
        """Record a settlement gateway call."""
        gateway_requests_total.labels(method=method, outcome=outcome).inc()
        gateway_duration_seconds.labels(method=method).observe(duration_seconds)

    @staticmethod
    def record_webhook_event(provider_status: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(provider_status=provider_status).inc()
        webhook_events_processed_total.labels(
            provider_status=provider_status, status=status
        ).inc()
        webhook_processing_duration_seconds.labels(provider_status=provider_status).observe(
            duration_seconds
        )

    @staticmethod
    def record_webhook_rejection(reason: str) -> None:
        """Record a webhook rejected before processing."""
        webhook_signature_failures_total.labels(reason=reason).inc()

    @staticmethod
    def record_expiry_sweep(expired: int, reclaimed: int) -> None:
        """Record the outcome of an expiry sweep."""
        if expired:
            expired_payments_total.labels(to_status="expired").inc(expired)
        if reclaimed:
            expired_payments_total.labels(to_status="failed").inc(reclaimed)
        expiry_sweep_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
