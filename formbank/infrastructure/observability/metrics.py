"""Prometheus metrics for transfers, loans, checks and compensation health"""

from prometheus_client import Counter, Histogram

# Wallet rail metrics
transfer_counter = Counter(
    "formbank_transfer_total",
    "Digipog transfers attempted on the wallet rail",
    ["outcome"],  # success | declined | locked | timeout
)

transfer_latency_histogram = Histogram(
    "transfer_latency_seconds",
    "Wallet rail transfer response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Credit metrics
loans_issued_counter = Counter(
    "formbank_loans_issued_total",
    "Loans successfully issued",
)

repayment_counter = Counter(
    "formbank_repayments_total",
    "Repayments applied to loans",
    ["paid_off"],  # true | false
)

limit_increase_counter = Counter(
    "formbank_credit_limit_increases_total",
    "Credit limit increments granted by repayment history",
)

# Check metrics
checks_written_counter = Counter(
    "formbank_checks_written_total",
    "Checks written",
    ["mode", "status"],  # blank | targeted ; uncashed | completed | failed
)

check_redemption_counter = Counter(
    "formbank_check_redemptions_total",
    "Blank check redemption attempts that won the claim",
    ["outcome"],  # completed | failed
)

claim_conflict_counter = Counter(
    "formbank_claim_conflicts_total",
    "Redemption attempts rejected because the check was already claimed",
)

# Consistency metrics
compensation_counter = Counter(
    "formbank_compensations_total",
    "Local compensations after a failed workflow step",
    ["outcome"],  # applied | failed
)

reconciliation_counter = Counter(
    "formbank_reconciliation_required_total",
    "Events that left local and external state possibly diverged",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_transfer(outcome: str, duration_seconds: float) -> None:
    transfer_counter.labels(outcome=outcome).inc()
    transfer_latency_histogram.observe(duration_seconds)


def record_repayment(paid_off: bool, increments: int) -> None:
    """Record repayment outcome and any limit increments it earned"""
    repayment_counter.labels(paid_off="true" if paid_off else "false").inc()
    if increments > 0:
        limit_increase_counter.inc(increments)
