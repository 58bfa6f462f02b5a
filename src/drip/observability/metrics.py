"""Prometheus metrics for drip.

Metrics:
- drip_requests_total: Counter of HTTP faucet requests by endpoint and status
- drip_rate_limited_total: Counter of requests rejected by each limiter family
- drip_pipeline_decisions_total: Counter of eligibility decisions by passed check
- drip_transfers_total: Counter of transfers by asset and outcome
- drip_coupon_reclaims_total: Counter of coupon compensations by outcome
- drip_faucet_balance: Gauge of faucet balances in base units
- drip_transfer_duration_seconds: Histogram of transfer duration
"""

from prometheus_client import Counter, Gauge, Histogram

# Counters
REQUESTS = Counter(
    "drip_requests_total",
    "Total number of faucet requests",
    ["endpoint", "status"],
)

RATE_LIMITED = Counter(
    "drip_rate_limited_total",
    "Requests rejected by rate limiting",
    ["limiter"],
)

PIPELINE_DECISIONS = Counter(
    "drip_pipeline_decisions_total",
    "Eligibility pipeline decisions",
    ["check", "outcome"],
)

TRANSFERS = Counter(
    "drip_transfers_total",
    "Transfers attempted",
    ["asset", "outcome"],
)

COUPON_RECLAIMS = Counter(
    "drip_coupon_reclaims_total",
    "Coupon amounts returned after failed transfers",
    ["outcome"],
)

COUPON_COMMITS = Counter(
    "drip_coupon_commits_total",
    "Coupon reservations settled after sent transfers",
    ["outcome"],
)

# Gauges
FAUCET_BALANCE = Gauge(
    "drip_faucet_balance",
    "Faucet balance in base units",
    ["chain", "asset"],
)

# Histograms
TRANSFER_DURATION = Histogram(
    "drip_transfer_duration_seconds",
    "Transfer submission duration",
    ["asset"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)
