"""Prometheus metrics definitions for s3authgate.

All custom metrics use the ``s3authgate_`` prefix for namespace isolation.
Counters reset to zero on restart; Prometheus handles gaps via ``rate()``.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Verification counter  (labels: outcome)
# ---------------------------------------------------------------------------
verifications_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; collectors are registered in the global
    registry only on the first call. When metrics are disabled in config the
    module-level references stay ``None``.
    """
    global _initialized
    global verifications_total

    if _initialized:
        return

    verifications_total = Counter(
        "s3authgate_verifications_total",
        "Total SigV4 verifications by outcome (accepted or S3 error code)",
        ["outcome"],
    )

    _initialized = True


def record_verification(outcome: str) -> None:
    """Count one verification; a no-op until ``init_metrics()`` has run."""
    if verifications_total is not None:
        verifications_total.labels(outcome=outcome).inc()
