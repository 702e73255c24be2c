# collateral_observability/metrics.py
"""
Prometheus metrics for the collateral engine and API.

This module does NOT start a standalone HTTP server. The FastAPI app exposes
metrics by mounting the ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())
"""

from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram

# ----------------------------
# Registration helper (avoid duplicate collectors on re-import)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Ledger / reconciliation
# ----------------------------

encumbrance_transitions_total = get_metric(
    Counter,
    "encumbrance_transitions_total",
    "Encumbrance lifecycle operations by action and outcome",
    ["action", "outcome"],
)

collateral_reconciliations_total = get_metric(
    Counter,
    "collateral_reconciliations_total",
    "Collateral value reconciliations by outcome",
    ["outcome"],
)

collateral_reconcile_latency_seconds = get_metric(
    Histogram,
    "collateral_reconcile_latency_seconds",
    "Latency of a single collateral reconciliation (read + write) in seconds",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

# Over-encumbrance is clamped, not rejected; this counter is the audit signal.
collateral_over_encumbered_total = get_metric(
    Counter,
    "collateral_over_encumbered_total",
    "Reconciliations where encumbered value exceeded market value",
)

collateral_rollbacks_total = get_metric(
    Counter,
    "collateral_rollbacks_total",
    "Ledger mutations rolled back after a failed or cancelled reconciliation",
    ["action"],
)

encumbrance_expired_total = get_metric(
    Counter,
    "encumbrance_expired_total",
    "Encumbrances moved to EXPIRED by the expiry sweep",
)

expiry_sweep_failures_total = get_metric(
    Counter,
    "expiry_sweep_failures_total",
    "Collaterals whose expiry sweep group failed to reconcile",
)

# ----------------------------
# Valuation
# ----------------------------

auto_loan_ltv_decisions_total = get_metric(
    Counter,
    "auto_loan_ltv_decisions_total",
    "Auto-loan LTV calculations by risk tier and approval",
    ["risk_tier", "approved"],
)

auto_loan_ltv_ratio = get_metric(
    Gauge,
    "auto_loan_ltv_ratio",
    "Most recent auto-loan LTV ratio per collateral",
    ["collateral_id"],
)

valuation_fallback_total = get_metric(
    Counter,
    "valuation_fallback_total",
    "Valuation lookups that fell back to an estimate or an UNAVAILABLE marker",
    ["operation"],
)
