"""Prometheus metrics for the collateral services."""

from .metrics import (collateral_over_encumbered_total,
                      collateral_reconciliations_total, get_metric)

__all__ = [
    "collateral_over_encumbered_total",
    "collateral_reconciliations_total",
    "get_metric",
]
