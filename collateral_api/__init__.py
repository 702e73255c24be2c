"""HTTP surface for the collateral engine."""
