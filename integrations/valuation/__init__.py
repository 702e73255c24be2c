"""Auto-valuation and title-registry provider integration."""
import os
from typing import Final

AUTO_VALUATION_BASE_URL: Final[str] = os.getenv("AUTO_VALUATION_BASE_URL", "http://localhost:8082")
TITLE_REGISTRY_BASE_URL: Final[str] = os.getenv("TITLE_REGISTRY_BASE_URL", "http://localhost:8081")

PRODUCT_AUTO_VALUATION: Final[str] = "auto-valuation"
PRODUCT_TITLE_REGISTRY: Final[str] = "title-registry"
