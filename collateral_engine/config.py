"""Runtime settings read from the environment.

A ``.env.local`` file in the working directory is loaded first (without
overriding variables already set) so local runs do not need exported vars.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

__all__ = ["Settings", "load_settings"]


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    db_url: Optional[str] = None
    store_timeout_sec: float = 5.0
    valuation_provider: str = "mock"
    auto_valuation_base_url: str = "http://localhost:8082"
    auto_valuation_timeout_sec: float = 15.0
    title_registry_base_url: str = "http://localhost:8081"
    title_registry_timeout_sec: float = 10.0
    log_format: str = "json"


def load_settings(env_file: str | Path | None = ".env.local") -> Settings:
    if env_file and Path(env_file).is_file():
        load_dotenv(dotenv_path=env_file, override=False)
    return Settings(
        db_url=os.getenv("COLLATERAL_DB_URL") or None,
        store_timeout_sec=_float("COLLATERAL_STORE_TIMEOUT_SEC", 5.0),
        valuation_provider=os.getenv("VALUATION_PROVIDER", "mock").lower(),
        auto_valuation_base_url=os.getenv("AUTO_VALUATION_BASE_URL", "http://localhost:8082"),
        auto_valuation_timeout_sec=_float("AUTO_VALUATION_TIMEOUT_SEC", 15.0),
        title_registry_base_url=os.getenv("TITLE_REGISTRY_BASE_URL", "http://localhost:8081"),
        title_registry_timeout_sec=_float("TITLE_REGISTRY_TIMEOUT_SEC", 10.0),
        log_format=os.getenv("LOG_FORMAT", "json").lower(),
    )
