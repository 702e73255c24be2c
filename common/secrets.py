"""Credentials for the collateral API and its valuation providers.

Secrets live in a JSON file (``SECRETS_PATH``) shaped like::

    {
      "API_TOKENS": {"risk-desk": "<static bearer token>"},
      "JWT_SECRET": "<HS256 key>",
      "AUTO_VALUATION_API_TOKEN": "...",
      "TITLE_REGISTRY_API_TOKEN": "..."
    }

Provider tokens may also come from environment variables of the same name;
the file wins when both are set.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = ["SecretsManager", "secrets", "api_tokens", "jwt_secret", "provider_token"]


class SecretsManager:
    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(
            path or os.getenv("SECRETS_PATH", "/var/run/secrets/collateral.json")
        )
        self._cache: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._cache is None:
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    self._cache = json.load(fh)
            except FileNotFoundError:
                self._cache = {}
        return self._cache

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._load().get(key, default)

    def api_tokens(self) -> Dict[str, str]:
        """Static bearer tokens keyed by principal name."""
        tokens = self.get("API_TOKENS") or {}
        if not isinstance(tokens, dict):
            raise ValueError("API_TOKENS must map principal names to tokens")
        return {str(user): str(token) for user, token in tokens.items()}

    def jwt_secret(self) -> Optional[str]:
        secret = self.get("JWT_SECRET")
        return str(secret) if secret else None

    def provider_token(self, provider: str) -> Optional[str]:
        """Bearer token for a provider such as ``auto-valuation``."""
        key = f"{provider.upper().replace('-', '_')}_API_TOKEN"
        return self.get(key) or os.getenv(key) or None

    def set_override(self, data: dict[str, Any]) -> None:
        """Replace the entire secret cache (test helper)."""

        self._cache = dict(data)


secrets = SecretsManager()


def api_tokens() -> Dict[str, str]:
    return secrets.api_tokens()


def jwt_secret() -> Optional[str]:
    return secrets.jwt_secret()


def provider_token(provider: str) -> Optional[str]:
    return secrets.provider_token(provider)
