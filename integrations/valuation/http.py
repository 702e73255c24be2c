"""Shared HTTP plumbing for the valuation and title-registry providers.

Uses `httpx.AsyncClient` with:
* Base URL and per-request timeout supplied by the caller (see `Settings`)
* Optional bearer token read from the secrets manager (``<PRODUCT>_API_TOKEN``)
* Exponential back-off retry on transport errors and 429 / 5xx (max 3 attempts)
* Prometheus counter + histogram (labels: provider, endpoint, method, status)

Every failure that survives the retries is raised as
`CollaboratorUnavailable`; tests swap the transport for `httpx.MockTransport`.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Optional

import httpx
from prometheus_client import Counter, Histogram

from collateral_engine.errors import CollaboratorUnavailable
from collateral_observability.metrics import get_metric
from common.secrets import provider_token

__all__ = ["ProviderHTTP"]

_LOG = logging.getLogger(__name__)

_REQUESTS_TOTAL = get_metric(
    Counter,
    "valuation_http_requests_total",
    "HTTP requests to valuation / title providers",
    labelnames=["provider", "endpoint", "method", "status"],
)
_LATENCY_SEC = get_metric(
    Histogram,
    "valuation_http_latency_seconds",
    "Latency for valuation / title provider HTTP requests",
    labelnames=["provider", "endpoint"],
)

_RETRY_STATUSES = frozenset({429, 502, 503, 504})
_MAX_ATTEMPTS = 3


class ProviderHTTP:
    def __init__(
        self,
        *,
        provider: str,
        base_url: str,
        timeout: float = 10.0,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff: float = 0.1,
    ):
        self._provider = provider
        if token is None:
            token = provider_token(provider)
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._backoff = backoff
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport, headers=self._headers
        )

    @property
    def provider(self) -> str:
        return self._provider

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        endpoint_label = url.split("?", 1)[0]
        attempt = 0
        while True:
            attempt += 1
            start = time.perf_counter()
            try:
                resp = await self._client.request(method, url, **kwargs)
            except httpx.RequestError as exc:
                if attempt >= _MAX_ATTEMPTS:
                    _REQUESTS_TOTAL.labels(self._provider, endpoint_label, method.lower(), "error").inc()
                    raise CollaboratorUnavailable(self._provider, f"{method} {url}: {exc!r}") from exc
                await asyncio.sleep(2 ** attempt * self._backoff)
                continue
            _LATENCY_SEC.labels(self._provider, endpoint_label).observe(time.perf_counter() - start)
            _REQUESTS_TOTAL.labels(
                self._provider, endpoint_label, method.lower(), resp.status_code
            ).inc()
            if resp.status_code in _RETRY_STATUSES and attempt < _MAX_ATTEMPTS:
                retry_after = resp.headers.get("Retry-After")
                delay = float(retry_after) if retry_after and retry_after.isdigit() else 2 ** attempt * self._backoff
                delay = delay * (1 + random.random() * 0.2)  # jitter up to 20%
                _LOG.debug("retrying %s %s after %s (status %s)", method, url, delay, resp.status_code)
                await asyncio.sleep(delay)
                continue
            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise CollaboratorUnavailable(
                    self._provider, f"{method} {url} returned {resp.status_code}"
                ) from exc
            return resp

    async def get_json(self, url: str, **kw: Any) -> Any:
        return self._decode(await self._request("GET", url, **kw))

    async def post_json(self, url: str, payload: Any, **kw: Any) -> Any:
        return self._decode(await self._request("POST", url, json=payload, **kw))

    def _decode(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise CollaboratorUnavailable(self._provider, "response is not valid JSON") from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    # context-manager sugar
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
