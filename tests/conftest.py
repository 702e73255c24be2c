from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from collateral_domain.models import Collateral, Encumbrance
from collateral_engine.config import Settings
from collateral_engine.runtime import build_engine
from collateral_engine.stores import (InMemoryCollateralStore,
                                      InMemoryEncumbranceStore)
from common import audit as audit_module
from common import secrets as secrets_module
from integrations.valuation.mock import MockTitleRegistry, MockValuationProvider


def pytest_configure(config):
    """If pytest-socket is installed, disable sockets and allow localhost if supported."""
    try:
        import pytest_socket

        pytest_socket.disable_socket()
        if hasattr(pytest_socket, "allow_hosts"):
            pytest_socket.allow_hosts("127.0.0.1", "localhost")
    except ImportError:
        pass


@pytest.fixture
def anyio_backend():
    return "asyncio"


# ---------------------------------------------------------------------------
# Default auth token for API tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _secrets() -> None:
    """Provide default secrets for tests via the secrets manager."""

    secrets_module.secrets.set_override(
        {"API_TOKENS": {"tester": "testtoken"}, "JWT_SECRET": "testsecret"}
    )
    yield
    secrets_module.secrets.set_override({})


# ---------------------------------------------------------------------------
# Isolated audit journal per test
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def audit_engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    audit_module.reset_engine(engine)
    yield engine
    audit_module.reset_engine(None)


# ---------------------------------------------------------------------------
# Engine wired to in-memory stores and mock providers
# ---------------------------------------------------------------------------


@pytest.fixture
def valuation_provider() -> MockValuationProvider:
    return MockValuationProvider()


@pytest.fixture
def title_registry() -> MockTitleRegistry:
    return MockTitleRegistry()


@pytest.fixture
def engine(valuation_provider, title_registry):
    return build_engine(
        Settings(store_timeout_sec=2.0, auto_valuation_timeout_sec=2.0),
        collateral_store=InMemoryCollateralStore(),
        encumbrance_store=InMemoryEncumbranceStore(),
        valuation=valuation_provider,
        title_registry=title_registry,
    )


@pytest.fixture
def ledger(engine):
    return engine.ledger


@pytest.fixture
def service(engine):
    return engine.service


@pytest.fixture
def make_collateral(service):
    async def _make(market_value="20000", **fields):
        fields.setdefault("customer_id", "CUST-1")
        fields.setdefault("account_id", "ACC-1")
        return await service.create(Collateral(market_value=Decimal(market_value), **fields))

    return _make


@pytest.fixture
def make_encumbrance(ledger):
    async def _make(collateral_id, amount, **fields):
        return await ledger.create(
            Encumbrance(collateral_id=collateral_id, amount=Decimal(amount), **fields)
        )

    return _make
