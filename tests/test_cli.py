import asyncio
import json
import logging
from datetime import datetime
from decimal import Decimal

import pytest

from collateral_domain.models import Collateral, Encumbrance
from collateral_engine import cli
from collateral_engine.config import load_settings
from collateral_engine.runtime import build_engine


@pytest.fixture
def sqlite_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'collateral.db'}"
    monkeypatch.setenv("COLLATERAL_DB_URL", url)
    monkeypatch.setenv("VALUATION_PROVIDER", "none")
    monkeypatch.setenv("LOG_FORMAT", "json")
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield url
    root.handlers[:] = handlers
    root.setLevel(level)


async def _seed() -> str:
    engine = build_engine(load_settings())
    col = await engine.service.create(
        Collateral(customer_id="CUST-1", account_id="ACC-1", market_value=Decimal("20000"))
    )
    enc = await engine.ledger.create(
        Encumbrance(
            collateral_id=col.collateral_id,
            amount=Decimal("5000"),
            expiry_date=datetime(2024, 1, 1),
        )
    )
    return enc.encumbrance_id


def test_expire_command_sweeps_database(sqlite_url, capsys):
    encumbrance_id = asyncio.run(_seed())

    code = cli.main(["expire", "--as-of", "2024-06-01T00:00:00Z"])

    assert code == 0
    captured = capsys.readouterr()
    report = json.loads(captured.out)
    assert "expiry sweep finished" in captured.err
    assert report["expired_ids"] == [encumbrance_id]
    assert report["as_of"] == "2024-06-01T00:00:00"

    assert cli.main(["expire", "--as-of", "2024-06-01T00:00:00Z"]) == 0
    assert json.loads(capsys.readouterr().out)["expired"] == 0


def test_expire_rejects_bad_timestamp(sqlite_url):
    with pytest.raises(SystemExit):
        cli.main(["expire", "--as-of", "not-a-date"])
