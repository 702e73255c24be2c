from datetime import datetime, timedelta
from decimal import Decimal

from common import audit
from common.datetime import utcnow


def test_log_event_persists_row():
    before = utcnow()
    audit.log_event(
        service="collateral-api",
        action="ENCUMBRANCE_RELEASED",
        actor="tester",
        entity_id="ENC-0001",
        details={"amount": Decimal("2500.00"), "as_of": datetime(2024, 6, 1)},
    )

    (row,) = audit.recent_events("ENC-0001")
    assert row.action == "ENCUMBRANCE_RELEASED"
    assert row.actor == "tester"
    assert row.details == {"amount": "2500.00", "as_of": "2024-06-01 00:00:00"}
    assert isinstance(row.ts, datetime)
    assert row.ts.tzinfo is None
    assert before - timedelta(seconds=1) <= row.ts <= utcnow()


def test_recent_events_newest_first():
    for action in ("COLLATERAL_CREATED", "COLLATERAL_VALUE_UPDATED"):
        audit.log_event(service="collateral-api", action=action, entity_id="COL-0001")

    assert [e.action for e in audit.recent_events("COL-0001")] == [
        "COLLATERAL_VALUE_UPDATED",
        "COLLATERAL_CREATED",
    ]
    assert audit.recent_events("COL-MISSING") == []
