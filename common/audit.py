"""Audit journal for collateral and encumbrance lifecycle events.

Rows are immutable and written through a dedicated engine so audit writes
never share a transaction with the stores. The engine is created lazily from
``COLLATERAL_AUDIT_DB_URL`` (in-memory SQLite when unset).
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .datetime import utcnow

__all__ = [
    "AuditJournal",
    "get_engine",
    "log_event",
    "recent_events",
    "reset_engine",
]

_LOG = logging.getLogger(__name__)

_engine: Engine | None = None
_engine_lock = threading.Lock()


class AuditJournal(SQLModel, table=True):
    """Immutable audit row."""

    __tablename__ = "collateral_audit_journal"
    __table_args__ = {"extend_existing": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    ts: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime, nullable=False, index=True)
    )
    service: str = Field(sa_column=Column(String, nullable=False, index=True))
    actor: Optional[str] = None
    # e.g. "ENCUMBRANCE_RELEASED", "COLLATERAL_VALUE_UPDATED"
    action: str = Field(sa_column=Column(String, nullable=False))
    entity_id: Optional[str] = Field(default=None, index=True)
    details: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False, default={})
    )


def _build_engine(url: str) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


def get_engine() -> Engine:
    """Return the shared audit engine, creating tables on first use."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                url = os.getenv("COLLATERAL_AUDIT_DB_URL", "sqlite://")
                engine = _build_engine(url)
                SQLModel.metadata.create_all(engine, tables=[AuditJournal.__table__])
                _engine = engine
    return _engine


def reset_engine(engine: Engine | None = None) -> None:
    """Swap the audit engine (tests point it at an isolated database)."""
    global _engine
    with _engine_lock:
        _engine = engine
        if engine is not None:
            SQLModel.metadata.create_all(engine, tables=[AuditJournal.__table__])


def log_event(
    *,
    service: str,
    action: str,
    actor: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Insert a new audit record and commit immediately.

    The business operation has already completed when this runs, so a failed
    audit write is logged rather than raised back to the caller.
    """
    entry = AuditJournal(
        service=service,
        action=action,
        actor=actor,
        entity_id=entity_id,
        # Decimal / datetime values are stored as strings
        details=json.loads(json.dumps(details or {}, default=str)),
    )
    try:
        with Session(get_engine()) as audit_sess:
            audit_sess.add(entry)
            audit_sess.commit()
    except SQLAlchemyError:
        _LOG.exception("audit write failed: action=%s entity=%s", action, entity_id)


def recent_events(entity_id: str | None = None, limit: int = 50) -> List[AuditJournal]:
    stmt = select(AuditJournal).order_by(AuditJournal.id.desc()).limit(limit)
    if entity_id is not None:
        stmt = stmt.where(AuditJournal.entity_id == entity_id)
    with Session(get_engine()) as s:
        return list(s.exec(stmt).all())
