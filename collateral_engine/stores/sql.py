"""SQLModel-backed stores.

Blocking session work runs in a worker thread so the event loop stays free
and store calls can be bounded by ``asyncio.wait_for``. SQLite connections are
not safe for concurrent use, so access is serialized for that dialect only.
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import nullcontext
from enum import Enum
from typing import Any, Callable, Generic, List, Type, TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from collateral_domain.models import (AutoValuation, Collateral, Encumbrance,
                                      TitleRecord)
from collateral_domain.records import (AutoValuationRow, CollateralRow,
                                       EncumbranceRow, TitleRecordRow)

from ..errors import CollaboratorUnavailable, NotFound

__all__ = [
    "SQLAutoValuationStore",
    "SQLCollateralStore",
    "SQLEncumbranceStore",
    "SQLTitleRecordStore",
    "init_db",
]

_E = TypeVar("_E", bound=SQLModel)
_T = TypeVar("_T")


def init_db(engine: Engine) -> None:
    """Create the collateral, encumbrance and history tables (idempotent)."""
    SQLModel.metadata.create_all(
        engine,
        tables=[
            CollateralRow.__table__,
            EncumbranceRow.__table__,
            AutoValuationRow.__table__,
            TitleRecordRow.__table__,
        ],
    )


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class _SQLStore(Generic[_E]):
    kind = "record"
    row: Type[Any]
    key_field = "id"

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._db_lock = threading.Lock() if engine.dialect.name == "sqlite" else None

    async def _run(self, fn: Callable[[Session], _T]) -> _T:
        def _work() -> _T:
            with self._db_lock or nullcontext():
                with Session(self._engine) as session:
                    return fn(session)

        try:
            return await asyncio.to_thread(_work)
        except SQLAlchemyError as exc:
            raise CollaboratorUnavailable(f"{self.kind}-store", str(exc)) from exc

    async def get(self, key: str) -> _E:
        def _get(session: Session):
            row = session.get(self.row, key)
            return None if row is None else row.to_entity()

        entity = await self._run(_get)
        if entity is None:
            raise NotFound(self.kind, key)
        return entity

    async def upsert(self, entity: _E) -> _E:
        fresh = self.row.from_entity(entity)

        def _upsert(session: Session):
            session.merge(fresh)
            session.commit()
            return session.get(self.row, getattr(entity, self.key_field)).to_entity()

        return await self._run(_upsert)

    async def delete(self, key: str) -> None:
        def _delete(session: Session) -> bool:
            row = session.get(self.row, key)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

        if not await self._run(_delete):
            raise NotFound(self.kind, key)

    async def query(self, **fields: Any) -> List[_E]:
        def _query(session: Session):
            stmt = select(self.row).where(
                *(getattr(self.row, k) == _column_value(v) for k, v in fields.items())
            )
            return [row.to_entity() for row in session.exec(stmt).all()]

        return await self._run(_query)


class SQLCollateralStore(_SQLStore[Collateral]):
    kind = "collateral"
    row = CollateralRow
    key_field = "collateral_id"


class SQLEncumbranceStore(_SQLStore[Encumbrance]):
    kind = "encumbrance"
    row = EncumbranceRow
    key_field = "encumbrance_id"

    async def query_by_collateral_id(self, collateral_id: str) -> List[Encumbrance]:
        return await self.query(collateral_id=collateral_id)


class SQLAutoValuationStore(_SQLStore[AutoValuation]):
    kind = "auto-valuation"
    row = AutoValuationRow
    key_field = "valuation_id"


class SQLTitleRecordStore(_SQLStore[TitleRecord]):
    kind = "title-record"
    row = TitleRecordRow
    key_field = "title_id"
