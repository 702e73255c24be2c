"""SQLModel tables backing the SQL stores.

Column names are explicit lowercase so the tables can be inspected with plain
SQL. Enum values are stored as their string names.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

from sqlalchemy import (Boolean, Column, DateTime, Float, Index, Integer,
                        Numeric, String)
from sqlmodel import Field, SQLModel

from .models import AutoValuation, Collateral, Encumbrance, TitleRecord

_E = TypeVar("_E", bound=SQLModel)


def _plain(entity: SQLModel) -> Dict[str, Any]:
    data = entity.model_dump()
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


def _to_entity(row: SQLModel, cls: Type[_E]) -> _E:
    return cls(**{name: getattr(row, name) for name in cls.model_fields})


class CollateralRow(SQLModel, table=True):
    __tablename__ = "collateral"
    __table_args__ = (
        Index("ix_collateral_customer", "customer_id"),
        Index("ix_collateral_account", "account_id"),
        {"extend_existing": True},
    )

    collateral_id: str = Field(sa_column=Column("collateral_id", String, primary_key=True))
    customer_id: str = Field(sa_column=Column("customer_id", String, nullable=False))
    account_id: str = Field(sa_column=Column("account_id", String, nullable=False))
    type: str = Field(sa_column=Column("type", String, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column("description", String))
    estimated_value: Optional[Decimal] = Field(
        default=None, sa_column=Column("estimated_value", Numeric(18, 2))
    )
    market_value: Decimal = Field(sa_column=Column("market_value", Numeric(18, 2), nullable=False))
    encumbered_value: Decimal = Field(
        sa_column=Column("encumbered_value", Numeric(18, 2), nullable=False)
    )
    available_value: Decimal = Field(
        sa_column=Column("available_value", Numeric(18, 2), nullable=False)
    )
    currency: str = Field(sa_column=Column("currency", String(3), nullable=False))
    status: str = Field(sa_column=Column("status", String, nullable=False))
    location: Optional[str] = Field(default=None, sa_column=Column("location", String))
    evaluation_date: Optional[datetime] = Field(
        default=None, sa_column=Column("evaluation_date", DateTime)
    )
    created_at: datetime = Field(sa_column=Column("created_at", DateTime, nullable=False))
    updated_at: datetime = Field(sa_column=Column("updated_at", DateTime, nullable=False))
    created_by: Optional[str] = Field(default=None, sa_column=Column("created_by", String))
    updated_by: Optional[str] = Field(default=None, sa_column=Column("updated_by", String))
    legal_description: Optional[str] = Field(
        default=None, sa_column=Column("legal_description", String)
    )
    ownership_documents: Optional[str] = Field(
        default=None, sa_column=Column("ownership_documents", String)
    )
    last_inspection_date: Optional[datetime] = Field(
        default=None, sa_column=Column("last_inspection_date", DateTime)
    )
    risk_rating: Optional[str] = Field(default=None, sa_column=Column("risk_rating", String))

    @classmethod
    def from_entity(cls, entity: Collateral) -> "CollateralRow":
        return cls(**_plain(entity))

    def to_entity(self) -> Collateral:
        return _to_entity(self, Collateral)


class EncumbranceRow(SQLModel, table=True):
    __tablename__ = "encumbrance"
    __table_args__ = (
        Index("ix_encumbrance_collateral", "collateral_id"),
        Index("ix_encumbrance_status_expiry", "status", "expiry_date"),
        {"extend_existing": True},
    )

    encumbrance_id: str = Field(sa_column=Column("encumbrance_id", String, primary_key=True))
    collateral_id: str = Field(sa_column=Column("collateral_id", String, nullable=False))
    loan_id: Optional[str] = Field(default=None, sa_column=Column("loan_id", String))
    customer_id: Optional[str] = Field(default=None, sa_column=Column("customer_id", String))
    amount: Decimal = Field(sa_column=Column("amount", Numeric(18, 2), nullable=False))
    currency: str = Field(sa_column=Column("currency", String(3), nullable=False))
    type: str = Field(sa_column=Column("type", String, nullable=False))
    status: str = Field(sa_column=Column("status", String, nullable=False))
    priority: int = Field(sa_column=Column("priority", Integer, nullable=False, default=0))
    effective_date: Optional[datetime] = Field(
        default=None, sa_column=Column("effective_date", DateTime)
    )
    expiry_date: Optional[datetime] = Field(default=None, sa_column=Column("expiry_date", DateTime))
    created_at: datetime = Field(sa_column=Column("created_at", DateTime, nullable=False))
    updated_at: datetime = Field(sa_column=Column("updated_at", DateTime, nullable=False))
    released_at: Optional[datetime] = Field(default=None, sa_column=Column("released_at", DateTime))
    created_by: Optional[str] = Field(default=None, sa_column=Column("created_by", String))
    updated_by: Optional[str] = Field(default=None, sa_column=Column("updated_by", String))
    description: Optional[str] = Field(default=None, sa_column=Column("description", String))
    legal_reference: Optional[str] = Field(
        default=None, sa_column=Column("legal_reference", String)
    )
    notes: Optional[str] = Field(default=None, sa_column=Column("notes", String))

    @classmethod
    def from_entity(cls, entity: Encumbrance) -> "EncumbranceRow":
        return cls(**_plain(entity))

    def to_entity(self) -> Encumbrance:
        return _to_entity(self, Encumbrance)


class AutoValuationRow(SQLModel, table=True):
    __tablename__ = "auto_valuation"
    __table_args__ = (
        Index("ix_auto_valuation_collateral_date", "collateral_id", "valuation_date"),
        Index("ix_auto_valuation_type_location", "type", "location"),
        {"extend_existing": True},
    )

    valuation_id: str = Field(sa_column=Column("valuation_id", String, primary_key=True))
    collateral_id: str = Field(sa_column=Column("collateral_id", String, nullable=False))
    type: str = Field(sa_column=Column("type", String, nullable=False))
    location: Optional[str] = Field(default=None, sa_column=Column("location", String))
    description: Optional[str] = Field(default=None, sa_column=Column("description", String))
    status: str = Field(sa_column=Column("status", String, nullable=False))
    estimated_value: Optional[Decimal] = Field(
        default=None, sa_column=Column("estimated_value", Numeric(18, 2))
    )
    low_range: Optional[Decimal] = Field(default=None, sa_column=Column("low_range", Numeric(18, 2)))
    high_range: Optional[Decimal] = Field(
        default=None, sa_column=Column("high_range", Numeric(18, 2))
    )
    currency: str = Field(sa_column=Column("currency", String(3), nullable=False))
    methodology: Optional[str] = Field(default=None, sa_column=Column("methodology", String))
    confidence_score: Optional[float] = Field(
        default=None, sa_column=Column("confidence_score", Float)
    )
    valuation_date: Optional[datetime] = Field(
        default=None, sa_column=Column("valuation_date", DateTime)
    )
    request_date: Optional[datetime] = Field(default=None, sa_column=Column("request_date", DateTime))
    created_at: datetime = Field(sa_column=Column("created_at", DateTime, nullable=False))
    updated_at: datetime = Field(sa_column=Column("updated_at", DateTime, nullable=False))
    created_by: Optional[str] = Field(default=None, sa_column=Column("created_by", String))
    updated_by: Optional[str] = Field(default=None, sa_column=Column("updated_by", String))
    message: Optional[str] = Field(default=None, sa_column=Column("message", String))

    @classmethod
    def from_entity(cls, entity: AutoValuation) -> "AutoValuationRow":
        return cls(**_plain(entity))

    def to_entity(self) -> AutoValuation:
        return _to_entity(self, AutoValuation)


class TitleRecordRow(SQLModel, table=True):
    __tablename__ = "title_registry"
    __table_args__ = (
        Index("ix_title_registry_collateral", "collateral_id"),
        Index("ix_title_registry_owner", "current_owner"),
        Index("ix_title_registry_number", "title_number"),
        {"extend_existing": True},
    )

    title_id: str = Field(sa_column=Column("title_id", String, primary_key=True))
    collateral_id: str = Field(sa_column=Column("collateral_id", String, nullable=False))
    title_number: Optional[str] = Field(default=None, sa_column=Column("title_number", String))
    legal_description: Optional[str] = Field(
        default=None, sa_column=Column("legal_description", String)
    )
    status: str = Field(sa_column=Column("status", String, nullable=False))
    current_owner: Optional[str] = Field(default=None, sa_column=Column("current_owner", String))
    previous_owner: Optional[str] = Field(default=None, sa_column=Column("previous_owner", String))
    registration_date: Optional[datetime] = Field(
        default=None, sa_column=Column("registration_date", DateTime)
    )
    is_valid: bool = Field(sa_column=Column("is_valid", Boolean, nullable=False, default=False))
    verification_date: Optional[datetime] = Field(
        default=None, sa_column=Column("verification_date", DateTime)
    )
    created_at: datetime = Field(sa_column=Column("created_at", DateTime, nullable=False))
    updated_at: datetime = Field(sa_column=Column("updated_at", DateTime, nullable=False))
    created_by: Optional[str] = Field(default=None, sa_column=Column("created_by", String))
    updated_by: Optional[str] = Field(default=None, sa_column=Column("updated_by", String))
    message: Optional[str] = Field(default=None, sa_column=Column("message", String))
    notes: Optional[str] = Field(default=None, sa_column=Column("notes", String))

    @classmethod
    def from_entity(cls, entity: TitleRecord) -> "TitleRecordRow":
        return cls(**_plain(entity))

    def to_entity(self) -> TitleRecord:
        return _to_entity(self, TitleRecord)
