from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from activity_importer.ingest.models import ActivityType

AMOUNT = Numeric(28, 10, asdecimal=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class Asset(Base):
    __tablename__ = "assets"

    symbol: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    exchange_mic: Mapped[str | None] = mapped_column(String(16), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_account_date", "account_id", "activity_date"),
        Index("ix_activities_asset_date", "asset_id", "activity_date"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    asset_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    activity_type: Mapped[ActivityType] = mapped_column(
        SqlEnum(ActivityType, native_enum=False), nullable=False, index=True
    )
    subtype: Mapped[str | None] = mapped_column(String(32), nullable=True)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    unit_price: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    fee: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    fx_rate: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Not unique: a user may knowingly record a repeated transaction.
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)


class ImportMappingRecord(Base):
    __tablename__ = "import_mappings"

    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id"), primary_key=True
    )
    config: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class Quote(Base):
    __tablename__ = "quotes"
    __table_args__ = (UniqueConstraint("symbol", "day", name="uq_quotes_symbol_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    open: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    high: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    low: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    close: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    volume: Mapped[Decimal | None] = mapped_column(AMOUNT, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, nullable=False)
