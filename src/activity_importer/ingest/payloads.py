"""Closed set of activity-creation payloads, one variant per activity family.

Each variant carries exactly the fields its ledger record needs, so commit
code never has to probe drafts for optional attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from typing import Any, Union

from activity_importer.ingest.models import (
    TRADE_TYPES,
    TRANSFER_TYPES,
    ActivityType,
    DraftActivity,
)
from activity_importer.utils.money import ZERO, plain_number

_WIRE_NAMES = {
    "account_id": "accountId",
    "activity_type": "activityType",
    "activity_date": "activityDate",
    "unit_price": "unitPrice",
    "fx_rate": "fxRate",
    "idempotency_key": "idempotencyKey",
}


@dataclass(frozen=True, kw_only=True)
class _Payload:
    account_id: str
    activity_type: ActivityType
    activity_date: date
    currency: str
    idempotency_key: str | None = None
    subtype: str | None = None
    fx_rate: Decimal | None = None
    comment: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if isinstance(value, ActivityType):
                value = value.value
            elif isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = plain_number(value)
            payload[_WIRE_NAMES.get(item.name, item.name)] = value
        return payload

    @property
    def asset_id(self) -> str | None:
        return getattr(self, "symbol", None)

    @property
    def field_values(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(frozen=True, kw_only=True)
class TradePayload(_Payload):
    symbol: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    fee: Decimal = ZERO


@dataclass(frozen=True, kw_only=True)
class CashPayload(_Payload):
    symbol: str
    amount: Decimal
    fee: Decimal = ZERO


@dataclass(frozen=True, kw_only=True)
class IncomePayload(_Payload):
    symbol: str
    amount: Decimal
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO
    fee: Decimal = ZERO


@dataclass(frozen=True, kw_only=True)
class FeePayload(_Payload):
    symbol: str
    fee: Decimal
    amount: Decimal = ZERO


@dataclass(frozen=True, kw_only=True)
class TransferPayload(_Payload):
    symbol: str
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO
    amount: Decimal = ZERO
    fee: Decimal = ZERO


@dataclass(frozen=True, kw_only=True)
class SplitPayload(_Payload):
    symbol: str
    quantity: Decimal


@dataclass(frozen=True, kw_only=True)
class OtherPayload(_Payload):
    symbol: str | None = None
    quantity: Decimal = ZERO
    unit_price: Decimal = ZERO
    amount: Decimal = ZERO
    fee: Decimal = ZERO


ActivityPayload = Union[
    TradePayload,
    CashPayload,
    IncomePayload,
    FeePayload,
    TransferPayload,
    SplitPayload,
    OtherPayload,
]


def _num(value: Decimal | None) -> Decimal:
    return value if value is not None else ZERO


def payload_from_draft(draft: DraftActivity, idempotency_key: str | None = None) -> ActivityPayload:
    if draft.activity_type is None or draft.activity_date is None:
        raise ValueError(f"Line {draft.line_number} has no activity type or date.")

    common = {
        "account_id": draft.account_id,
        "activity_type": draft.activity_type,
        "activity_date": draft.activity_date,
        "currency": draft.currency,
        "idempotency_key": idempotency_key or draft.idempotency_key,
        "subtype": draft.subtype,
        "fx_rate": draft.fx_rate,
        "comment": draft.comment,
    }
    activity_type = draft.activity_type
    symbol = draft.symbol or ""

    if activity_type in TRADE_TYPES:
        return TradePayload(
            **common,
            symbol=symbol,
            quantity=_num(draft.quantity),
            unit_price=_num(draft.unit_price),
            amount=_num(draft.amount),
            fee=_num(draft.fee),
        )
    if activity_type == ActivityType.SPLIT:
        return SplitPayload(**common, symbol=symbol, quantity=_num(draft.quantity))
    if activity_type == ActivityType.FEE:
        return FeePayload(**common, symbol=symbol, fee=_num(draft.fee), amount=_num(draft.amount))
    if activity_type in {ActivityType.DIVIDEND, ActivityType.INTEREST}:
        return IncomePayload(
            **common,
            symbol=symbol,
            amount=_num(draft.amount),
            quantity=_num(draft.quantity),
            unit_price=_num(draft.unit_price),
            fee=_num(draft.fee),
        )
    if activity_type in {
        ActivityType.DEPOSIT,
        ActivityType.WITHDRAWAL,
        ActivityType.TAX,
        ActivityType.CREDIT,
    }:
        return CashPayload(**common, symbol=symbol, amount=_num(draft.amount), fee=_num(draft.fee))
    if activity_type in TRANSFER_TYPES:
        return TransferPayload(
            **common,
            symbol=symbol,
            quantity=_num(draft.quantity),
            unit_price=_num(draft.unit_price),
            amount=_num(draft.amount),
            fee=_num(draft.fee),
        )
    return OtherPayload(
        **common,
        symbol=draft.symbol,
        quantity=_num(draft.quantity),
        unit_price=_num(draft.unit_price),
        amount=_num(draft.amount),
        fee=_num(draft.fee),
    )


def draft_check_row(draft: DraftActivity) -> dict[str, Any]:
    """Loose wire form of a draft for dry-run validation, keyed by line number."""
    row: dict[str, Any] = {
        "lineNumber": draft.line_number,
        "accountId": draft.account_id,
        "activityType": draft.activity_type.value if draft.activity_type else None,
        "activityDate": draft.activity_date.isoformat() if draft.activity_date else None,
        "symbol": draft.symbol,
        "subtype": draft.subtype,
        "currency": draft.currency,
        "comment": draft.comment,
    }
    for name in ("quantity", "unit_price", "amount", "fee", "fx_rate"):
        value = getattr(draft, name)
        row[_WIRE_NAMES.get(name, name)] = plain_number(value) if value is not None else None
    return row
