from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

import pandas as pd


class ActivityType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    SPLIT = "SPLIT"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    FEE = "FEE"
    TAX = "TAX"
    CREDIT = "CREDIT"
    ADJUSTMENT = "ADJUSTMENT"
    UNKNOWN = "UNKNOWN"


class DraftStatus(str, Enum):
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


class ImportStep(str, Enum):
    UPLOAD = "upload"
    MAPPING = "mapping"
    REVIEW = "review"
    COMMIT = "commit"

    @property
    def position(self) -> int:
        return list(ImportStep).index(self)


TRADE_TYPES = frozenset({ActivityType.BUY, ActivityType.SELL})
CASH_TYPES = frozenset(
    {
        ActivityType.DEPOSIT,
        ActivityType.WITHDRAWAL,
        ActivityType.INTEREST,
        ActivityType.FEE,
        ActivityType.TAX,
        ActivityType.CREDIT,
    }
)
INCOME_TYPES = frozenset({ActivityType.DIVIDEND, ActivityType.INTEREST})
TRANSFER_TYPES = frozenset({ActivityType.TRANSFER_IN, ActivityType.TRANSFER_OUT})
SYMBOL_REQUIRED_TYPES = frozenset(
    {ActivityType.BUY, ActivityType.SELL, ActivityType.SPLIT, ActivityType.DIVIDEND}
)

CANONICAL_FIELDS = [
    "date",
    "activityType",
    "symbol",
    "quantity",
    "unitPrice",
    "amount",
    "currency",
    "fee",
    "account",
    "comment",
    "fxRate",
    "subtype",
]

REQUIRED_FIELDS = ["date", "activityType", "symbol", "quantity", "unitPrice", "amount"]

DELIMITERS = {",", ";", "\t", "auto"}
DECIMAL_SEPARATORS = {".", ",", "auto"}
THOUSANDS_SEPARATORS = {",", ".", " ", "none", "auto"}

# wire name -> attribute name
_PARSE_CONFIG_KEYS = {
    "hasHeaderRow": "has_header_row",
    "headerRowIndex": "header_row_index",
    "delimiter": "delimiter",
    "skipTopRows": "skip_top_rows",
    "skipBottomRows": "skip_bottom_rows",
    "skipEmptyRows": "skip_empty_rows",
    "dateFormat": "date_format",
    "decimalSeparator": "decimal_separator",
    "thousandsSeparator": "thousands_separator",
    "defaultCurrency": "default_currency",
}


@dataclass(frozen=True)
class ParseConfig:
    has_header_row: bool = True
    header_row_index: int = 0
    delimiter: str = "auto"
    skip_top_rows: int = 0
    skip_bottom_rows: int = 0
    skip_empty_rows: bool = True
    date_format: str = "auto"
    decimal_separator: str = "auto"
    thousands_separator: str = "auto"
    default_currency: str = "USD"

    def __post_init__(self) -> None:
        if self.delimiter not in DELIMITERS:
            raise ValueError(f"Unsupported delimiter {self.delimiter!r}.")
        if self.decimal_separator not in DECIMAL_SEPARATORS:
            raise ValueError(f"Unsupported decimal separator {self.decimal_separator!r}.")
        if self.thousands_separator not in THOUSANDS_SEPARATORS:
            raise ValueError(f"Unsupported thousands separator {self.thousands_separator!r}.")
        if self.skip_top_rows < 0 or self.skip_bottom_rows < 0 or self.header_row_index < 0:
            raise ValueError("Row offsets must be zero or positive.")

    def to_dict(self) -> dict[str, Any]:
        return {wire: getattr(self, attr) for wire, attr in _PARSE_CONFIG_KEYS.items()}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> ParseConfig:
        payload = payload or {}
        kwargs = {
            attr: payload[wire]
            for wire, attr in _PARSE_CONFIG_KEYS.items()
            if payload.get(wire) is not None
        }
        return cls(**kwargs)


@dataclass(frozen=True)
class RawTable:
    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self.rows), columns=list(self.headers), dtype=str)


@dataclass(frozen=True)
class ImportMapping:
    account_id: str
    field_mappings: dict[str, str] = field(default_factory=dict)
    activity_mappings: dict[str, list[str]] = field(default_factory=dict)
    symbol_mappings: dict[str, str] = field(default_factory=dict)
    account_mappings: dict[str, str] = field(default_factory=dict)
    parse_config: ParseConfig = field(default_factory=ParseConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "fieldMappings": dict(self.field_mappings),
            "activityMappings": {key: list(value) for key, value in self.activity_mappings.items()},
            "symbolMappings": dict(self.symbol_mappings),
            "accountMappings": dict(self.account_mappings),
            "parseConfig": self.parse_config.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ImportMapping:
        return cls(
            account_id=str(payload.get("accountId") or ""),
            field_mappings={
                str(k): str(v) for k, v in (payload.get("fieldMappings") or {}).items() if v
            },
            activity_mappings={
                str(k): [str(item) for item in (v or [])]
                for k, v in (payload.get("activityMappings") or {}).items()
            },
            symbol_mappings={
                str(k): str(v) for k, v in (payload.get("symbolMappings") or {}).items()
            },
            account_mappings={
                str(k): str(v) for k, v in (payload.get("accountMappings") or {}).items()
            },
            parse_config=ParseConfig.from_dict(payload.get("parseConfig")),
        )


@dataclass(frozen=True)
class DraftActivity:
    row_index: int
    raw_row: tuple[str, ...]
    account_id: str
    currency: str
    activity_date: date | None = None
    activity_type: ActivityType | None = None
    subtype: str | None = None
    symbol: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    amount: Decimal | None = None
    fee: Decimal | None = None
    fx_rate: Decimal | None = None
    comment: str | None = None
    is_edited: bool = False
    status: DraftStatus = DraftStatus.VALID
    errors: dict[str, list[str]] = field(default_factory=dict)
    warnings: dict[str, list[str]] = field(default_factory=dict)
    duplicate_of_id: str | None = None
    duplicate_override: bool = False
    symbol_name: str | None = None
    exchange_mic: str | None = None
    skip_reason: str | None = None
    status_before_skip: DraftStatus | None = None
    idempotency_key: str | None = None

    @property
    def line_number(self) -> int:
        return self.row_index + 1

    @property
    def is_committable(self) -> bool:
        return self.status in {DraftStatus.VALID, DraftStatus.WARNING}


EDITABLE_DRAFT_FIELDS = frozenset(
    {
        "account_id",
        "currency",
        "activity_date",
        "activity_type",
        "subtype",
        "symbol",
        "quantity",
        "unit_price",
        "amount",
        "fee",
        "fx_rate",
        "comment",
    }
)


@dataclass(frozen=True)
class IdempotencyKeyInput:
    account_id: str
    activity_type: str
    activity_date: date
    currency: str
    asset_id: str | None = None
    quantity: Decimal | None = None
    unit_price: Decimal | None = None
    amount: Decimal | None = None
    provider_reference_id: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ImportFailure:
    line_number: int
    message: str


@dataclass(frozen=True)
class ImportResult:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    warnings: int = 0
    errors: int = 0
    removed: int = 0
    failures: tuple[ImportFailure, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["failures"] = [
            {"lineNumber": failure.line_number, "message": failure.message}
            for failure in self.failures
        ]
        return payload


@dataclass(frozen=True)
class BulkItemResult:
    temp_id: str
    success: bool
    activity_id: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class BulkResult:
    created: tuple[BulkItemResult, ...] = ()
    updated: int = 0
    deleted: int = 0

    @property
    def failed(self) -> tuple[BulkItemResult, ...]:
        return tuple(item for item in self.created if not item.success)


@dataclass(frozen=True)
class ActivityCheck:
    """Verdict of the authoritative validation engine for one submitted line."""

    line_number: int
    is_valid: bool
    errors: dict[str, list[str]] = field(default_factory=dict)
    symbol_name: str | None = None
    exchange_mic: str | None = None
