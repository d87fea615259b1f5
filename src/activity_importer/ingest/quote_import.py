from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

from activity_importer.ingest.csv_reader import header_key, normalize_file, read_text
from activity_importer.ingest.errors import MappingError
from activity_importer.ingest.models import ParseConfig, RawTable
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.ingest.validators import normalize_currency, parse_date, parse_number
from activity_importer.utils.logging import get_logger

logger = get_logger(__name__)

QUOTE_REQUIRED_COLUMNS = ["symbol", "date", "close"]
QUOTE_OPTIONAL_COLUMNS = ["open", "high", "low", "volume", "currency"]


class QuoteStatus(str, Enum):
    VALID = "valid"
    ERROR = "error"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class QuoteDraft:
    line_number: int
    symbol: str
    day: date | None
    close: Decimal | None
    currency: str
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    volume: Decimal | None = None
    status: QuoteStatus = QuoteStatus.VALID
    errors: list[str] = field(default_factory=list)

    def to_record(self, source: str) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "day": self.day,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "currency": self.currency,
            "source": source,
        }


@dataclass(frozen=True)
class QuoteImportResult:
    total: int
    imported: int
    duplicates: int
    errors: int
    drafts: tuple[QuoteDraft, ...] = ()


def _validate(draft: QuoteDraft, raw_date: str) -> QuoteDraft:
    errors: list[str] = []
    if not draft.symbol:
        errors.append("Symbol is required")
    if draft.day is None:
        errors.append(f"Invalid date '{raw_date}'" if raw_date else "Date is required")
    if draft.close is None or draft.close <= 0:
        errors.append("Close price must be greater than 0")
    if draft.high is not None and draft.low is not None and draft.high < draft.low:
        errors.append("High price cannot be lower than low price")
    if errors:
        return replace(draft, status=QuoteStatus.ERROR, errors=errors)
    return draft


def build_quote_drafts(table: RawTable, config: ParseConfig | None = None) -> list[QuoteDraft]:
    config = config or ParseConfig()
    columns = {header_key(header): header for header in table.headers}
    missing = [name for name in QUOTE_REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise MappingError([f"Missing required quote columns: {', '.join(missing)}."])

    renamed = (
        table.to_frame()
        .rename(columns={header: key for key, header in columns.items()})
        .fillna("")
    )
    separators = {
        "decimal_separator": config.decimal_separator,
        "thousands_separator": config.thousands_separator,
    }
    drafts: list[QuoteDraft] = []
    for line_number, record in enumerate(renamed.to_dict(orient="records"), start=1):
        raw_date = str(record.get("date") or "").strip()
        draft = QuoteDraft(
            line_number=line_number,
            symbol=str(record.get("symbol") or "").strip().upper(),
            day=parse_date(raw_date, config.date_format),
            close=parse_number(record.get("close"), **separators),
            open=parse_number(record.get("open"), **separators),
            high=parse_number(record.get("high"), **separators),
            low=parse_number(record.get("low"), **separators),
            volume=parse_number(record.get("volume"), **separators),
            currency=normalize_currency(record.get("currency"), config.default_currency) or "",
        )
        drafts.append(_validate(draft, raw_date))
    return drafts


def mark_existing_quotes(drafts: list[QuoteDraft], ledger: LedgerBackend) -> list[QuoteDraft]:
    keys = {(draft.symbol, draft.day) for draft in drafts if draft.status == QuoteStatus.VALID}
    existing = ledger.existing_quote_keys(keys) if keys else set()
    seen: set[tuple[str, date | None]] = set()
    marked: list[QuoteDraft] = []
    for draft in drafts:
        key = (draft.symbol, draft.day)
        if draft.status == QuoteStatus.VALID and (key in existing or key in seen):
            marked.append(
                replace(draft, status=QuoteStatus.DUPLICATE, errors=["Quote already exists"])
            )
            continue
        seen.add(key)
        marked.append(draft)
    return marked


def import_quotes(
    source: str | Path | bytes | BinaryIO,
    ledger: LedgerBackend,
    *,
    config: ParseConfig | None = None,
    source_name: str = "csv",
) -> QuoteImportResult:
    table = normalize_file(read_text(source), config)
    drafts = mark_existing_quotes(build_quote_drafts(table, config), ledger)
    valid = [draft for draft in drafts if draft.status == QuoteStatus.VALID]
    imported = ledger.save_quotes([draft.to_record(source_name) for draft in valid]) if valid else 0
    result = QuoteImportResult(
        total=len(drafts),
        imported=imported,
        duplicates=sum(1 for draft in drafts if draft.status == QuoteStatus.DUPLICATE),
        errors=sum(1 for draft in drafts if draft.status == QuoteStatus.ERROR),
        drafts=tuple(drafts),
    )
    logger.info(
        "Quote import: %s rows, %s imported, %s duplicates, %s errors",
        result.total,
        result.imported,
        result.duplicates,
        result.errors,
    )
    return result
