"""SQLAlchemy-backed ledger used for local imports and tests."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activity_importer.db.models import Account, Activity, Asset, ImportMappingRecord, Quote
from activity_importer.ingest.csv_mapping import TICKER_RE
from activity_importer.ingest.errors import LedgerError
from activity_importer.ingest.models import (
    TRADE_TYPES,
    ActivityCheck,
    ActivityType,
    BulkItemResult,
    BulkResult,
    ImportMapping,
)
from activity_importer.ingest.payloads import ActivityPayload
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.utils.logging import get_logger
from activity_importer.utils.money import optional_decimal

logger = get_logger(__name__)

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
LOOKUP_BATCH_SIZE = 500


@contextmanager
def session_scope(engine: Engine):
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _chunked(items: list[Any], batch_size: int) -> Iterable[list[Any]]:
    for start in range(0, len(items), batch_size):
        yield items[start : start + batch_size]


def _add(errors: dict[str, list[str]], field: str, message: str) -> None:
    errors.setdefault(field, []).append(message)


def _parse_wire_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value or "").strip())
    except ValueError:
        return None


class SqlLedger(LedgerBackend):
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # Accounts and assets

    def create_account(self, name: str, currency: str = "USD") -> str:
        with session_scope(self.engine) as session:
            account = Account(name=name.strip(), currency=currency.strip().upper())
            session.add(account)
            session.flush()
            return account.id

    def upsert_asset(
        self, symbol: str, name: str | None = None, exchange_mic: str | None = None
    ) -> None:
        with session_scope(self.engine) as session:
            asset = session.get(Asset, symbol.upper())
            if asset is None:
                session.add(Asset(symbol=symbol.upper(), name=name, exchange_mic=exchange_mic))
            else:
                asset.name = name or asset.name
                asset.exchange_mic = exchange_mic or asset.exchange_mic

    def list_activities(self, account_id: str | None = None) -> list[Activity]:
        with Session(self.engine) as session:
            stmt = select(Activity).order_by(Activity.activity_date, Activity.created_at)
            if account_id:
                stmt = stmt.where(Activity.account_id == account_id)
            return list(session.scalars(stmt).all())

    # Validation

    def _validate_row(
        self,
        session: Session,
        row: Mapping[str, Any],
        account_id: str,
        known_accounts: set[str],
    ) -> ActivityCheck:
        errors: dict[str, list[str]] = {}
        line_number = int(row.get("lineNumber") or 0)

        row_account = str(row.get("accountId") or account_id or "")
        if row_account not in known_accounts:
            _add(errors, "accountId", f"Account '{row_account}' does not exist")

        activity_type: ActivityType | None = None
        try:
            activity_type = ActivityType(str(row.get("activityType") or ""))
        except ValueError:
            _add(errors, "activityType", f"Unknown activity type '{row.get('activityType')}'")

        if _parse_wire_date(row.get("activityDate")) is None:
            _add(errors, "activityDate", "Activity date must be an ISO date")

        currency = str(row.get("currency") or "").upper()
        if not CURRENCY_RE.match(currency):
            _add(errors, "currency", f"Invalid currency code '{row.get('currency') or ''}'")

        symbol_name = exchange_mic = None
        symbol = str(row.get("symbol") or "").strip().upper()
        if symbol and not symbol.startswith("$CASH-"):
            if not TICKER_RE.match(symbol):
                _add(errors, "symbol", f"Unable to resolve symbol '{symbol}'")
            else:
                asset = session.get(Asset, symbol)
                if asset is not None:
                    symbol_name, exchange_mic = asset.name, asset.exchange_mic

        if activity_type in TRADE_TYPES:
            quantity = optional_decimal(row.get("quantity"))
            unit_price = optional_decimal(row.get("unitPrice"))
            if quantity is None or quantity <= 0:
                _add(errors, "quantity", "Quantity must be greater than 0")
            if unit_price is None or unit_price <= 0:
                _add(errors, "unitPrice", "Unit price must be greater than 0")

        return ActivityCheck(
            line_number=line_number,
            is_valid=not errors,
            errors=errors,
            symbol_name=symbol_name,
            exchange_mic=exchange_mic,
        )

    def check_activities_import(
        self, account_id: str, rows: Sequence[Mapping[str, Any]], dry_run: bool = True
    ) -> list[ActivityCheck]:
        try:
            with session_scope(self.engine) as session:
                known_accounts = set(session.scalars(select(Account.id)).all())
                checks = [self._validate_row(session, row, account_id, known_accounts) for row in rows]
                if not dry_run:
                    for row, check in zip(rows, checks):
                        if check.is_valid:
                            session.add(self._activity_from_wire(row, account_id))
        except SQLAlchemyError as exc:
            raise LedgerError(f"Activity validation failed: {exc}") from exc
        return checks

    @staticmethod
    def _activity_from_wire(row: Mapping[str, Any], account_id: str) -> Activity:
        return Activity(
            account_id=str(row.get("accountId") or account_id),
            asset_id=str(row.get("symbol") or "").upper() or None,
            activity_type=ActivityType(str(row.get("activityType"))),
            subtype=row.get("subtype"),
            activity_date=_parse_wire_date(row.get("activityDate")),
            quantity=optional_decimal(row.get("quantity")),
            unit_price=optional_decimal(row.get("unitPrice")),
            amount=optional_decimal(row.get("amount")),
            fee=optional_decimal(row.get("fee")),
            currency=str(row.get("currency") or "").upper(),
            fx_rate=optional_decimal(row.get("fxRate")),
            comment=row.get("comment"),
            idempotency_key=row.get("idempotencyKey"),
        )

    # Duplicates

    def check_existing_duplicates(self, idempotency_keys: set[str]) -> dict[str, str]:
        keys = sorted(key for key in idempotency_keys if key)
        found: dict[str, str] = {}
        try:
            with Session(self.engine) as session:
                for chunk in _chunked(keys, LOOKUP_BATCH_SIZE):
                    rows = session.execute(
                        select(Activity.idempotency_key, Activity.id)
                        .where(Activity.idempotency_key.in_(chunk))
                        .order_by(Activity.created_at)
                    ).all()
                    for key, activity_id in rows:
                        found.setdefault(key, activity_id)
        except SQLAlchemyError as exc:
            raise LedgerError(f"Duplicate lookup failed: {exc}") from exc
        return found

    # Bulk writes

    @staticmethod
    def _payload_columns(payload: ActivityPayload) -> dict[str, Any]:
        values = payload.field_values
        return {
            "account_id": payload.account_id,
            "asset_id": payload.asset_id or None,
            "activity_type": payload.activity_type,
            "subtype": payload.subtype,
            "activity_date": payload.activity_date,
            "quantity": values.get("quantity"),
            "unit_price": values.get("unit_price"),
            "amount": values.get("amount"),
            "fee": values.get("fee"),
            "currency": payload.currency,
            "fx_rate": payload.fx_rate,
            "comment": payload.comment,
            "idempotency_key": payload.idempotency_key,
        }

    def save_activities(
        self,
        creates: Sequence[ActivityPayload] = (),
        updates: Mapping[str, ActivityPayload] | None = None,
        delete_ids: Sequence[str] = (),
    ) -> BulkResult:
        created: list[BulkItemResult] = []
        updated = 0
        deleted = 0
        try:
            with session_scope(self.engine) as session:
                known_accounts = set(session.scalars(select(Account.id)).all())
                pending: list[tuple[int, Activity]] = []
                for position, payload in enumerate(creates):
                    if payload.account_id not in known_accounts:
                        created.append(
                            BulkItemResult(
                                temp_id=str(position),
                                success=False,
                                message=f"Account '{payload.account_id}' does not exist",
                            )
                        )
                        continue
                    activity = Activity(**self._payload_columns(payload))
                    session.add(activity)
                    pending.append((position, activity))

                for activity_id, payload in (updates or {}).items():
                    activity = session.get(Activity, activity_id)
                    if activity is None:
                        continue
                    for column, value in self._payload_columns(payload).items():
                        setattr(activity, column, value)
                    updated += 1

                if delete_ids:
                    result = session.execute(delete(Activity).where(Activity.id.in_(list(delete_ids))))
                    deleted = result.rowcount or 0

                session.flush()
                created.extend(
                    BulkItemResult(temp_id=str(position), success=True, activity_id=activity.id)
                    for position, activity in pending
                )
        except SQLAlchemyError as exc:
            raise LedgerError(f"Bulk save failed: {exc}") from exc

        created.sort(key=lambda item: int(item.temp_id))
        logger.info(
            "Saved activities: %s created, %s rejected, %s updated, %s deleted",
            sum(1 for item in created if item.success),
            sum(1 for item in created if not item.success),
            updated,
            deleted,
        )
        return BulkResult(created=tuple(created), updated=updated, deleted=deleted)

    # Import mapping profiles

    def get_account_import_mapping(self, account_id: str) -> ImportMapping | None:
        with Session(self.engine) as session:
            record = session.get(ImportMappingRecord, account_id)
            if record is None:
                return None
            return ImportMapping.from_dict(record.config)

    def save_account_import_mapping(self, mapping: ImportMapping) -> ImportMapping:
        try:
            with session_scope(self.engine) as session:
                record = session.get(ImportMappingRecord, mapping.account_id)
                if record is None:
                    session.add(
                        ImportMappingRecord(account_id=mapping.account_id, config=mapping.to_dict())
                    )
                else:
                    record.config = mapping.to_dict()
        except SQLAlchemyError as exc:
            raise LedgerError(f"Could not save import mapping: {exc}") from exc
        return mapping

    # Quotes

    def existing_quote_keys(self, keys: set[tuple[str, date]]) -> set[tuple[str, date]]:
        symbols = sorted({symbol for symbol, _ in keys})
        found: set[tuple[str, date]] = set()
        with Session(self.engine) as session:
            for chunk in _chunked(symbols, LOOKUP_BATCH_SIZE):
                rows = session.execute(
                    select(Quote.symbol, Quote.day).where(Quote.symbol.in_(chunk))
                ).all()
                found.update((symbol, day) for symbol, day in rows if (symbol, day) in keys)
        return found

    def save_quotes(self, quotes: Sequence[Mapping[str, Any]]) -> int:
        try:
            with session_scope(self.engine) as session:
                for quote in quotes:
                    session.add(Quote(**dict(quote)))
        except SQLAlchemyError as exc:
            raise LedgerError(f"Could not save quotes: {exc}") from exc
        return len(quotes)

    def latest_quote(self, symbol: str) -> Decimal | None:
        with Session(self.engine) as session:
            return session.scalar(
                select(Quote.close).where(Quote.symbol == symbol.upper()).order_by(Quote.day.desc()).limit(1)
            )
