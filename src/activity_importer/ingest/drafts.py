from __future__ import annotations

import re
from dataclasses import replace
from decimal import Decimal

import pandas as pd

from activity_importer.ingest.csv_mapping import (
    cash_symbol,
    is_valid_ticker,
    resolve_account,
    resolve_activity_type,
    resolve_symbol,
    validate_mapping,
)
from activity_importer.ingest.errors import MappingError
from activity_importer.ingest.models import (
    CANONICAL_FIELDS,
    CASH_TYPES,
    INCOME_TYPES,
    SYMBOL_REQUIRED_TYPES,
    TRADE_TYPES,
    TRANSFER_TYPES,
    ActivityType,
    DraftActivity,
    DraftStatus,
    ImportMapping,
    RawTable,
)
from activity_importer.ingest.validators import normalize_currency, parse_date, parse_number
from activity_importer.utils.logging import get_logger
from activity_importer.utils.money import ZERO, is_nonzero, is_positive

logger = get_logger(__name__)

SUBTYPE_DISPLAY_NAMES: dict[str, str] = {
    "DRIP": "Dividend Reinvested",
    "STAKING_REWARD": "Staking Reward",
    "DIVIDEND_IN_KIND": "Dividend (In Kind)",
    "STOCK_DIVIDEND": "Stock Dividend",
    "OPTION_ASSIGNMENT": "Option Assignment",
    "OPTION_EXERCISE": "Option Exercise",
    "QUALIFIED": "Qualified Dividend",
    "ORDINARY": "Ordinary Dividend",
    "RETURN_OF_CAPITAL": "Return of Capital",
    "COUPON": "Bond Coupon",
    "WITHHOLDING": "Withholding Tax",
    "NRA_WITHHOLDING": "NRA Withholding Tax",
    "FEE_REFUND": "Fee Refund",
    "TAX_REFUND": "Tax Refund",
    "BONUS": "Bonus",
    "ADJUSTMENT": "Adjustment",
    "REBATE": "Rebate",
    "REVERSAL": "Reversal",
    "MANAGEMENT_FEE": "Management Fee",
    "ADR_FEE": "ADR Fee",
    "INTEREST_CHARGE": "Interest Charge",
    "LENDING_INTEREST": "Lending Interest",
    "REVERSE_SPLIT": "Reverse Split",
    "OPENING_POSITION": "Opening Position",
}

SUBTYPES_BY_ACTIVITY_TYPE: dict[ActivityType, tuple[str, ...]] = {
    ActivityType.DIVIDEND: ("DRIP", "QUALIFIED", "ORDINARY", "RETURN_OF_CAPITAL", "DIVIDEND_IN_KIND"),
    ActivityType.INTEREST: ("STAKING_REWARD", "LENDING_INTEREST", "COUPON"),
    ActivityType.SPLIT: ("STOCK_DIVIDEND", "REVERSE_SPLIT"),
    ActivityType.BUY: ("OPTION_ASSIGNMENT", "OPTION_EXERCISE"),
    ActivityType.SELL: ("OPTION_ASSIGNMENT", "OPTION_EXERCISE"),
    ActivityType.FEE: ("MANAGEMENT_FEE", "ADR_FEE", "INTEREST_CHARGE"),
    ActivityType.TAX: ("WITHHOLDING", "NRA_WITHHOLDING"),
    ActivityType.CREDIT: ("FEE_REFUND", "TAX_REFUND", "BONUS", "ADJUSTMENT", "REBATE", "REVERSAL"),
    ActivityType.TRANSFER_IN: ("OPENING_POSITION",),
}

_SUBTYPE_KEY_RE = re.compile(r"[^A-Z0-9]+")


def _subtype_key(text: str) -> str:
    return _SUBTYPE_KEY_RE.sub("_", text.strip().upper()).strip("_")


_SUBTYPE_LOOKUP: dict[str, str] = {
    **{_subtype_key(name): code for code, name in SUBTYPE_DISPLAY_NAMES.items()},
    **{code: code for code in SUBTYPE_DISPLAY_NAMES},
}


def normalize_subtype(value: str | None) -> str | None:
    """Canonical subtype code for a code or display name, else the upper-cased token."""
    if value is None:
        return None
    key = _subtype_key(str(value))
    if not key:
        return None
    return _SUBTYPE_LOOKUP.get(key, key)


def cash_amount(
    quantity: Decimal | None, unit_price: Decimal | None, amount: Decimal | None
) -> Decimal | None:
    """Provided amount, else quantity * price, else whichever of the two is set."""
    if is_nonzero(amount):
        return amount
    if is_positive(quantity) and is_positive(unit_price):
        return quantity * unit_price
    if is_positive(unit_price):
        return unit_price
    if is_positive(quantity):
        return quantity
    return amount


def derive_values(
    activity_type: ActivityType | None,
    *,
    symbol: str | None,
    subtype: str | None,
    quantity: Decimal | None,
    unit_price: Decimal | None,
    amount: Decimal | None,
    fee: Decimal | None,
    currency: str,
) -> dict[str, object]:
    """Apply the per-type symbol/amount/fee rules to freshly parsed values."""
    fee_value = fee if fee is not None else ZERO
    amount_value = amount

    if activity_type in TRADE_TYPES:
        if is_positive(quantity) and is_positive(unit_price):
            amount_value = quantity * unit_price
    elif activity_type in {ActivityType.DEPOSIT, ActivityType.WITHDRAWAL, ActivityType.CREDIT}:
        symbol = cash_symbol(currency)
        amount_value = cash_amount(quantity, unit_price, amount)
    elif activity_type == ActivityType.INTEREST:
        if subtype != "STAKING_REWARD" or not symbol:
            symbol = cash_symbol(currency)
        amount_value = cash_amount(quantity, unit_price, amount)
    elif activity_type == ActivityType.DIVIDEND:
        amount_value = cash_amount(quantity, unit_price, amount)
    elif activity_type == ActivityType.FEE:
        symbol = cash_symbol(currency)
        amount_value = amount if amount is not None else ZERO
        if is_positive(fee):
            fee_value = fee
        elif is_positive(amount):
            fee_value = amount
        else:
            fee_value = cash_amount(quantity, unit_price, None) or ZERO
    elif activity_type == ActivityType.TAX:
        symbol = cash_symbol(currency)
        amount_value = amount if amount is not None else ZERO
    elif activity_type in TRANSFER_TYPES:
        symbol = symbol or cash_symbol(currency)
        amount_value = amount if amount is not None else ZERO
    elif activity_type == ActivityType.SPLIT:
        amount_value = ZERO
        fee_value = ZERO

    if amount_value is not None:
        quantity = quantity if quantity is not None else ZERO
        unit_price = unit_price if unit_price is not None else ZERO

    return {
        "symbol": symbol,
        "quantity": quantity,
        "unit_price": unit_price,
        "amount": amount_value,
        "fee": fee_value,
    }


def _is_cash_symbol(symbol: str | None) -> bool:
    return bool(symbol) and symbol.startswith("$CASH-")


def _add(messages: dict[str, list[str]], field: str, message: str) -> None:
    messages.setdefault(field, []).append(message)


def _status_for(errors: dict[str, list[str]], warnings: dict[str, list[str]]) -> DraftStatus:
    if errors:
        return DraftStatus.ERROR
    if warnings:
        return DraftStatus.WARNING
    return DraftStatus.VALID


def _check_type_rules(draft: DraftActivity, subtype: str | None, errors: dict[str, list[str]], warnings: dict[str, list[str]]) -> None:
    activity_type = draft.activity_type
    quantity, unit_price, amount, fee = draft.quantity, draft.unit_price, draft.amount, draft.fee

    if activity_type in SYMBOL_REQUIRED_TYPES and not draft.symbol:
        _add(errors, "symbol", f"Symbol is required for {activity_type.value} activities")

    if activity_type in TRADE_TYPES:
        if not is_positive(quantity):
            _add(errors, "quantity", "Quantity must be greater than 0")
        if not is_positive(unit_price):
            _add(errors, "unitPrice", "Unit price must be greater than 0")
        return

    if activity_type == ActivityType.SPLIT:
        return

    if activity_type == ActivityType.FEE:
        if not is_positive(fee) and not is_positive(amount):
            _add(errors, "fee", "Either fee or amount is required for fee activities")
        return

    if activity_type == ActivityType.DIVIDEND and subtype in {"DRIP", "DIVIDEND_IN_KIND"}:
        label = "DRIP" if subtype == "DRIP" else "dividend in kind"
        if not is_positive(quantity):
            _add(errors, "quantity", f"Quantity is required for {label} (shares received)")
        if not is_positive(unit_price):
            _add(errors, "unitPrice", f"Unit price is required for {label}")
        if subtype == "DIVIDEND_IN_KIND" and not is_nonzero(amount):
            _add(errors, "amount", "Amount is required for dividend in kind (value of shares)")
        return

    if activity_type == ActivityType.INTEREST and subtype == "STAKING_REWARD":
        if not draft.symbol or _is_cash_symbol(draft.symbol):
            _add(errors, "symbol", "Symbol is required for staking rewards")
        if not is_positive(quantity):
            _add(errors, "quantity", "Quantity is required for staking rewards (tokens received)")
        if amount is None and not is_positive(unit_price):
            _add(warnings, "amount", "Either amount or unit price is recommended for staking rewards")
        return

    is_cash_like = (
        activity_type in CASH_TYPES
        or activity_type in INCOME_TYPES
        or (activity_type in TRANSFER_TYPES and _is_cash_symbol(draft.symbol))
    )
    if is_cash_like:
        has_value = any(is_nonzero(value) for value in (amount, quantity, unit_price))
        if activity_type == ActivityType.TAX:
            has_value = has_value or is_positive(fee)
        if not has_value:
            _add(errors, "amount", f"Amount is required for {activity_type.value} activities")
        return

    if not is_positive(quantity):
        _add(errors, "quantity", f"Quantity must be greater than 0 for {activity_type.value} activities")


def validate_draft(draft: DraftActivity) -> DraftActivity:
    """Re-run the business rules and return the draft with fresh status/errors/warnings.

    Non-whitelisted subtypes are dropped and reported as a warning.
    """
    errors: dict[str, list[str]] = {}
    warnings: dict[str, list[str]] = {}

    if draft.activity_date is None:
        _add(errors, "activityDate", "A valid date is required")
    if draft.activity_type is None:
        _add(errors, "activityType", "Activity type is required")
    if not (draft.currency or "").strip():
        _add(errors, "currency", "Currency is required")
    if not (draft.account_id or "").strip():
        _add(errors, "accountId", "Account is required")

    subtype = normalize_subtype(draft.subtype)
    if subtype and draft.activity_type is not None:
        allowed = SUBTYPES_BY_ACTIVITY_TYPE.get(draft.activity_type, ())
        if subtype not in allowed:
            _add(
                warnings,
                "subtype",
                f"'{subtype}' is not a recognized subtype for {draft.activity_type.value}; it was dropped",
            )
            subtype = None

    if draft.activity_type is not None:
        _check_type_rules(draft, subtype, errors, warnings)

    if draft.symbol and not _is_cash_symbol(draft.symbol) and not is_valid_ticker(draft.symbol):
        _add(warnings, "symbol", f"Unresolved symbol '{draft.symbol}'")

    return replace(
        draft,
        subtype=subtype,
        errors=errors,
        warnings=warnings,
        status=_status_for(errors, warnings),
    )


def apply_mapping(frame: pd.DataFrame, field_mappings: dict[str, str]) -> pd.DataFrame:
    cleaned, errors = validate_mapping(field_mappings, headers=[str(c) for c in frame.columns])
    if errors:
        raise MappingError(errors)
    reverse_mapping = {source: target for target, source in cleaned.items()}
    out = frame[list(reverse_mapping)].rename(columns=reverse_mapping)
    for field in CANONICAL_FIELDS:
        if field not in out.columns:
            out[field] = ""
    return out.fillna("")


def _cell(record: dict, field: str) -> str:
    return str(record.get(field) or "").strip()


def build_draft(
    row_index: int,
    raw_row: tuple[str, ...],
    record: dict,
    mapping: ImportMapping,
    default_account_id: str,
) -> DraftActivity:
    config = mapping.parse_config
    separators = {
        "decimal_separator": config.decimal_separator,
        "thousands_separator": config.thousands_separator,
    }
    activity_type = resolve_activity_type(_cell(record, "activityType"), mapping.activity_mappings)
    currency = normalize_currency(_cell(record, "currency"), config.default_currency) or ""
    symbol, _ = resolve_symbol(_cell(record, "symbol"), mapping.symbol_mappings)
    subtype = normalize_subtype(_cell(record, "subtype") or None)

    derived = derive_values(
        activity_type,
        symbol=symbol,
        subtype=subtype,
        quantity=parse_number(_cell(record, "quantity"), **separators),
        unit_price=parse_number(_cell(record, "unitPrice"), **separators),
        amount=parse_number(_cell(record, "amount"), **separators),
        fee=parse_number(_cell(record, "fee"), **separators),
        currency=currency,
    )
    draft = DraftActivity(
        row_index=row_index,
        raw_row=raw_row,
        account_id=resolve_account(_cell(record, "account"), mapping.account_mappings, default_account_id),
        currency=currency,
        activity_date=parse_date(_cell(record, "date"), config.date_format),
        activity_type=activity_type,
        subtype=subtype,
        fx_rate=parse_number(_cell(record, "fxRate"), **separators),
        comment=_cell(record, "comment") or None,
        **derived,
    )
    return validate_draft(draft)


def build_drafts(
    table: RawTable, mapping: ImportMapping, default_account_id: str | None = None
) -> tuple[DraftActivity, ...]:
    """Turn every table row into a validated draft.

    A row that fails unexpectedly becomes an error draft carrying a
    ``general`` message; the remaining rows are unaffected.
    """
    account_id = default_account_id or mapping.account_id
    renamed = apply_mapping(table.to_frame(), mapping.field_mappings)
    drafts: list[DraftActivity] = []
    for row_index, record in enumerate(renamed.to_dict(orient="records")):
        raw_row = table.rows[row_index]
        try:
            drafts.append(build_draft(row_index, raw_row, record, mapping, account_id))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Row %s could not be processed: %s", row_index + 1, exc)
            drafts.append(
                DraftActivity(
                    row_index=row_index,
                    raw_row=raw_row,
                    account_id=account_id,
                    currency=mapping.parse_config.default_currency,
                    status=DraftStatus.ERROR,
                    errors={"general": [f"Failed to process row: {exc}"]},
                )
            )
    counts = pd.Series([draft.status.value for draft in drafts], dtype=str).value_counts().to_dict()
    logger.info("Built %s drafts %s", len(drafts), counts)
    return tuple(drafts)
