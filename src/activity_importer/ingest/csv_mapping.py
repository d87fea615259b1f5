from __future__ import annotations

import re
from dataclasses import replace
from typing import Any

import pandas as pd

from activity_importer.ingest.models import (
    CANONICAL_FIELDS,
    REQUIRED_FIELDS,
    ActivityType,
    ImportMapping,
    ParseConfig,
    RawTable,
)

ACTIVITY_TYPE_PREFIX_LENGTH = 12

TICKER_RE = re.compile(r"^(\$CASH-[A-Z]{3}|[A-Z0-9]{1,10}([.-][A-Z0-9]+){0,2})$")

FIELD_ALIASES: dict[str, list[str]] = {
    "date": ["trade date", "transaction date", "activity date", "settlement date", "date time", "time"],
    "activityType": ["type", "activity", "action", "transaction type", "activity type"],
    "symbol": ["ticker", "security", "instrument", "asset", "symbol code"],
    "quantity": ["qty", "shares", "units", "filled", "quantity filled"],
    "unitPrice": ["price", "unit price", "avg price", "average price", "share price", "fill price"],
    "amount": ["total", "net amount", "value", "total amount", "gross amount", "market value"],
    "currency": ["ccy", "currency code", "trade currency"],
    "fee": ["fees", "commission", "commissions", "charges", "commission/fees"],
    "account": ["account id", "account number", "account name", "portfolio"],
    "comment": ["description", "memo", "notes", "note", "details"],
    "fxRate": ["fx rate", "exchange rate", "fx"],
    "subtype": ["sub type", "activity subtype", "category"],
}

# Order matters: prefix fallback walks this table top to bottom.
ACTIVITY_SMART_DEFAULTS: dict[str, ActivityType] = {
    "BUY": ActivityType.BUY,
    "PURCHASE": ActivityType.BUY,
    "BOUGHT": ActivityType.BUY,
    "SELL": ActivityType.SELL,
    "SOLD": ActivityType.SELL,
    "DIVIDEND": ActivityType.DIVIDEND,
    "DIV": ActivityType.DIVIDEND,
    "DEPOSIT": ActivityType.DEPOSIT,
    "WITHDRAWAL": ActivityType.WITHDRAWAL,
    "WITHDRAW": ActivityType.WITHDRAWAL,
    "FEE": ActivityType.FEE,
    "TAX": ActivityType.TAX,
    "TRANSFER_IN": ActivityType.TRANSFER_IN,
    "TRANSFER": ActivityType.TRANSFER_IN,
    "TRANSFER_OUT": ActivityType.TRANSFER_OUT,
    "INTEREST": ActivityType.INTEREST,
    "INT": ActivityType.INTEREST,
    "SPLIT": ActivityType.SPLIT,
    "CREDIT": ActivityType.CREDIT,
    "ADJUSTMENT": ActivityType.ADJUSTMENT,
}


def _normalize(text: str) -> str:
    return " ".join(re.sub(r"[_.\-]", " ", text.strip().lower()).split())


def _match_key(text: str) -> str:
    return "".join(ch for ch in text.strip().lower() if ch.isalnum())


def _activity_token(text: Any) -> str:
    return str(text or "").strip().upper()


def infer_field_mappings(headers: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Guess canonical field -> header.

    A header whose name equals a field name wins for that field; the alias
    table fills the rest in field order. Each header is claimed once.
    """
    by_key: dict[str, str] = {}
    by_normalized: dict[str, str] = {}
    for header in headers:
        by_key.setdefault(_match_key(header), header)
        by_normalized.setdefault(_normalize(header), header)

    mapping: dict[str, str] = {}
    claimed: set[str] = set()
    for field in CANONICAL_FIELDS:
        header = by_key.get(_match_key(field))
        if header and header not in claimed:
            mapping[field] = header
            claimed.add(header)

    for field in CANONICAL_FIELDS:
        if field in mapping:
            continue
        for alias in FIELD_ALIASES.get(field, []):
            header = by_normalized.get(_normalize(alias)) or by_key.get(_match_key(alias))
            if header and header not in claimed:
                mapping[field] = header
                claimed.add(header)
                break
    return mapping


def resolve_activity_type(
    csv_value: Any, activity_mappings: dict[str, list[str]] | None = None
) -> ActivityType | None:
    """Map a broker activity token to a canonical type.

    Explicit mappings (prefix match) win over an exact smart default, which
    wins over a prefix smart default.
    """
    token = _activity_token(csv_value)
    if not token:
        return None

    for type_name, prefixes in (activity_mappings or {}).items():
        for prefix in prefixes or []:
            prefix_token = _activity_token(prefix)
            if prefix_token and token.startswith(prefix_token):
                try:
                    return ActivityType(type_name)
                except ValueError:
                    continue

    default_key = re.sub(r"[\s\-]+", "_", token)
    if default_key in ACTIVITY_SMART_DEFAULTS:
        return ACTIVITY_SMART_DEFAULTS[default_key]
    for key, activity_type in ACTIVITY_SMART_DEFAULTS.items():
        if default_key.startswith(key):
            return activity_type
    return None


def is_valid_ticker(symbol: str | None) -> bool:
    return bool(symbol) and TICKER_RE.match(symbol) is not None


def cash_symbol(currency: str) -> str:
    return f"$CASH-{currency.strip().upper()}"


def resolve_symbol(
    csv_symbol: Any, symbol_mappings: dict[str, str] | None = None
) -> tuple[str | None, bool]:
    """Return ``(symbol, resolved)`` for a CSV symbol cell."""
    raw = str(csv_symbol or "").strip()
    if not raw:
        return None, False
    mapped = (symbol_mappings or {}).get(raw)
    if mapped:
        return mapped.strip().upper(), True
    symbol = raw.upper()
    return symbol, is_valid_ticker(symbol)


def resolve_account(
    csv_account: Any, account_mappings: dict[str, str] | None, default_account_id: str
) -> str:
    token = str(csv_account or "").strip()
    if token:
        mapped = (account_mappings or {}).get(token)
        if mapped:
            return mapped
    return default_account_id


def set_field_mapping(mapping: ImportMapping, field: str, header: str | None) -> ImportMapping:
    if field not in CANONICAL_FIELDS:
        raise ValueError(f"Unsupported canonical field '{field}'.")
    fields = {key: value for key, value in mapping.field_mappings.items() if key != field}
    if header:
        fields = {key: value for key, value in fields.items() if value != header}
        fields[field] = header
    return replace(mapping, field_mappings=fields)


def set_activity_mapping(
    mapping: ImportMapping, csv_value: str, activity_type: ActivityType | str
) -> ImportMapping:
    activity_type = ActivityType(activity_type)
    prefix = _activity_token(csv_value)[:ACTIVITY_TYPE_PREFIX_LENGTH]
    if not prefix:
        return mapping
    activities: dict[str, list[str]] = {}
    for type_name, prefixes in mapping.activity_mappings.items():
        remaining = [item for item in prefixes if _activity_token(item) != prefix]
        if remaining:
            activities[type_name] = remaining
    activities.setdefault(activity_type.value, []).append(prefix)
    return replace(mapping, activity_mappings=activities)


def set_symbol_mapping(mapping: ImportMapping, csv_symbol: str, symbol: str | None) -> ImportMapping:
    symbols = dict(mapping.symbol_mappings)
    key = csv_symbol.strip()
    if symbol and symbol.strip():
        symbols[key] = symbol.strip().upper()
    else:
        symbols.pop(key, None)
    return replace(mapping, symbol_mappings=symbols)


def set_account_mapping(mapping: ImportMapping, csv_account: str, account_id: str | None) -> ImportMapping:
    accounts = dict(mapping.account_mappings)
    key = csv_account.strip()
    if account_id and account_id.strip():
        accounts[key] = account_id.strip()
    else:
        accounts.pop(key, None)
    return replace(mapping, account_mappings=accounts)


def validate_mapping(
    mapping: dict[str, Any] | None,
    *,
    headers: list[str] | tuple[str, ...] | None = None,
    required_fields: list[str] | None = None,
) -> tuple[dict[str, str], list[str]]:
    errors: list[str] = []
    if mapping is None:
        mapping = {}
    if not isinstance(mapping, dict):
        return {}, ["Mapping must be a dictionary."]

    known_headers = set(headers) if headers is not None else None
    cleaned: dict[str, str] = {}
    for field, source in mapping.items():
        field_text = str(field).strip()
        source_text = str(source or "").strip()
        if field_text not in CANONICAL_FIELDS:
            errors.append(f"Unsupported canonical field '{field_text}'.")
            continue
        if not source_text:
            continue
        if known_headers is not None and source not in known_headers:
            errors.append(f"Column '{source_text}' for field '{field_text}' is not present in the CSV.")
            continue
        cleaned[field_text] = str(source)

    claimed: dict[str, str] = {}
    for field, source in cleaned.items():
        previous = claimed.get(source)
        if previous is not None:
            errors.append(f"Column '{source}' is mapped to both '{previous}' and '{field}'.")
        else:
            claimed[source] = field

    missing = [field for field in (required_fields or []) if field not in cleaned]
    if missing:
        errors.append(f"Missing required column mappings: {', '.join(missing)}.")
    return cleaned, errors


def merge_mappings(inferred: ImportMapping, persisted: ImportMapping | None) -> ImportMapping:
    """Lay a saved profile over freshly inferred values; saved keys win."""
    if persisted is None:
        return inferred
    fields = dict(inferred.field_mappings)
    for field, header in persisted.field_mappings.items():
        fields = {key: value for key, value in fields.items() if value != header}
        fields[field] = header
    return ImportMapping(
        account_id=inferred.account_id,
        field_mappings=fields,
        activity_mappings={
            **inferred.activity_mappings,
            **{key: list(value) for key, value in persisted.activity_mappings.items()},
        },
        symbol_mappings={**inferred.symbol_mappings, **persisted.symbol_mappings},
        account_mappings={**inferred.account_mappings, **persisted.account_mappings},
        parse_config=persisted.parse_config,
    )


def infer_mapping(
    headers: list[str] | tuple[str, ...],
    account_id: str,
    *,
    parse_config: ParseConfig | None = None,
    persisted: ImportMapping | None = None,
) -> ImportMapping:
    inferred = ImportMapping(
        account_id=account_id,
        field_mappings=infer_field_mappings(headers),
        parse_config=parse_config or ParseConfig(),
    )
    merged = merge_mappings(inferred, persisted)
    header_set = set(headers)
    fields = {field: header for field, header in merged.field_mappings.items() if header in header_set}
    if parse_config is not None:
        merged = replace(merged, parse_config=parse_config)
    return replace(merged, field_mappings=fields, account_id=account_id)


def _column_values(table: RawTable, header: str | None) -> pd.Series:
    if not header or header not in table.headers:
        return pd.Series([], dtype=str)
    return table.to_frame()[header].fillna("").astype(str).str.strip()


def unmapped_activity_values(table: RawTable, mapping: ImportMapping) -> list[str]:
    values = _column_values(table, mapping.field_mappings.get("activityType"))
    unmapped: list[str] = []
    for value in values[values != ""].unique():
        if resolve_activity_type(value, mapping.activity_mappings) is None:
            unmapped.append(str(value))
    return unmapped


def mapping_issues(table: RawTable, mapping: ImportMapping) -> list[str]:
    """Structural problems that keep the wizard on the mapping step."""
    _, errors = validate_mapping(
        mapping.field_mappings, headers=table.headers, required_fields=REQUIRED_FIELDS
    )
    issues = list(errors)
    unmapped = unmapped_activity_values(table, mapping)
    if unmapped:
        issues.append(f"Unmapped activity types: {', '.join(unmapped)}.")
    return issues
