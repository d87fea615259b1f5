"""Content-addressed idempotency keys for prospective activities.

The canonical string is::

    accountId|activityType|YYYY-MM-DD|assetId|quantity|unitPrice|amount|currency|providerReferenceId|description

Numbers are rendered without exponent or trailing zeros (``10``, ``10.0``
and ``10.00`` all give ``10``), missing values are empty, and the
description has its whitespace runs collapsed. The field order is a
contract shared with the ledger backend and is pinned by a test vector.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from decimal import Decimal
from enum import Enum
from hashlib import sha256
from typing import Any

from activity_importer.ingest.models import DraftActivity, DraftStatus, IdempotencyKeyInput
from activity_importer.utils.logging import get_logger
from activity_importer.utils.money import optional_decimal, plain_number

logger = get_logger(__name__)


def _normalize_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    return str(value).strip()


def normalize_number(value: Decimal | float | int | str | None) -> str:
    return plain_number(optional_decimal(value))


def normalize_description(value: str | None) -> str:
    if not value:
        return ""
    return " ".join(value.split())


def canonical_key_string(key_input: IdempotencyKeyInput) -> str:
    parts = [
        _normalize_text(key_input.account_id),
        _normalize_text(key_input.activity_type),
        key_input.activity_date.isoformat(),
        _normalize_text(key_input.asset_id),
        normalize_number(key_input.quantity),
        normalize_number(key_input.unit_price),
        normalize_number(key_input.amount),
        _normalize_text(key_input.currency).upper(),
        _normalize_text(key_input.provider_reference_id),
        normalize_description(key_input.description),
    ]
    return "|".join(parts)


def compute_idempotency_key(key_input: IdempotencyKeyInput) -> str:
    return sha256(canonical_key_string(key_input).encode("utf-8")).hexdigest()


def key_input_from_draft(draft: DraftActivity) -> IdempotencyKeyInput | None:
    if draft.activity_type is None or draft.activity_date is None:
        return None
    return IdempotencyKeyInput(
        account_id=draft.account_id,
        activity_type=draft.activity_type.value,
        activity_date=draft.activity_date,
        currency=draft.currency,
        asset_id=draft.symbol,
        quantity=draft.quantity,
        unit_price=draft.unit_price,
        amount=draft.amount,
        description=draft.comment,
    )


def draft_idempotency_key(draft: DraftActivity) -> str | None:
    key_input = key_input_from_draft(draft)
    return compute_idempotency_key(key_input) if key_input is not None else None


async def compute_idempotency_keys(drafts: Iterable[DraftActivity]) -> dict[int, str]:
    """Hash every non-skipped draft concurrently; returns row_index -> key."""
    candidates = [
        draft
        for draft in drafts
        if draft.status != DraftStatus.SKIPPED and key_input_from_draft(draft) is not None
    ]
    keys = await asyncio.gather(
        *(asyncio.to_thread(draft_idempotency_key, draft) for draft in candidates)
    )
    logger.debug("Computed %s idempotency keys", len(keys))
    return {
        draft.row_index: key
        for draft, key in zip(candidates, keys)
        if key is not None
    }
