from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from decimal import Decimal

from activity_importer.ingest.dedupe import (
    canonical_key_string,
    compute_idempotency_key,
    compute_idempotency_keys,
    draft_idempotency_key,
    normalize_description,
    normalize_number,
)
from activity_importer.ingest.models import ActivityType, DraftActivity, DraftStatus, IdempotencyKeyInput


def _sell_input(**overrides) -> IdempotencyKeyInput:
    values = {
        "account_id": "acc-1",
        "activity_type": "SELL",
        "activity_date": date(2025, 6, 27),
        "currency": "usd",
        "asset_id": "AAPL",
        "quantity": Decimal("25.000"),
        "unit_price": Decimal("48.9450"),
        "amount": Decimal("1223.625"),
        "description": "  Sold   shares ",
    }
    values.update(overrides)
    return IdempotencyKeyInput(**values)


def test_normalize_number_strips_trailing_zeros_and_exponents() -> None:
    assert normalize_number(Decimal("10.00")) == "10"
    assert normalize_number(Decimal("1E+2")) == "100"
    assert normalize_number(Decimal("0.000")) == "0"
    assert normalize_number("1.50") == "1.5"
    assert normalize_number(None) == ""


def test_normalize_description_collapses_whitespace() -> None:
    assert normalize_description("  a \t b\n c ") == "a b c"
    assert normalize_description(None) == ""


def test_canonical_string_field_order_is_stable() -> None:
    assert canonical_key_string(_sell_input()) == (
        "acc-1|SELL|2025-06-27|AAPL|25|48.945|1223.625|USD||Sold shares"
    )


def test_known_key_vectors() -> None:
    assert compute_idempotency_key(_sell_input()) == (
        "b50bdb2e7f59a58afbe697bd81094ac2edf68ebf6f17dc7d9a05e1af82055512"
    )
    deposit = IdempotencyKeyInput(
        account_id="acc-1",
        activity_type="DEPOSIT",
        activity_date=date(2025, 1, 5),
        currency="USD",
        asset_id="$CASH-USD",
        quantity=Decimal("0"),
        unit_price=Decimal("0"),
        amount=Decimal("1000.00"),
        provider_reference_id="REF-9",
    )
    assert compute_idempotency_key(deposit) == (
        "52ce384729caac55f68b4479689ff91eb10190256d859e728922ea41ad77b011"
    )


def test_key_changes_with_any_identity_field() -> None:
    base = compute_idempotency_key(_sell_input())

    assert compute_idempotency_key(_sell_input(quantity=Decimal("25"))) == base
    assert compute_idempotency_key(_sell_input(quantity=Decimal("26"))) != base
    assert compute_idempotency_key(_sell_input(account_id="acc-2")) != base
    assert compute_idempotency_key(_sell_input(activity_date=date(2025, 6, 28))) != base
    assert compute_idempotency_key(_sell_input(description="Sold")) != base
    assert compute_idempotency_key(_sell_input(provider_reference_id="X1")) != base


def test_draft_key_and_async_batch_skip_skipped_and_incomplete_drafts() -> None:
    draft = DraftActivity(
        row_index=0,
        raw_row=(),
        account_id="acc-1",
        currency="USD",
        activity_date=date(2025, 6, 27),
        activity_type=ActivityType.SELL,
        symbol="AAPL",
        quantity=Decimal("25"),
        unit_price=Decimal("48.945"),
        amount=Decimal("1223.625"),
        comment="Sold shares",
    )
    skipped = replace(draft, row_index=1, status=DraftStatus.SKIPPED)
    undated = replace(draft, row_index=2, activity_date=None)

    keys = asyncio.run(compute_idempotency_keys([draft, skipped, undated]))

    assert keys == {0: "b50bdb2e7f59a58afbe697bd81094ac2edf68ebf6f17dc7d9a05e1af82055512"}
    assert draft_idempotency_key(undated) is None
