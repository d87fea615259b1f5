from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from decimal import Decimal

from activity_importer.ingest.cross_validation import (
    GENERIC_FAILURE,
    backend_candidates,
    merge_backend_results,
    request_backend_checks,
)
from activity_importer.ingest.drafts import validate_draft
from activity_importer.ingest.models import ActivityCheck, ActivityType, DraftActivity, DraftStatus


def _buy(row_index: int, symbol: str = "AAPL") -> DraftActivity:
    return validate_draft(
        DraftActivity(
            row_index=row_index,
            raw_row=(),
            account_id="acc-1",
            currency="USD",
            activity_date=date(2025, 3, 1),
            activity_type=ActivityType.BUY,
            symbol=symbol,
            quantity=Decimal("1"),
            unit_price=Decimal("10"),
            amount=Decimal("10"),
            fee=Decimal("0"),
        )
    )


def test_merge_unions_backend_errors_and_attaches_asset_details() -> None:
    drafts = [_buy(0), _buy(1), _buy(2)]
    checks = [
        ActivityCheck(line_number=1, is_valid=True, symbol_name="Apple Inc.", exchange_mic="XNAS"),
        ActivityCheck(line_number=2, is_valid=False, errors={"symbol": ["Unable to resolve symbol 'AAPL'"]}),
        ActivityCheck(line_number=3, is_valid=False),
    ]

    merged = merge_backend_results(drafts, checks)

    assert merged[0].status == DraftStatus.VALID
    assert merged[0].symbol_name == "Apple Inc."
    assert merged[0].exchange_mic == "XNAS"
    assert merged[1].status == DraftStatus.ERROR
    assert merged[1].errors == {"symbol": ["Unable to resolve symbol 'AAPL'"]}
    assert merged[2].errors == {"general": [GENERIC_FAILURE]}


def test_merge_keeps_skipped_and_duplicate_status() -> None:
    skipped = replace(_buy(0), status=DraftStatus.SKIPPED)
    duplicate = replace(_buy(1), status=DraftStatus.DUPLICATE, duplicate_of_id="act-1")
    checks = [
        ActivityCheck(line_number=1, is_valid=False, errors={"x": ["bad"]}),
        ActivityCheck(line_number=2, is_valid=False, errors={"x": ["bad"]}),
    ]

    merged = merge_backend_results([skipped, duplicate], checks)

    assert [draft.status for draft in merged] == [DraftStatus.SKIPPED, DraftStatus.DUPLICATE]


def test_merge_does_not_duplicate_messages_already_present() -> None:
    draft = replace(_buy(0), errors={"quantity": ["Quantity must be greater than 0"]})
    check = ActivityCheck(
        line_number=1, is_valid=False, errors={"quantity": ["Quantity must be greater than 0"]}
    )

    merged = merge_backend_results([draft], [check])

    assert merged[0].errors == {"quantity": ["Quantity must be greater than 0"]}


def test_request_backend_checks_sends_only_typed_non_skipped_rows(stub_ledger) -> None:
    drafts = [_buy(0), replace(_buy(1), status=DraftStatus.SKIPPED), replace(_buy(2), activity_type=None)]

    checks = asyncio.run(request_backend_checks(drafts, stub_ledger, "acc-1"))

    assert [check.line_number for check in checks] == [1]
    sent = stub_ledger.check_requests[0]
    assert sent[0]["lineNumber"] == 1
    assert sent[0]["activityType"] == "BUY"
    assert sent[0]["activityDate"] == "2025-03-01"
    assert sent[0]["unitPrice"] == "10"
    assert len(backend_candidates(drafts)) == 1


def test_request_backend_checks_returns_none_when_backend_fails(stub_ledger) -> None:
    stub_ledger.failing.add("check")

    assert asyncio.run(request_backend_checks([_buy(0)], stub_ledger, "acc-1")) is None
