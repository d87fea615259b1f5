from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from decimal import Decimal

from activity_importer.ingest.commit import build_payloads, commit_candidates, commit_drafts
from activity_importer.ingest.dedupe import draft_idempotency_key
from activity_importer.ingest.drafts import validate_draft
from activity_importer.ingest.models import ActivityType, DraftActivity, DraftStatus
from activity_importer.ingest.payloads import (
    CashPayload,
    FeePayload,
    SplitPayload,
    TradePayload,
    payload_from_draft,
)


def _draft(row_index: int, activity_type: ActivityType, **values) -> DraftActivity:
    base = {
        "row_index": row_index,
        "raw_row": (),
        "account_id": "acc-1",
        "currency": "USD",
        "activity_date": date(2025, 4, 1),
        "activity_type": activity_type,
        "fee": Decimal("0"),
    }
    base.update(values)
    return validate_draft(DraftActivity(**base))


def _mixed_drafts() -> list[DraftActivity]:
    return [
        _draft(0, ActivityType.BUY, symbol="AAPL", quantity=Decimal("2"), unit_price=Decimal("5"), amount=Decimal("10")),
        _draft(1, ActivityType.BUY, symbol="APPLE INC", quantity=Decimal("1"), unit_price=Decimal("5"), amount=Decimal("5")),
        _draft(2, ActivityType.SELL, symbol="AAPL"),
        replace(
            _draft(3, ActivityType.DEPOSIT, symbol="$CASH-USD", amount=Decimal("100")),
            status=DraftStatus.DUPLICATE,
        ),
        replace(
            _draft(4, ActivityType.DEPOSIT, symbol="$CASH-USD", amount=Decimal("50")),
            status=DraftStatus.SKIPPED,
        ),
    ]


def test_payload_variants_follow_activity_type() -> None:
    trade = payload_from_draft(_mixed_drafts()[0], "key-1")
    fee = payload_from_draft(_draft(5, ActivityType.FEE, symbol="$CASH-USD", fee=Decimal("3")))
    split = payload_from_draft(_draft(6, ActivityType.SPLIT, symbol="NVDA", quantity=Decimal("10")))
    deposit = payload_from_draft(_draft(7, ActivityType.DEPOSIT, symbol="$CASH-USD", amount=Decimal("1")))

    assert isinstance(trade, TradePayload)
    assert isinstance(fee, FeePayload)
    assert isinstance(split, SplitPayload)
    assert isinstance(deposit, CashPayload)
    assert trade.to_dict() == {
        "accountId": "acc-1",
        "activityType": "BUY",
        "activityDate": "2025-04-01",
        "currency": "USD",
        "idempotencyKey": "key-1",
        "symbol": "AAPL",
        "quantity": "2",
        "unitPrice": "5",
        "amount": "10",
        "fee": "0",
    }
    assert "unitPrice" not in split.to_dict()


def test_commit_candidates_exclude_error_duplicate_and_skipped() -> None:
    candidates = commit_candidates(_mixed_drafts())
    assert [draft.row_index for draft in candidates] == [0, 1]

    payloads = build_payloads(candidates)
    assert payloads[0].idempotency_key == draft_idempotency_key(candidates[0])


def test_commit_drafts_summarizes_outcome(stub_ledger) -> None:
    stub_ledger.rejected_positions = {1}

    result = asyncio.run(commit_drafts(_mixed_drafts(), stub_ledger))

    assert result.fetched == 5
    assert result.inserted == 1
    assert result.skipped == 2
    assert result.warnings == 1
    assert result.errors == 2
    assert [(failure.line_number, failure.message) for failure in result.failures] == [(2, "Rejected")]
    assert [payload.symbol for payload in stub_ledger.saved] == ["AAPL"]


def test_commit_drafts_reports_total_failure(stub_ledger) -> None:
    stub_ledger.failing.add("save")

    result = asyncio.run(commit_drafts(_mixed_drafts(), stub_ledger))

    assert result.inserted == 0
    assert result.errors == 3
    assert result.failures[0].line_number == 0
    assert "save unavailable" in result.failures[0].message


def test_commit_drafts_with_nothing_to_submit(stub_ledger) -> None:
    drafts = _mixed_drafts()[2:]

    result = asyncio.run(commit_drafts(drafts, stub_ledger))

    assert result.inserted == 0
    assert result.skipped == 2
    assert result.errors == 1
    assert stub_ledger.saved == []
