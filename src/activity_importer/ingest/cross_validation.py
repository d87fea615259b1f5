from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import replace

from activity_importer.ingest.models import ActivityCheck, DraftActivity, DraftStatus
from activity_importer.ingest.payloads import draft_check_row
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.utils.logging import get_logger

logger = get_logger(__name__)

GENERIC_FAILURE = "Validation failed"


def backend_candidates(drafts: Iterable[DraftActivity]) -> list[DraftActivity]:
    return [
        draft
        for draft in drafts
        if draft.status != DraftStatus.SKIPPED and draft.activity_type is not None
    ]


def _union(
    base: dict[str, list[str]], extra: dict[str, list[str]]
) -> dict[str, list[str]]:
    merged = {field: list(messages) for field, messages in base.items()}
    for field, messages in extra.items():
        bucket = merged.setdefault(field, [])
        for message in messages:
            if message not in bucket:
                bucket.append(message)
    return merged


def merge_backend_results(
    drafts: Iterable[DraftActivity], checks: Sequence[ActivityCheck]
) -> tuple[DraftActivity, ...]:
    """Fold authoritative verdicts into the drafts, matched by line number."""
    by_line = {check.line_number: check for check in checks}
    merged: list[DraftActivity] = []
    for draft in drafts:
        check = by_line.get(draft.line_number)
        if check is None:
            merged.append(draft)
            continue

        backend_errors = {field: list(messages) for field, messages in check.errors.items() if messages}
        if not check.is_valid and not backend_errors:
            backend_errors = {"general": [GENERIC_FAILURE]}
        errors = _union(draft.errors, backend_errors)

        status = draft.status
        if status not in {DraftStatus.SKIPPED, DraftStatus.DUPLICATE}:
            if errors:
                status = DraftStatus.ERROR
            elif draft.warnings:
                status = DraftStatus.WARNING
            else:
                status = DraftStatus.VALID

        merged.append(
            replace(
                draft,
                errors=errors,
                status=status,
                symbol_name=check.symbol_name or draft.symbol_name,
                exchange_mic=check.exchange_mic or draft.exchange_mic,
            )
        )
    return tuple(merged)


async def request_backend_checks(
    drafts: Iterable[DraftActivity], ledger: LedgerBackend, account_id: str
) -> list[ActivityCheck] | None:
    """Dry-run the drafts against the ledger; None means the call failed."""
    candidates = backend_candidates(drafts)
    if not candidates:
        return []
    rows = [draft_check_row(draft) for draft in candidates]
    try:
        checks = await asyncio.to_thread(ledger.check_activities_import, account_id, rows, True)
    except Exception:  # noqa: BLE001
        logger.warning("Backend validation failed; using local validation only", exc_info=True)
        return None
    invalid = sum(1 for check in checks if not check.is_valid)
    logger.info("Backend checked %s rows, %s invalid", len(checks), invalid)
    return list(checks)
