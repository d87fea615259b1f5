from __future__ import annotations

import asyncio
from collections.abc import Sequence

from activity_importer.ingest.dedupe import draft_idempotency_key
from activity_importer.ingest.models import (
    DraftActivity,
    DraftStatus,
    ImportFailure,
    ImportResult,
)
from activity_importer.ingest.payloads import ActivityPayload, payload_from_draft
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.utils.logging import get_logger

logger = get_logger(__name__)


def commit_candidates(drafts: Sequence[DraftActivity]) -> list[DraftActivity]:
    """Drafts eligible for creation: valid or warning, never error/duplicate/skipped."""
    return [draft for draft in drafts if draft.is_committable]


def build_payloads(drafts: Sequence[DraftActivity]) -> list[ActivityPayload]:
    return [payload_from_draft(draft, draft_idempotency_key(draft)) for draft in drafts]


async def commit_drafts(drafts: Sequence[DraftActivity], ledger: LedgerBackend) -> ImportResult:
    """Submit committable drafts as one bulk create and summarize the outcome.

    Rows the ledger already accepted are never rolled back; per-row failures
    are reported, not retried.
    """
    candidates = commit_candidates(drafts)
    excluded = sum(
        1 for draft in drafts if draft.status in {DraftStatus.SKIPPED, DraftStatus.DUPLICATE}
    )
    local_errors = sum(1 for draft in drafts if draft.status == DraftStatus.ERROR)
    warnings = sum(1 for draft in candidates if draft.status == DraftStatus.WARNING)

    if not candidates:
        logger.info("Nothing to commit (%s drafts excluded)", len(drafts))
        return ImportResult(
            fetched=len(drafts), skipped=excluded, errors=local_errors, warnings=warnings
        )

    payloads = build_payloads(candidates)
    try:
        bulk = await asyncio.to_thread(ledger.save_activities, payloads)
    except Exception as exc:  # noqa: BLE001
        logger.error("Bulk create failed for %s activities: %s", len(payloads), exc)
        return ImportResult(
            fetched=len(drafts),
            skipped=excluded,
            warnings=warnings,
            errors=local_errors + len(candidates),
            failures=(ImportFailure(line_number=0, message=str(exc)),),
        )

    failures: list[ImportFailure] = []
    inserted = 0
    for item in bulk.created:
        if item.success:
            inserted += 1
            continue
        position = int(item.temp_id)
        line_number = candidates[position].line_number if position < len(candidates) else 0
        failures.append(ImportFailure(line_number=line_number, message=item.message or "Import failed"))

    result = ImportResult(
        fetched=len(drafts),
        inserted=inserted,
        updated=bulk.updated,
        skipped=excluded,
        warnings=warnings,
        errors=local_errors + len(failures),
        removed=bulk.deleted,
        failures=tuple(failures),
    )
    logger.info(
        "Committed %s/%s activities (%s failed, %s excluded)",
        inserted,
        len(candidates),
        len(failures),
        excluded,
    )
    return result
