from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import replace

from activity_importer.ingest.dedupe import compute_idempotency_keys
from activity_importer.ingest.drafts import validate_draft
from activity_importer.ingest.models import DraftActivity, DraftStatus
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.utils.logging import get_logger

logger = get_logger(__name__)


def mark_duplicates(
    drafts: Iterable[DraftActivity],
    keys: dict[int, str],
    existing: dict[str, str],
) -> tuple[DraftActivity, ...]:
    """Attach keys and flag drafts whose key is already recorded.

    Skipped drafts and drafts the user chose to keep anyway are left as they are.
    """
    marked: list[DraftActivity] = []
    for draft in drafts:
        key = keys.get(draft.row_index, draft.idempotency_key)
        if draft.status == DraftStatus.SKIPPED:
            marked.append(replace(draft, idempotency_key=key))
            continue
        existing_id = existing.get(key) if key else None
        if existing_id and not draft.duplicate_override:
            marked.append(
                replace(
                    draft,
                    idempotency_key=key,
                    status=DraftStatus.DUPLICATE,
                    duplicate_of_id=existing_id,
                )
            )
        elif draft.status == DraftStatus.DUPLICATE and not existing_id:
            marked.append(validate_draft(replace(draft, idempotency_key=key, duplicate_of_id=None)))
        else:
            marked.append(replace(draft, idempotency_key=key))
    return tuple(marked)


async def find_duplicates(
    drafts: Iterable[DraftActivity], ledger: LedgerBackend
) -> tuple[dict[int, str], dict[str, str]]:
    """Hash the drafts and look the keys up in one batch.

    A failing lookup is logged and reported as "no duplicates"; the keys are
    still returned so commit can reuse them.
    """
    keys = await compute_idempotency_keys(drafts)
    if not keys:
        return keys, {}
    try:
        existing = await asyncio.to_thread(ledger.check_existing_duplicates, set(keys.values()))
    except Exception:  # noqa: BLE001
        logger.warning("Duplicate lookup failed; continuing without it", exc_info=True)
        return keys, {}
    logger.info("Checked %s keys, %s already imported", len(keys), len(existing))
    return keys, dict(existing)
