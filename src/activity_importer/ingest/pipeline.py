"""Headless driver for the import wizard.

``ImportSession`` owns one ``WizardState`` and replaces it wholesale on every
action. Stages run in order (normalize -> map -> hash -> duplicate lookup ->
backend dry-run -> commit); the async stages work on a snapshot and report
back through ``ChecksCompleted`` so a result for a replaced draft set is
dropped instead of merged.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Any, BinaryIO

from activity_importer.config.settings import Settings, get_settings
from activity_importer.ingest.commit import commit_drafts
from activity_importer.ingest.cross_validation import request_backend_checks
from activity_importer.ingest.csv_reader import read_text
from activity_importer.ingest.dedupe import compute_idempotency_keys
from activity_importer.ingest.duplicates import find_duplicates, mark_duplicates
from activity_importer.ingest.errors import StepTransitionError
from activity_importer.ingest.models import ImportMapping, ImportResult, ImportStep, ParseConfig
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.ingest.review import (
    ChecksCompleted,
    ConfigureParsing,
    GoToStep,
    ImportCompleted,
    LoadFile,
    SavedMappingLoaded,
    SelectAccount,
    SetMapping,
    WizardState,
    reduce,
)
from activity_importer.utils.logging import get_logger

logger = get_logger(__name__)

_STEP_ORDER = list(ImportStep)


async def run_review_checks(
    state: WizardState,
    ledger: LedgerBackend,
    *,
    check_duplicates: bool = True,
    backend_validation: bool = True,
) -> ChecksCompleted:
    """Hash, look up duplicates, then dry-run against the ledger for one snapshot."""
    generation = state.generation
    drafts = state.drafts
    if check_duplicates:
        keys, existing = await find_duplicates(drafts, ledger)
    else:
        keys, existing = await compute_idempotency_keys(drafts), {}

    checks = None
    if backend_validation and state.account_id:
        marked = mark_duplicates(drafts, keys, existing)
        checks = await request_backend_checks(marked, ledger, state.account_id)

    return ChecksCompleted(
        generation=generation,
        keys=keys,
        duplicates=existing,
        backend_checks=tuple(checks) if checks is not None else None,
    )


class ImportSession:
    def __init__(
        self,
        ledger: LedgerBackend,
        settings: Settings | None = None,
        state: WizardState | None = None,
    ) -> None:
        self.ledger = ledger
        self.settings = settings or get_settings()
        self.state = state or WizardState(
            parse_config=ParseConfig(default_currency=self.settings.default_currency)
        )

    def dispatch(self, action: Any) -> WizardState:
        self.state = reduce(self.state, action)
        return self.state

    def select_account(self, account_id: str) -> WizardState:
        self.dispatch(SelectAccount(account_id))
        try:
            saved = self.ledger.get_account_import_mapping(account_id)
        except Exception:  # noqa: BLE001
            logger.warning("Could not load saved mapping for account %s", account_id, exc_info=True)
            saved = None
        return self.dispatch(SavedMappingLoaded(saved))

    def load_file(self, source: str | Path | bytes | BinaryIO, file_name: str | None = None) -> WizardState:
        if file_name is None and isinstance(source, (str, Path)):
            file_name = Path(source).name
        return self.load_text(read_text(source), file_name=file_name)

    def load_text(self, text: str, file_name: str | None = None) -> WizardState:
        return self.dispatch(LoadFile(text=text, file_name=file_name))

    def configure_parsing(self, **changes: Any) -> WizardState:
        return self.dispatch(ConfigureParsing(changes))

    def set_mapping(self, mapping: ImportMapping) -> WizardState:
        return self.dispatch(SetMapping(mapping))

    def advance(self) -> WizardState:
        """Move one step forward; raises ``StepTransitionError`` when gated."""
        position = _STEP_ORDER.index(self.state.step)
        if position + 1 >= len(_STEP_ORDER):
            raise StepTransitionError("The import is already at its last step.")
        self.dispatch(GoToStep(_STEP_ORDER[position + 1]))
        if self.state.step_error:
            raise StepTransitionError(self.state.step_error)
        return self.state

    def back(self) -> WizardState:
        position = _STEP_ORDER.index(self.state.step)
        return self.dispatch(GoToStep(_STEP_ORDER[max(position - 1, 0)]))

    async def run_checks(self) -> WizardState:
        message = await run_review_checks(
            self.state,
            self.ledger,
            check_duplicates=self.settings.enable_duplicate_check,
            backend_validation=self.settings.enable_backend_validation,
        )
        return self.dispatch(message)

    async def commit(self) -> ImportResult:
        if self.state.step != ImportStep.COMMIT:
            raise StepTransitionError("Review the activities before committing.")
        result = await commit_drafts(self.state.drafts, self.ledger)
        self.dispatch(ImportCompleted(result))
        return result

    def save_mapping(self) -> ImportMapping | None:
        mapping = self.state.mapping
        if mapping is None or not self.state.account_id:
            return None
        mapping = replace(mapping, account_id=self.state.account_id, parse_config=self.state.parse_config)
        return self.ledger.save_account_import_mapping(mapping)


async def import_file(
    ledger: LedgerBackend,
    source: str | Path | bytes | BinaryIO,
    account_id: str,
    *,
    settings: Settings | None = None,
    parse_changes: dict[str, Any] | None = None,
    save_mapping: bool = True,
) -> tuple[ImportResult, WizardState]:
    """Run the whole wizard without user interaction.

    Rows with errors or duplicates are left out, the rest is committed.
    """
    session = ImportSession(ledger, settings=settings)
    session.select_account(account_id)
    session.load_file(source)
    if parse_changes:
        session.configure_parsing(**parse_changes)
    session.advance()
    session.advance()
    await session.run_checks()
    if save_mapping:
        try:
            await asyncio.to_thread(session.save_mapping)
        except Exception:  # noqa: BLE001
            logger.warning("Could not save import mapping for %s", account_id, exc_info=True)
    try:
        session.advance()
    except StepTransitionError as exc:
        logger.info("Nothing to commit for %s: %s", account_id, exc)
        result = await commit_drafts(session.state.drafts, ledger)
        session.dispatch(ImportCompleted(result))
        return result, session.state
    result = await session.commit()
    return result, session.state
