"""Import wizard state and its pure transition function.

``reduce(state, action)`` never mutates ``state``; every handler returns a
new ``WizardState``. Async work (hashing, duplicate lookup, backend checks)
reports back through ``ChecksCompleted``, which is ignored unless its
``generation`` still matches the state's.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from activity_importer.ingest.csv_mapping import (
    infer_mapping,
    mapping_issues,
    set_account_mapping,
    set_activity_mapping,
    set_field_mapping,
    set_symbol_mapping,
)
from activity_importer.ingest.csv_reader import normalize_file
from activity_importer.ingest.cross_validation import merge_backend_results
from activity_importer.ingest.drafts import build_drafts, validate_draft
from activity_importer.ingest.duplicates import mark_duplicates
from activity_importer.ingest.errors import ImportPipelineError
from activity_importer.ingest.models import (
    EDITABLE_DRAFT_FIELDS,
    ActivityCheck,
    ActivityType,
    DraftActivity,
    DraftStatus,
    ImportMapping,
    ImportResult,
    ImportStep,
    ParseConfig,
    RawTable,
)
from activity_importer.ingest.validators import normalize_currency, parse_date
from activity_importer.utils.logging import get_logger
from activity_importer.utils.money import optional_decimal

logger = get_logger(__name__)

DEFAULT_SKIP_REASON = "Skipped by user"

_NUMERIC_FIELDS = {"quantity", "unit_price", "amount", "fee", "fx_rate"}


@dataclass(frozen=True)
class WizardState:
    step: ImportStep = ImportStep.UPLOAD
    account_id: str | None = None
    file_name: str | None = None
    file_text: str | None = None
    headers: tuple[str, ...] = ()
    parsed_rows: tuple[tuple[str, ...], ...] = ()
    parse_config: ParseConfig = field(default_factory=ParseConfig)
    saved_mapping: ImportMapping | None = None
    mapping: ImportMapping | None = None
    drafts: tuple[DraftActivity, ...] = ()
    duplicates: dict[str, str] = field(default_factory=dict)
    import_result: ImportResult | None = None
    generation: int = 0
    checks_complete: bool = False
    backend_validated: bool = False
    step_error: str | None = None

    @property
    def table(self) -> RawTable | None:
        if not self.headers:
            return None
        return RawTable(headers=self.headers, rows=self.parsed_rows)

    def draft(self, row_index: int) -> DraftActivity | None:
        for draft in self.drafts:
            if draft.row_index == row_index:
                return draft
        return None


# Actions


@dataclass(frozen=True)
class SelectAccount:
    account_id: str


@dataclass(frozen=True)
class SavedMappingLoaded:
    mapping: ImportMapping | None


@dataclass(frozen=True)
class LoadFile:
    text: str
    file_name: str | None = None


@dataclass(frozen=True)
class ConfigureParsing:
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class SetMapping:
    mapping: ImportMapping


@dataclass(frozen=True)
class MapField:
    field: str
    header: str | None


@dataclass(frozen=True)
class MapActivityType:
    csv_value: str
    activity_type: ActivityType | str


@dataclass(frozen=True)
class MapSymbol:
    csv_symbol: str
    symbol: str | None


@dataclass(frozen=True)
class MapAccount:
    csv_account: str
    account_id: str | None


@dataclass(frozen=True)
class GoToStep:
    step: ImportStep


@dataclass(frozen=True)
class UpdateDraft:
    row_index: int
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class BulkUpdate:
    row_indexes: tuple[int, ...]
    changes: Mapping[str, Any]


@dataclass(frozen=True)
class BulkSkip:
    row_indexes: tuple[int, ...]
    reason: str = DEFAULT_SKIP_REASON


@dataclass(frozen=True)
class BulkUnskip:
    row_indexes: tuple[int, ...]


@dataclass(frozen=True)
class BulkSetCurrency:
    row_indexes: tuple[int, ...]
    currency: str


@dataclass(frozen=True)
class BulkSetAccount:
    row_indexes: tuple[int, ...]
    account_id: str


@dataclass(frozen=True)
class ChecksCompleted:
    generation: int
    keys: Mapping[int, str]
    duplicates: Mapping[str, str]
    backend_checks: tuple[ActivityCheck, ...] | None = None


@dataclass(frozen=True)
class ImportCompleted:
    result: ImportResult


@dataclass(frozen=True)
class Reset:
    pass


# Helpers


def _next_generation(state: WizardState, **changes: Any) -> WizardState:
    """Replace the draft set; any in-flight async result becomes stale."""
    return replace(
        state,
        generation=state.generation + 1,
        duplicates={},
        checks_complete=False,
        backend_validated=False,
        import_result=None,
        **changes,
    )


def _rebuild_drafts(state: WizardState) -> WizardState:
    table = state.table
    if state.step.position < ImportStep.REVIEW.position or table is None or state.mapping is None:
        return _next_generation(state, drafts=())
    try:
        drafts = build_drafts(table, state.mapping, state.account_id)
    except ImportPipelineError as exc:
        logger.error("Could not build drafts: %s", exc)
        return _next_generation(state, drafts=(), step=ImportStep.MAPPING, step_error=str(exc))
    return _next_generation(state, drafts=drafts, step_error=None)


def _reparse(state: WizardState) -> WizardState:
    if state.file_text is None:
        return _next_generation(state, drafts=())
    try:
        table = normalize_file(state.file_text, state.parse_config)
    except ImportPipelineError as exc:
        return _next_generation(
            state,
            headers=(),
            parsed_rows=(),
            mapping=None,
            drafts=(),
            step=ImportStep.UPLOAD,
            step_error=str(exc),
        )
    mapping = infer_mapping(
        table.headers,
        state.account_id or "",
        parse_config=state.parse_config,
        persisted=state.mapping or state.saved_mapping,
    )
    parsed = replace(
        state,
        headers=table.headers,
        parsed_rows=table.rows,
        mapping=mapping,
        step_error=None,
    )
    return _rebuild_drafts(parsed)


def _with_mapping(state: WizardState, mapping: ImportMapping) -> WizardState:
    if mapping.parse_config != state.parse_config:
        return _reparse(replace(state, mapping=mapping, parse_config=mapping.parse_config))
    return _rebuild_drafts(replace(state, mapping=mapping))


def _coerce_changes(changes: Mapping[str, Any], parse_config: ParseConfig) -> dict[str, Any]:
    unknown = set(changes) - EDITABLE_DRAFT_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
    coerced: dict[str, Any] = {}
    for name, value in changes.items():
        if name in _NUMERIC_FIELDS:
            number = optional_decimal(value)
            coerced[name] = abs(number) if number is not None else None
        elif name == "activity_type":
            coerced[name] = ActivityType(value) if value else None
        elif name == "activity_date":
            coerced[name] = value if isinstance(value, date) else parse_date(value, parse_config.date_format)
        elif name == "currency":
            coerced[name] = normalize_currency(value, "")
        else:
            coerced[name] = value.strip() if isinstance(value, str) else value
    return coerced


def _apply_edit(draft: DraftActivity, changes: dict[str, Any]) -> DraftActivity:
    edited = replace(draft, **changes, is_edited=True, idempotency_key=None)
    if edited.status == DraftStatus.SKIPPED:
        # The pre-skip status no longer describes the edited values.
        return replace(edited, status_before_skip=None)
    if edited.status == DraftStatus.DUPLICATE:
        return edited
    return validate_draft(edited)


def _map_rows(
    state: WizardState,
    row_indexes: Iterable[int],
    transform: Callable[[DraftActivity], DraftActivity],
) -> WizardState:
    targets = set(row_indexes)
    drafts = tuple(
        transform(draft) if draft.row_index in targets else draft for draft in state.drafts
    )
    return replace(state, drafts=drafts)


def _can_leave(state: WizardState, step: ImportStep) -> str | None:
    """Why the wizard may not move forward from ``step``, or None."""
    if step == ImportStep.UPLOAD:
        if not state.account_id:
            return "Select an account before continuing."
        if state.table is None:
            return state.step_error or "Upload a file before continuing."
        return None
    if step == ImportStep.MAPPING:
        if state.table is None or state.mapping is None:
            return "Upload a file before continuing."
        issues = mapping_issues(state.table, state.mapping)
        return " ".join(issues) if issues else None
    if step == ImportStep.REVIEW:
        if not any(draft.is_committable for draft in state.drafts):
            return "There are no valid activities to import."
        return None
    return "The import is already at its last step."


# Handlers


def _select_account(state: WizardState, action: SelectAccount) -> WizardState:
    mapping = replace(state.mapping, account_id=action.account_id) if state.mapping else None
    return _rebuild_drafts(
        replace(state, account_id=action.account_id, saved_mapping=None, mapping=mapping)
    )


def _saved_mapping_loaded(state: WizardState, action: SavedMappingLoaded) -> WizardState:
    saved = action.mapping
    parse_config = saved.parse_config if saved is not None else state.parse_config
    updated = replace(state, saved_mapping=saved, parse_config=parse_config, mapping=None)
    return _reparse(updated)


def _load_file(state: WizardState, action: LoadFile) -> WizardState:
    updated = replace(
        state,
        file_name=action.file_name,
        file_text=action.text,
        mapping=None,
        step=ImportStep.UPLOAD,
    )
    return _reparse(updated)


def _configure_parsing(state: WizardState, action: ConfigureParsing) -> WizardState:
    try:
        config = replace(state.parse_config, **dict(action.changes))
    except (TypeError, ValueError) as exc:
        return replace(state, step_error=str(exc))
    mapping = replace(state.mapping, parse_config=config) if state.mapping else None
    return _reparse(replace(state, parse_config=config, mapping=mapping))


def _set_mapping(state: WizardState, action: SetMapping) -> WizardState:
    return _with_mapping(state, action.mapping)


def _mapping_or_default(state: WizardState) -> ImportMapping:
    if state.mapping is not None:
        return state.mapping
    return ImportMapping(account_id=state.account_id or "", parse_config=state.parse_config)


def _map_field(state: WizardState, action: MapField) -> WizardState:
    try:
        mapping = set_field_mapping(_mapping_or_default(state), action.field, action.header)
    except ValueError as exc:
        return replace(state, step_error=str(exc))
    return _with_mapping(state, mapping)


def _map_activity_type(state: WizardState, action: MapActivityType) -> WizardState:
    mapping = set_activity_mapping(_mapping_or_default(state), action.csv_value, action.activity_type)
    return _with_mapping(state, mapping)


def _map_symbol(state: WizardState, action: MapSymbol) -> WizardState:
    mapping = set_symbol_mapping(_mapping_or_default(state), action.csv_symbol, action.symbol)
    return _with_mapping(state, mapping)


def _map_account(state: WizardState, action: MapAccount) -> WizardState:
    mapping = set_account_mapping(_mapping_or_default(state), action.csv_account, action.account_id)
    return _with_mapping(state, mapping)


def _go_to_step(state: WizardState, action: GoToStep) -> WizardState:
    target = action.step
    if target.position <= state.step.position:
        return replace(state, step=target, step_error=None)
    if target.position != state.step.position + 1:
        return replace(state, step_error=f"Cannot jump from {state.step.value} to {target.value}.")
    blocker = _can_leave(state, state.step)
    if blocker:
        return replace(state, step_error=blocker)
    moved = replace(state, step=target, step_error=None)
    if target == ImportStep.REVIEW and not moved.drafts:
        return _rebuild_drafts(moved)
    return moved


def _edit_rows(state: WizardState, row_indexes: Iterable[int], changes: Mapping[str, Any]) -> WizardState:
    """Apply an edit to the chosen drafts; checks already in flight become stale."""
    coerced = _coerce_changes(changes, state.parse_config)
    edited = _map_rows(state, row_indexes, lambda draft: _apply_edit(draft, coerced))
    return replace(
        edited,
        generation=state.generation + 1,
        checks_complete=False,
        backend_validated=False,
    )


def _update_draft(state: WizardState, action: UpdateDraft) -> WizardState:
    return _edit_rows(state, (action.row_index,), action.changes)


def _bulk_update(state: WizardState, action: BulkUpdate) -> WizardState:
    return _edit_rows(state, action.row_indexes, action.changes)


def _skip(draft: DraftActivity, reason: str) -> DraftActivity:
    if draft.status == DraftStatus.SKIPPED:
        return draft
    return replace(
        draft,
        status=DraftStatus.SKIPPED,
        status_before_skip=draft.status,
        skip_reason=reason,
    )


def _unskip(draft: DraftActivity) -> DraftActivity:
    if draft.status == DraftStatus.SKIPPED:
        restored = draft.status_before_skip
        if restored is None:
            return validate_draft(replace(draft, skip_reason=None))
        return replace(draft, status=restored, status_before_skip=None, skip_reason=None)
    if draft.status == DraftStatus.DUPLICATE:
        return validate_draft(replace(draft, duplicate_override=True))
    return draft


def _bulk_skip(state: WizardState, action: BulkSkip) -> WizardState:
    reason = action.reason or DEFAULT_SKIP_REASON
    return _map_rows(state, action.row_indexes, lambda draft: _skip(draft, reason))


def _bulk_unskip(state: WizardState, action: BulkUnskip) -> WizardState:
    return _map_rows(state, action.row_indexes, _unskip)


def _bulk_set_currency(state: WizardState, action: BulkSetCurrency) -> WizardState:
    return _bulk_update(state, BulkUpdate(action.row_indexes, {"currency": action.currency}))


def _bulk_set_account(state: WizardState, action: BulkSetAccount) -> WizardState:
    return _bulk_update(state, BulkUpdate(action.row_indexes, {"account_id": action.account_id}))


def _checks_completed(state: WizardState, action: ChecksCompleted) -> WizardState:
    if action.generation != state.generation:
        logger.debug(
            "Dropping stale checks for generation %s (current %s)",
            action.generation,
            state.generation,
        )
        return state
    drafts = mark_duplicates(state.drafts, dict(action.keys), dict(action.duplicates))
    if action.backend_checks is not None:
        drafts = merge_backend_results(drafts, action.backend_checks)
    return replace(
        state,
        drafts=drafts,
        duplicates=dict(action.duplicates),
        checks_complete=True,
        backend_validated=action.backend_checks is not None,
    )


def _import_completed(state: WizardState, action: ImportCompleted) -> WizardState:
    return replace(state, import_result=action.result)


def _reset(state: WizardState, action: Reset) -> WizardState:
    return WizardState(generation=state.generation + 1)


_HANDLERS: dict[type, Callable[[WizardState, Any], WizardState]] = {
    SelectAccount: _select_account,
    SavedMappingLoaded: _saved_mapping_loaded,
    LoadFile: _load_file,
    ConfigureParsing: _configure_parsing,
    SetMapping: _set_mapping,
    MapField: _map_field,
    MapActivityType: _map_activity_type,
    MapSymbol: _map_symbol,
    MapAccount: _map_account,
    GoToStep: _go_to_step,
    UpdateDraft: _update_draft,
    BulkUpdate: _bulk_update,
    BulkSkip: _bulk_skip,
    BulkUnskip: _bulk_unskip,
    BulkSetCurrency: _bulk_set_currency,
    BulkSetAccount: _bulk_set_account,
    ChecksCompleted: _checks_completed,
    ImportCompleted: _import_completed,
    Reset: _reset,
}


def reduce(state: WizardState, action: Any) -> WizardState:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unsupported wizard action: {type(action).__name__}")
    return handler(state, action)


# Review filters


REVIEW_FILTERS = ("all", "errors", "warnings", "duplicates", "skipped", "valid")

_FILTER_STATUS = {
    "errors": DraftStatus.ERROR,
    "warnings": DraftStatus.WARNING,
    "duplicates": DraftStatus.DUPLICATE,
    "skipped": DraftStatus.SKIPPED,
    "valid": DraftStatus.VALID,
}


@dataclass(frozen=True)
class ReviewStats:
    total: int = 0
    errors: int = 0
    warnings: int = 0
    duplicates: int = 0
    skipped: int = 0
    valid: int = 0


def review_stats(drafts: Iterable[DraftActivity]) -> ReviewStats:
    counts = {status: 0 for status in DraftStatus}
    total = 0
    for draft in drafts:
        counts[draft.status] += 1
        total += 1
    return ReviewStats(
        total=total,
        errors=counts[DraftStatus.ERROR],
        warnings=counts[DraftStatus.WARNING],
        duplicates=counts[DraftStatus.DUPLICATE],
        skipped=counts[DraftStatus.SKIPPED],
        valid=counts[DraftStatus.VALID],
    )


def filter_drafts(drafts: Iterable[DraftActivity], bucket: str = "all") -> list[DraftActivity]:
    if bucket not in REVIEW_FILTERS:
        raise ValueError(f"Unknown review filter '{bucket}'.")
    if bucket == "all":
        return list(drafts)
    status = _FILTER_STATUS[bucket]
    return [draft for draft in drafts if draft.status == status]
