"""HTTP client for a remote ledger service exposing the activity import API."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

import requests

from activity_importer.config.settings import Settings, get_settings
from activity_importer.ingest.errors import LedgerError
from activity_importer.ingest.models import ActivityCheck, BulkItemResult, BulkResult, ImportMapping
from activity_importer.ingest.payloads import ActivityPayload
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.utils.logging import get_logger
from activity_importer.utils.money import plain_number, to_decimal

logger = get_logger(__name__)

USER_AGENT = "ActivityImporter/1.0 (+local)"

ROUTES = {
    "check_activities_import": ("POST", "/activities/import/check"),
    "check_existing_duplicates": ("POST", "/activities/import/duplicates"),
    "save_activities": ("POST", "/activities/bulk"),
    "get_account_import_mapping": ("GET", "/activities/import/mapping"),
    "save_account_import_mapping": ("POST", "/activities/import/mapping"),
    "existing_quote_keys": ("POST", "/market-data/quotes/check"),
    "save_quotes": ("POST", "/market-data/quotes/import"),
}


def _check_from_wire(payload: Mapping[str, Any]) -> ActivityCheck:
    errors = {
        str(field): [str(message) for message in (messages or [])]
        for field, messages in (payload.get("errors") or {}).items()
    }
    return ActivityCheck(
        line_number=int(payload.get("lineNumber") or 0),
        is_valid=bool(payload.get("isValid")),
        errors=errors,
        symbol_name=payload.get("symbolName"),
        exchange_mic=payload.get("exchangeMic"),
    )


def _quote_to_wire(quote: Mapping[str, Any]) -> dict[str, Any]:
    wire: dict[str, Any] = {}
    for key, value in quote.items():
        if value is None:
            continue
        if isinstance(value, date):
            value = value.isoformat()
        elif not isinstance(value, str):
            value = plain_number(to_decimal(value))
        wire[key] = value
    return wire


class HttpLedgerClient(LedgerBackend):
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        resolved = base_url or settings.ledger_api_url
        if not resolved:
            raise ValueError("A ledger API URL is required (set LEDGER_API_URL).")
        self.base_url = resolved.rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.ledger_api_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def _call(
        self,
        command: str,
        *,
        body: Any = None,
        params: dict[str, str] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        method, path = ROUTES[command]
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, json=body, params=params, timeout=self.timeout_seconds
            )
        except requests.RequestException as exc:
            logger.error("Ledger request %s %s failed: %s", method, url, exc)
            raise LedgerError(f"{command} failed: {exc}") from exc

        if allow_missing and response.status_code == 404:
            return None
        if response.status_code >= 400:
            detail = (response.text or "").strip()[:200]
            logger.error("Ledger %s returned HTTP %s: %s", command, response.status_code, detail)
            raise LedgerError(f"{command} failed with HTTP {response.status_code}: {detail}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise LedgerError(f"{command} returned a non-JSON response") from exc

    def check_activities_import(
        self, account_id: str, rows: Sequence[Mapping[str, Any]], dry_run: bool = True
    ) -> list[ActivityCheck]:
        payload = self._call(
            "check_activities_import",
            body={"accountId": account_id, "activities": [dict(row) for row in rows], "dryRun": dry_run},
        )
        return [_check_from_wire(item) for item in (payload or [])]

    def check_existing_duplicates(self, idempotency_keys: set[str]) -> dict[str, str]:
        if not idempotency_keys:
            return {}
        payload = self._call(
            "check_existing_duplicates", body={"idempotencyKeys": sorted(idempotency_keys)}
        )
        return {str(key): str(value) for key, value in (payload or {}).items() if value}

    def save_activities(
        self,
        creates: Sequence[ActivityPayload] = (),
        updates: Mapping[str, ActivityPayload] | None = None,
        delete_ids: Sequence[str] = (),
    ) -> BulkResult:
        body = {
            "creates": [
                {"tempId": str(position), **payload.to_dict()}
                for position, payload in enumerate(creates)
            ],
            "updates": [
                {"id": activity_id, **payload.to_dict()}
                for activity_id, payload in (updates or {}).items()
            ],
            "deleteIds": list(delete_ids),
        }
        payload = self._call("save_activities", body=body) or {}
        created = tuple(
            BulkItemResult(
                temp_id=str(item.get("tempId")),
                success=bool(item.get("success")),
                activity_id=item.get("activityId"),
                message=item.get("message"),
            )
            for item in payload.get("created") or []
        )
        return BulkResult(
            created=created,
            updated=int(payload.get("updated") or 0),
            deleted=int(payload.get("deleted") or 0),
        )

    def get_account_import_mapping(self, account_id: str) -> ImportMapping | None:
        payload = self._call(
            "get_account_import_mapping", params={"accountId": account_id}, allow_missing=True
        )
        if not payload:
            return None
        return ImportMapping.from_dict(payload)

    def save_account_import_mapping(self, mapping: ImportMapping) -> ImportMapping:
        payload = self._call("save_account_import_mapping", body={"mapping": mapping.to_dict()})
        return ImportMapping.from_dict(payload) if payload else mapping

    def existing_quote_keys(self, keys: set[tuple[str, date]]) -> set[tuple[str, date]]:
        if not keys:
            return set()
        body = {"keys": [{"symbol": symbol, "date": day.isoformat()} for symbol, day in sorted(keys)]}
        payload = self._call("existing_quote_keys", body=body) or []
        return {
            (str(item["symbol"]), date.fromisoformat(str(item["date"])))
            for item in payload
        }

    def save_quotes(self, quotes: Sequence[Mapping[str, Any]]) -> int:
        if not quotes:
            return 0
        payload = self._call(
            "save_quotes", body={"quotes": [_quote_to_wire(quote) for quote in quotes]}
        )
        return int((payload or {}).get("imported") or 0)
