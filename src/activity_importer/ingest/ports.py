"""Abstract ledger interface consumed by the import pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from activity_importer.ingest.models import ActivityCheck, BulkResult, ImportMapping
from activity_importer.ingest.payloads import ActivityPayload


class LedgerBackend(ABC):
    """Authoritative store the importer validates against and commits into.

    Implementations raise ``LedgerError`` on transport or storage failure.
    """

    @abstractmethod
    def check_activities_import(
        self, account_id: str, rows: Sequence[Mapping[str, Any]], dry_run: bool = True
    ) -> list[ActivityCheck]:
        """Validate rows (keyed by ``lineNumber``); no durable change when ``dry_run``."""
        pass

    @abstractmethod
    def check_existing_duplicates(self, idempotency_keys: set[str]) -> dict[str, str]:
        """Return idempotency key -> id of the activity already recorded with it."""
        pass

    @abstractmethod
    def save_activities(
        self,
        creates: Sequence[ActivityPayload] = (),
        updates: Mapping[str, ActivityPayload] | None = None,
        delete_ids: Sequence[str] = (),
    ) -> BulkResult:
        """Apply a bulk request. Create results carry the position of the payload as ``temp_id``."""
        pass

    def import_activities(self, activities: Sequence[ActivityPayload]) -> BulkResult:
        return self.save_activities(creates=activities)

    @abstractmethod
    def get_account_import_mapping(self, account_id: str) -> ImportMapping | None:
        pass

    @abstractmethod
    def save_account_import_mapping(self, mapping: ImportMapping) -> ImportMapping:
        pass

    # Quote import
    @abstractmethod
    def existing_quote_keys(self, keys: set[tuple[str, date]]) -> set[tuple[str, date]]:
        """Subset of (symbol, day) pairs that already have a stored quote."""
        pass

    @abstractmethod
    def save_quotes(self, quotes: Sequence[Mapping[str, Any]]) -> int:
        """Persist quote rows; returns the number written."""
        pass
