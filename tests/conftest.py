from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy.engine import Engine

from activity_importer.config.settings import Settings
from activity_importer.db.ledger import SqlLedger
from activity_importer.db.migrate import migrate
from activity_importer.ingest.errors import LedgerError
from activity_importer.ingest.models import ActivityCheck, BulkItemResult, BulkResult, ImportMapping
from activity_importer.ingest.ports import LedgerBackend


@dataclass(frozen=True)
class LedgerFixture:
    ledger: SqlLedger
    account_id: str


@pytest.fixture
def engine() -> Engine:
    engine = migrate("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def ledger_fixture(engine: Engine) -> LedgerFixture:
    ledger = SqlLedger(engine)
    account_id = ledger.create_account("Brokerage", currency="USD")
    return LedgerFixture(ledger=ledger, account_id=account_id)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        database_url="sqlite:///:memory:",
        default_currency="USD",
        enable_backend_validation=True,
        enable_duplicate_check=True,
        ledger_api_url=None,
        ledger_api_timeout=5.0,
    )


@pytest.fixture
def broker_csv_text() -> str:
    return "\n".join(
        [
            "Date,Action,Symbol,Quantity,Price,Amount,Currency,Description",
            "06/27/2025,SELL,AAPL,25,$48.945,1223.625,USD,Sold shares",
            "2025-01-05,Deposit,,,,1000,USD,Wire in",
            "2025-02-10,Dividend,MSFT,,,12.50,USD,Quarterly dividend",
            "2025-03-01,Buy,VTI,10,200,,USD,",
        ]
    )


class StubLedger(LedgerBackend):
    """In-memory ledger with scripted answers and optional failures."""

    def __init__(self) -> None:
        self.duplicates: dict[str, str] = {}
        self.checks: list[ActivityCheck] | None = None
        self.failing: set[str] = set()
        self.rejected_positions: set[int] = set()
        self.saved: list = []
        self.mappings: dict[str, ImportMapping] = {}
        self.check_requests: list[list[dict]] = []

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failing:
            raise LedgerError(f"{operation} unavailable")

    def check_activities_import(self, account_id, rows, dry_run=True):
        self._maybe_fail("check")
        self.check_requests.append([dict(row) for row in rows])
        if self.checks is not None:
            return list(self.checks)
        return [ActivityCheck(line_number=row["lineNumber"], is_valid=True) for row in rows]

    def check_existing_duplicates(self, idempotency_keys):
        self._maybe_fail("duplicates")
        return {key: value for key, value in self.duplicates.items() if key in idempotency_keys}

    def save_activities(self, creates=(), updates=None, delete_ids=()):
        self._maybe_fail("save")
        results = []
        for position, payload in enumerate(creates):
            if position in self.rejected_positions:
                results.append(BulkItemResult(temp_id=str(position), success=False, message="Rejected"))
                continue
            self.saved.append(payload)
            results.append(
                BulkItemResult(temp_id=str(position), success=True, activity_id=f"act-{len(self.saved)}")
            )
        return BulkResult(created=tuple(results))

    def get_account_import_mapping(self, account_id):
        self._maybe_fail("mapping")
        return self.mappings.get(account_id)

    def save_account_import_mapping(self, mapping):
        self._maybe_fail("mapping")
        self.mappings[mapping.account_id] = mapping
        return mapping

    def existing_quote_keys(self, keys):
        return set()

    def save_quotes(self, quotes):
        return len(quotes)


@pytest.fixture
def stub_ledger() -> StubLedger:
    return StubLedger()
