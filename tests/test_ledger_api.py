from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import pytest
import requests

from activity_importer.ingest.errors import LedgerError
from activity_importer.ingest.models import ActivityType, ImportMapping
from activity_importer.ingest.payloads import TradePayload
from activity_importer.providers.ledger_api import HttpLedgerClient


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")

    def json(self):
        return json.loads(self.text)


class FakeSession:
    def __init__(self, responses: list) -> None:
        self.headers: dict[str, str] = {}
        self.responses = list(responses)
        self.calls: list[dict] = []

    def request(self, method, url, json=None, params=None, timeout=None):
        self.calls.append({"method": method, "url": url, "json": json, "params": params, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(*responses) -> tuple[HttpLedgerClient, FakeSession]:
    session = FakeSession(list(responses))
    client = HttpLedgerClient("http://ledger.local/api/", timeout_seconds=3.0, session=session)
    return client, session


def test_check_activities_import_posts_rows_and_parses_verdicts() -> None:
    client, session = _client(
        FakeResponse(
            payload=[
                {"lineNumber": 1, "isValid": True, "symbolName": "Apple Inc.", "exchangeMic": "XNAS"},
                {"lineNumber": 2, "isValid": False, "errors": {"symbol": ["Unknown"]}},
            ]
        )
    )

    checks = client.check_activities_import("acc-1", [{"lineNumber": 1}, {"lineNumber": 2}])

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "http://ledger.local/api/activities/import/check"
    assert call["json"]["dryRun"] is True
    assert call["timeout"] == 3.0
    assert checks[0].symbol_name == "Apple Inc."
    assert checks[1].errors == {"symbol": ["Unknown"]}
    assert session.headers["User-Agent"].startswith("ActivityImporter/")


def test_save_activities_sends_positional_temp_ids() -> None:
    client, session = _client(
        FakeResponse(payload={"created": [{"tempId": "0", "success": True, "activityId": "a1"}]})
    )
    payload = TradePayload(
        account_id="acc-1",
        activity_type=ActivityType.BUY,
        activity_date=date(2025, 1, 2),
        currency="USD",
        symbol="AAPL",
        quantity=Decimal("1"),
        unit_price=Decimal("10.50"),
        amount=Decimal("10.5"),
    )

    bulk = client.save_activities(creates=[payload])

    sent = session.calls[0]["json"]["creates"][0]
    assert sent["tempId"] == "0"
    assert sent["unitPrice"] == "10.5"
    assert bulk.created[0].activity_id == "a1"


def test_missing_mapping_is_none_and_saved_mapping_roundtrips() -> None:
    mapping = ImportMapping(account_id="acc-1", field_mappings={"date": "Date"})
    client, session = _client(FakeResponse(status_code=404), FakeResponse(payload=mapping.to_dict()))

    assert client.get_account_import_mapping("acc-1") is None
    assert session.calls[0]["params"] == {"accountId": "acc-1"}
    assert client.save_account_import_mapping(mapping) == mapping
    assert session.calls[1]["json"] == {"mapping": mapping.to_dict()}


def test_transport_and_http_failures_raise_ledger_error() -> None:
    client, _ = _client(requests.ConnectionError("refused"), FakeResponse(status_code=500, payload={"error": "boom"}))

    with pytest.raises(LedgerError, match="refused"):
        client.check_existing_duplicates({"k1"})
    with pytest.raises(LedgerError, match="HTTP 500"):
        client.check_existing_duplicates({"k1"})


def test_quote_endpoints_serialize_dates_and_decimals() -> None:
    client, session = _client(
        FakeResponse(payload=[{"symbol": "AAPL", "date": "2025-01-02"}]),
        FakeResponse(payload={"imported": 1}),
    )

    existing = client.existing_quote_keys({("AAPL", date(2025, 1, 2))})
    written = client.save_quotes([{"symbol": "AAPL", "day": date(2025, 1, 3), "close": Decimal("1.50"), "open": None}])

    assert existing == {("AAPL", date(2025, 1, 2))}
    assert written == 1
    assert session.calls[1]["json"] == {"quotes": [{"symbol": "AAPL", "day": "2025-01-03", "close": "1.5"}]}


def test_client_requires_a_base_url(settings) -> None:
    with pytest.raises(ValueError):
        HttpLedgerClient(settings=settings)
