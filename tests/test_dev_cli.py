from __future__ import annotations

import json

import pytest

import dev_cli


@pytest.fixture
def local_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ACTIVITY_IMPORTER_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{(tmp_path / 'data' / 'ledger.db').as_posix()}")
    monkeypatch.delenv("LEDGER_API_URL", raising=False)
    return tmp_path


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        dev_cli.build_parser().parse_args([])


def test_paths_prints_data_locations(local_env, capsys) -> None:
    assert dev_cli.main(["paths"]) == 0

    out = capsys.readouterr().out
    assert f"DATA_DIR={local_env / 'data'}" in out
    assert (local_env / "data" / "imports").is_dir()


def test_import_activities_end_to_end(local_env, capsys, broker_csv_text) -> None:
    assert dev_cli.main(["init-db"]) == 0
    assert dev_cli.main(["create-account", "Brokerage", "--currency", "usd"]) == 0
    account_id = capsys.readouterr().out.strip().splitlines()[-1]

    csv_path = local_env / "activities.csv"
    csv_path.write_text(broker_csv_text, encoding="utf-8")

    assert dev_cli.main(["import-activities", str(csv_path), "--account", account_id]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["inserted"] == 4
    assert summary["failures"] == []

    assert dev_cli.main(["import-activities", str(csv_path), "--account", account_id]) == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["inserted"] == 0
    assert summary["skipped"] == 4


def test_import_quotes_command(local_env, capsys) -> None:
    csv_path = local_env / "quotes.csv"
    csv_path.write_text("Symbol,Date,Close\nAAPL,2025-01-02,190.5\n", encoding="utf-8")

    assert dev_cli.main(["import-quotes", str(csv_path)]) == 0
    assert json.loads(capsys.readouterr().out)["imported"] == 1


def test_asset_activity_and_quote_inspection_commands(local_env, capsys) -> None:
    assert dev_cli.main(["create-account", "Brokerage"]) == 0
    account_id = capsys.readouterr().out.strip()
    assert dev_cli.main(["add-asset", "aapl", "--name", "Apple Inc.", "--mic", "XNAS"]) == 0
    assert "Saved asset AAPL." in capsys.readouterr().out

    csv_path = local_env / "activities.csv"
    csv_path.write_text("Date,Type,Symbol,Quantity,Price,Amount\n2025-01-02,BUY,AAPL,2,10.50,\n", encoding="utf-8")
    assert dev_cli.main(["import-activities", str(csv_path), "--account", account_id]) == 0
    capsys.readouterr()

    assert dev_cli.main(["list-activities", "--account", account_id]) == 0
    (row,) = json.loads(capsys.readouterr().out)
    assert row["symbol"] == "AAPL"
    assert row["type"] == "BUY"
    assert row["amount"] == "21"

    assert dev_cli.main(["latest-quote", "AAPL"]) == 1
    quotes_path = local_env / "quotes.csv"
    quotes_path.write_text("Symbol,Date,Close\nAAPL,2025-01-02,190.50\n", encoding="utf-8")
    assert dev_cli.main(["import-quotes", str(quotes_path)]) == 0
    capsys.readouterr()
    assert dev_cli.main(["latest-quote", "aapl"]) == 0
    assert capsys.readouterr().out.strip() == "190.5"
