from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from activity_importer.config.paths import data_dir, default_db_path, ensure_data_dirs, imports_dir
from activity_importer.config.settings import get_settings
from activity_importer.ingest.errors import ImportPipelineError
from activity_importer.ingest.ports import LedgerBackend
from activity_importer.utils.money import plain_number, to_decimal


def _ledger(args: argparse.Namespace) -> LedgerBackend:
    settings = get_settings()
    if settings.ledger_api_url and not getattr(args, "local", False):
        from activity_importer.providers.ledger_api import HttpLedgerClient

        return HttpLedgerClient(settings=settings)
    return _local_ledger()


def _cmd_init_db(_: argparse.Namespace) -> int:
    from activity_importer.db.migrate import migrate

    migrate(get_settings().database_url)
    print("Initialized database schema.")
    return 0


def _cmd_paths(_: argparse.Namespace) -> int:
    ensure_data_dirs()
    print(f"DATA_DIR={data_dir()}")
    print(f"IMPORTS_DIR={imports_dir()}")
    print(f"DB_PATH={default_db_path()}")
    return 0


def _local_ledger():
    from activity_importer.db.ledger import SqlLedger
    from activity_importer.db.migrate import migrate

    return SqlLedger(migrate(get_settings().database_url))


def _cmd_create_account(args: argparse.Namespace) -> int:
    account_id = _local_ledger().create_account(args.name, currency=args.currency)
    print(account_id)
    return 0


def _cmd_add_asset(args: argparse.Namespace) -> int:
    _local_ledger().upsert_asset(args.symbol, name=args.name or None, exchange_mic=args.mic or None)
    print(f"Saved asset {args.symbol.upper()}.")
    return 0


def _cmd_list_activities(args: argparse.Namespace) -> int:
    rows = [
        {
            "id": activity.id,
            "accountId": activity.account_id,
            "date": activity.activity_date.isoformat(),
            "type": activity.activity_type.value,
            "symbol": activity.asset_id,
            "quantity": plain_number(activity.quantity),
            "unitPrice": plain_number(activity.unit_price),
            "amount": plain_number(activity.amount),
            "currency": activity.currency,
        }
        for activity in _local_ledger().list_activities(args.account or None)
    ]
    print(json.dumps(rows, indent=2))
    return 0


def _cmd_latest_quote(args: argparse.Namespace) -> int:
    close = _local_ledger().latest_quote(args.symbol)
    if close is None:
        print(f"No quote stored for {args.symbol.upper()}.", file=sys.stderr)
        return 1
    print(plain_number(to_decimal(close)))
    return 0


def _cmd_import_activities(args: argparse.Namespace) -> int:
    from activity_importer.ingest.pipeline import import_file

    parse_changes = {}
    if args.delimiter:
        parse_changes["delimiter"] = args.delimiter
    if args.date_format:
        parse_changes["date_format"] = args.date_format
    try:
        result, state = asyncio.run(
            import_file(
                _ledger(args),
                Path(args.file),
                args.account,
                parse_changes=parse_changes or None,
                save_mapping=not args.no_save_mapping,
            )
        )
    except ImportPipelineError as exc:
        print(f"Import failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result.as_dict(), indent=2))
    if state.step_error:
        print(state.step_error, file=sys.stderr)
    return 0 if result.errors == 0 else 2


def _cmd_import_quotes(args: argparse.Namespace) -> int:
    from activity_importer.ingest.quote_import import import_quotes

    try:
        result = import_quotes(Path(args.file), _ledger(args), source_name=args.source)
    except ImportPipelineError as exc:
        print(f"Quote import failed: {exc}", file=sys.stderr)
        return 1
    print(
        json.dumps(
            {
                "total": result.total,
                "imported": result.imported,
                "duplicates": result.duplicates,
                "errors": result.errors,
            },
            indent=2,
        )
    )
    return 0 if result.errors == 0 else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Activity importer developer CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sp_init_db = subparsers.add_parser("init-db", help="Create/update local database schema")
    sp_init_db.set_defaults(func=_cmd_init_db)

    sp_paths = subparsers.add_parser("paths", help="Print configured project paths")
    sp_paths.set_defaults(func=_cmd_paths)

    sp_account = subparsers.add_parser("create-account", help="Create an account in the local ledger")
    sp_account.add_argument("name")
    sp_account.add_argument("--currency", default="USD")
    sp_account.set_defaults(func=_cmd_create_account)

    sp_asset = subparsers.add_parser("add-asset", help="Register an asset name and exchange")
    sp_asset.add_argument("symbol")
    sp_asset.add_argument("--name", default="")
    sp_asset.add_argument("--mic", default="", help="Exchange MIC, e.g. XNAS")
    sp_asset.set_defaults(func=_cmd_add_asset)

    sp_list = subparsers.add_parser("list-activities", help="Print stored activities as JSON")
    sp_list.add_argument("--account", default="", help="Only this account id.")
    sp_list.set_defaults(func=_cmd_list_activities)

    sp_quote = subparsers.add_parser("latest-quote", help="Print the most recent stored close")
    sp_quote.add_argument("symbol")
    sp_quote.set_defaults(func=_cmd_latest_quote)

    sp_import = subparsers.add_parser("import-activities", help="Import an activity CSV file")
    sp_import.add_argument("file")
    sp_import.add_argument("--account", required=True, help="Target account id.")
    sp_import.add_argument("--delimiter", default="", help="Override delimiter detection.")
    sp_import.add_argument("--date-format", default="", help="e.g. DD/MM/YYYY")
    sp_import.add_argument(
        "--no-save-mapping",
        action="store_true",
        help="Do not store the mapping profile for the account.",
    )
    sp_import.add_argument("--local", action="store_true", help="Use the local database even if LEDGER_API_URL is set.")
    sp_import.set_defaults(func=_cmd_import_activities)

    sp_quotes = subparsers.add_parser("import-quotes", help="Import a quote history CSV file")
    sp_quotes.add_argument("file")
    sp_quotes.add_argument("--source", default="csv")
    sp_quotes.add_argument("--local", action="store_true", help="Use the local database even if LEDGER_API_URL is set.")
    sp_quotes.set_defaults(func=_cmd_import_quotes)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
