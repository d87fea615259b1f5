from __future__ import annotations

import os
from dataclasses import dataclass

from activity_importer.config.paths import default_db_path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    default_currency: str
    enable_backend_validation: bool
    enable_duplicate_check: bool
    ledger_api_url: str | None
    ledger_api_timeout: float


def get_settings() -> Settings:
    db_default = f"sqlite:///{default_db_path().as_posix()}"
    api_url = str(os.getenv("LEDGER_API_URL", "") or "").strip()
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL", db_default),
        default_currency=(os.getenv("IMPORT_DEFAULT_CURRENCY", "USD") or "USD").strip().upper(),
        enable_backend_validation=_env_bool("IMPORT_BACKEND_VALIDATION", True),
        enable_duplicate_check=_env_bool("IMPORT_DUPLICATE_CHECK", True),
        ledger_api_url=api_url or None,
        ledger_api_timeout=_env_float("LEDGER_API_TIMEOUT", 30.0),
    )
