from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from activity_importer.config.paths import ensure_data_dirs
from activity_importer.config.settings import get_settings
from activity_importer.db.models import Base


def _enable_sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_connection, _connection_record):  # pragma: no cover - driver callback
        cursor = dbapi_connection.cursor()
        pragmas = (
            "PRAGMA foreign_keys=ON",
            "PRAGMA busy_timeout=5000",
            "PRAGMA journal_mode=WAL",
            "PRAGMA synchronous=NORMAL",
        )
        for statement in pragmas:
            try:
                cursor.execute(statement)
            except Exception:
                # Unsupported pragmas are skipped; the rest still apply.
                continue
        cursor.close()


def build_engine(database_url: str | None = None) -> Engine:
    url = database_url or get_settings().database_url

    if url in {"sqlite://", "sqlite:///:memory:"}:
        # One shared connection so worker threads see the same in-memory database.
        engine = create_engine(
            url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        if url.startswith("sqlite:///"):
            sqlite_path = Path(url.removeprefix("sqlite:///")).expanduser()
            sqlite_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, future=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_pragmas(engine)
    return engine


def migrate(database_url: str | None = None) -> Engine:
    if database_url is None:
        ensure_data_dirs()
    engine = build_engine(database_url=database_url)
    Base.metadata.create_all(bind=engine)
    return engine


if __name__ == "__main__":
    migrate()
