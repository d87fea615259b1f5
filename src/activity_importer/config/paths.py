"""Path helpers for local-first storage."""

from __future__ import annotations

import os
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[3]
DEFAULT_DATA_DIR = ROOT_DIR / "data"


def data_dir() -> Path:
    override = os.getenv("ACTIVITY_IMPORTER_DATA_DIR")
    return Path(override).expanduser() if override else DEFAULT_DATA_DIR


def imports_dir() -> Path:
    return data_dir() / "imports"


def ensure_data_dirs() -> Path:
    directory = data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    imports_dir().mkdir(parents=True, exist_ok=True)
    return directory


def default_db_path() -> Path:
    return data_dir() / "activity_importer.db"
