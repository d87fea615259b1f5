from __future__ import annotations

import csv
import io
from collections import Counter
from pathlib import Path
from typing import BinaryIO

from activity_importer.ingest.errors import MalformedFileError
from activity_importer.ingest.models import ParseConfig, RawTable
from activity_importer.utils.logging import get_logger

logger = get_logger(__name__)

SNIFF_SAMPLE_SIZE = 4096
DELIMITER_CANDIDATES = ",;\t"


def decode_bytes(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def read_text(source: str | Path | BinaryIO | bytes) -> str:
    if isinstance(source, bytes):
        return decode_bytes(source)
    if isinstance(source, Path):
        return decode_bytes(source.read_bytes())
    if isinstance(source, str):
        return decode_bytes(Path(source).expanduser().read_bytes())
    return decode_bytes(source.read())


def detect_delimiter(text: str) -> str:
    lines = [line for line in text[:SNIFF_SAMPLE_SIZE].splitlines() if line.strip()]
    sample = "\n".join(lines)
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=DELIMITER_CANDIDATES)
    except csv.Error:
        # Preamble lines defeat the sniffer; fall back to the most frequent candidate.
        best = max(DELIMITER_CANDIDATES, key=sample.count)
        return best if sample.count(best) else ","
    if dialect.delimiter in DELIMITER_CANDIDATES:
        return dialect.delimiter
    return ","


def _is_empty(row: list[str]) -> bool:
    return all(not cell.strip() for cell in row)


def validate_headers(headers: list[str], *, has_header_row: bool = True) -> list[str]:
    errors: list[str] = []
    if not headers:
        errors.append("The file has no columns.")
    elif has_header_row and any(not header.strip() for header in headers):
        errors.append("One or more column names are empty or contain only whitespace.")
    if has_header_row:
        repeated = [header for header, count in Counter(headers).items() if count > 1 and header.strip()]
        if repeated:
            errors.append(f"Column names must be unique: {', '.join(repeated)} appears more than once.")
    return errors


def normalize_file(text: str, config: ParseConfig | None = None) -> RawTable:
    """Tokenize raw CSV/TSV text into a rectangular header + rows table.

    Quoted fields are honored. Rows shorter than the header are padded with
    empty strings, longer rows are truncated. Raises ``MalformedFileError`` when
    no data rows survive or the header row is unusable.
    """
    config = config or ParseConfig()
    delimiter = detect_delimiter(text) if config.delimiter == "auto" else config.delimiter

    rows = [list(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    rows = rows[config.skip_top_rows :]
    if config.skip_empty_rows:
        rows = [row for row in rows if not _is_empty(row)]

    if config.has_header_row:
        if config.header_row_index >= len(rows):
            logger.error("Header row %s not found in %s rows", config.header_row_index, len(rows))
            raise MalformedFileError("The file does not contain a header row.")
        headers = [cell.strip() for cell in rows[config.header_row_index]]
        data_rows = rows[config.header_row_index + 1 :]
    else:
        width = max((len(row) for row in rows), default=0)
        headers = [f"Column {idx}" for idx in range(1, width + 1)]
        data_rows = rows

    if config.skip_bottom_rows:
        data_rows = data_rows[: max(len(data_rows) - config.skip_bottom_rows, 0)]

    header_errors = validate_headers(headers, has_header_row=config.has_header_row)
    if header_errors:
        logger.error("Invalid header row: %s", header_errors)
        raise MalformedFileError(" ".join(header_errors))
    if not data_rows:
        logger.error("No data rows after applying parse configuration")
        raise MalformedFileError("The file appears to be empty or contains only a header row.")

    width = len(headers)
    normalized_rows = tuple(
        tuple((row + [""] * width)[:width]) for row in data_rows
    )
    logger.debug(
        "Parsed %s rows x %s columns (delimiter=%r)", len(normalized_rows), width, delimiter
    )
    return RawTable(headers=tuple(headers), rows=normalized_rows)


def header_key(header: str) -> str:
    """Matching form of a header: trimmed and lower-cased, display value untouched."""
    return header.strip().lower()
