# src/mise_scanner/repositories/dataset.py
from __future__ import annotations

import asyncio
import csv
import logging
import time
from collections.abc import Iterable
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from mise_scanner.core.metrics import DATASET_RELOADS
from mise_scanner.domain.barcodes import normalize_code
from mise_scanner.domain.models import BARCODE_ALIASES, BARCODE_KEY, ProductRecord, record_name
from mise_scanner.domain.ports import StorageError
from mise_scanner.repositories.spreadsheet import cell_to_text, read_rows
from mise_scanner.repositories.sqlite_catalog import SQLiteCatalogRepository

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Datei-Parser
# ---------------------------------------------------------------------------


def build_record(row: dict[str, str]) -> ProductRecord | None:
    """Normalizes the barcode column of a raw row. Rows without a code are dropped."""
    raw_code = next((row[alias] for alias in BARCODE_ALIASES if row.get(alias)), "")
    code = normalize_code(raw_code)
    if not code:
        return None
    record = dict(row)
    record[BARCODE_KEY] = code
    return record


def split_line(line: str, delimiter: str) -> list[str]:
    """Splits one line on the delimiter. Quotes are kept as literal characters."""
    return next(csv.reader([line], delimiter=delimiter, quoting=csv.QUOTE_NONE), [])


def read_delimited(path: Path) -> list[ProductRecord]:
    """
    Reads a ';' or ',' separated export. The delimiter is ';' if the header
    line contains one. Every line is one row; rows whose first column is blank
    or that cannot be split are skipped.
    """
    try:
        with path.open(encoding="utf-8-sig", newline="") as handle:
            lines = [line for line in handle.read().splitlines() if line.strip()]
    except (OSError, UnicodeDecodeError) as e:
        raise StorageError(str(path), str(e)) from e

    if not lines:
        return []

    delimiter = ";" if ";" in lines[0] else ","
    try:
        headers = [h.strip().lower() for h in split_line(lines[0], delimiter)]
    except csv.Error as e:
        raise StorageError(str(path), f"unreadable header: {e}") from e

    records: list[ProductRecord] = []
    for line_no, line in enumerate(lines[1:], start=2):
        try:
            columns = split_line(line, delimiter)
            if not columns or not columns[0].strip():
                continue
            row = {
                header: (columns[idx] if idx < len(columns) else "").strip()
                for idx, header in enumerate(headers)
            }
            record = build_record(row)
        except (csv.Error, IndexError, ValueError):
            logger.warning("Skipping malformed row %d in %s", line_no, path, exc_info=True)
            continue
        if record:
            records.append(record)
    return records


def read_spreadsheet(path: Path) -> list[ProductRecord]:
    """Reads the first sheet of an XLSX file, keyed by lower-cased headers."""
    records: list[ProductRecord] = []
    for raw in read_rows(path):
        row = {header.strip().lower(): cell_to_text(value) for header, value in raw.items()}
        record = build_record(row)
        if record:
            records.append(record)
    return records


# ---------------------------------------------------------------------------
# Local Dataset Reader
# ---------------------------------------------------------------------------


class LocalDatasetReader:
    """
    In-Memory-Index des lokalen Katalogs mit eigener TTL-Uhr.
    Backend-Priorität: SQLite > CSV > XLSX. Fehlende Dateien ergeben
    einen leeren Index, nie eine Exception.
    """

    def __init__(
        self,
        csv_path: Path,
        xlsx_path: Path,
        catalog: SQLiteCatalogRepository | None = None,
        ttl_seconds: int = 300,
    ) -> None:
        self._csv_path = csv_path
        self._xlsx_path = xlsx_path
        self._catalog = catalog
        self._ttl = ttl_seconds
        self._index: dict[str, ProductRecord] | None = None
        self._loaded_at = 0.0
        self.backend = "none"

    def invalidate(self) -> None:
        self._index = None

    async def load_index(self) -> dict[str, ProductRecord]:
        if self._index is not None and (time.time() - self._loaded_at) < self._ttl:
            return self._index

        records, backend = await self._read_records()
        index: dict[str, ProductRecord] = {}
        for record in records:
            index[record[BARCODE_KEY]] = record

        self._index = index
        self._loaded_at = time.time()
        self.backend = backend
        DATASET_RELOADS.labels(backend=backend).inc()
        logger.info("Local dataset loaded from %s: %d products indexed", backend, len(index))
        return index

    async def find(self, barcode: str) -> ProductRecord | None:
        index = await self.load_index()
        return index.get(barcode)

    async def all_records(self) -> Iterable[ProductRecord]:
        index = await self.load_index()
        return index.values()

    async def count(self) -> int:
        return len(await self.load_index())

    async def search_by_name(self, term: str, limit: int = 10) -> list[ProductRecord]:
        needle = term.strip().lower()
        results: list[ProductRecord] = []
        for record in await self.all_records():
            if needle in record_name(record).lower():
                results.append(record)
                if len(results) >= limit:
                    break
        return results

    async def _read_records(self) -> tuple[list[ProductRecord], str]:
        if self._catalog is not None:
            try:
                return await self._catalog.load_products(), "sqlite"
            except (SQLAlchemyError, OSError):
                logger.warning(
                    "SQLite catalog unreadable, falling back to file dataset", exc_info=True
                )

        for path, reader, backend in (
            (self._csv_path, read_delimited, "csv"),
            (self._xlsx_path, read_spreadsheet, "xlsx"),
        ):
            if not path.exists():
                continue
            try:
                return await asyncio.to_thread(reader, path), backend
            except StorageError:
                logger.exception("Could not read local dataset %s", path)
                return [], backend

        return [], "none"
