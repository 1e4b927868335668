from __future__ import annotations

import asyncio
import os
import tempfile
import weakref
import zipfile
from pathlib import Path
from typing import Any

import openpyxl
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from mise_scanner.domain.ports import StorageError

# Ein Lock pro Arbeitsmappe und Event Loop
_workbook_locks: weakref.WeakKeyDictionary[
    asyncio.AbstractEventLoop, dict[Path, asyncio.Lock]
] = weakref.WeakKeyDictionary()


def workbook_lock(path: Path) -> asyncio.Lock:
    """Serializes read-modify-write cycles on one workbook within the running loop."""
    locks = _workbook_locks.setdefault(asyncio.get_running_loop(), {})
    return locks.setdefault(path.resolve(), asyncio.Lock())


def cell_to_text(value: Any) -> str:
    """Stringifies a spreadsheet cell; integral floats lose their '.0'."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_rows(path: Path) -> list[dict[str, Any]]:
    """First sheet as a list of dicts keyed by the (unmodified) header row."""
    try:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (OSError, InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        raise StorageError(str(path), str(e)) from e

    try:
        rows = workbook.worksheets[0].iter_rows(values_only=True)
        headers = next(rows, None)
        if headers is None:
            return []
        records = []
        for values in rows:
            if all(value is None for value in values):
                continue
            records.append(
                {
                    str(header): value
                    for header, value in zip(headers, values)
                    if header is not None
                }
            )
        return records
    finally:
        workbook.close()


def write_rows(
    path: Path,
    rows: list[dict[str, Any]],
    columns: list[str],
    sheet_title: str,
    widths: dict[str, int] | None = None,
) -> None:
    """
    Rewrites the whole workbook with a single sheet. The workbook is saved to
    a temporary file next to the target and then moved over it, so readers
    never see a half-written file.
    """
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = sheet_title

    extra = [key for row in rows for key in row if key not in columns]
    header = columns + list(dict.fromkeys(extra))
    sheet.append(header)
    for row in rows:
        sheet.append([row.get(column, "") for column in header])

    for idx, column in enumerate(header, start=1):
        if widths and column in widths:
            sheet.column_dimensions[get_column_letter(idx)].width = widths[column]

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".xlsx")
        os.close(fd)
    except OSError as e:
        raise StorageError(str(path), str(e)) from e

    try:
        workbook.save(tmp_name)
        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise StorageError(str(path), str(e)) from e
