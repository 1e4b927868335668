from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from mise_scanner.domain.barcodes import normalize_code
from mise_scanner.repositories.collected_catalog import PT_BR_TIMESTAMP
from mise_scanner.repositories.spreadsheet import cell_to_text, read_rows, workbook_lock, write_rows

logger = logging.getLogger(__name__)

CODE_COLUMN = "Código de Barras"
NAME_COLUMN = "Produto"
QUANTITY_COLUMN = "Quantidade"
WEIGHT_COLUMN = "Peso (kg)"
TIMESTAMP_COLUMN = "Data/Hora"

COLUMNS = [CODE_COLUMN, NAME_COLUMN, QUANTITY_COLUMN, WEIGHT_COLUMN, TIMESTAMP_COLUMN]
COLUMN_WIDTHS = {
    CODE_COLUMN: 18,
    NAME_COLUMN: 40,
    QUANTITY_COLUMN: 12,
    WEIGHT_COLUMN: 12,
    TIMESTAMP_COLUMN: 20,
}
SHEET_TITLE = "Inventário"


class InventoryUpsert(BaseModel):
    """Ergebnis eines Schreibvorgangs in die Inventur-Tabelle."""

    updated: bool
    previous: int
    added: int
    quantity: int
    rows: int


def _parse_number(value: Any) -> float | None:
    try:
        number = float(str(value).strip().replace(",", "."))
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_quantity(value: Any, default: int) -> int:
    """Lenient int parsing: '3', 3.0 and ' 3 ' are 3; anything else is `default`."""
    if value is None or isinstance(value, bool):
        return default
    number = _parse_number(value)
    return int(number) if number is not None else default


def parse_weight(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    return _parse_number(value)


class InventoryRepository:
    """
    Inventur-Tabelle ("Inventário.xlsx"), ein Eintrag pro Barcode.
    Wiederholte Erfassungen addieren die Menge auf.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    async def upsert(
        self,
        barcode: str,
        name: str,
        quantity: int,
        weight: float | None,
        registered_at: datetime,
    ) -> InventoryUpsert:
        async with workbook_lock(self.path):
            return await asyncio.to_thread(
                self._upsert, barcode, name, quantity, weight, registered_at
            )

    def _upsert(
        self,
        barcode: str,
        name: str,
        quantity: int,
        weight: float | None,
        registered_at: datetime,
    ) -> InventoryUpsert:
        rows = read_rows(self.path) if self.path.exists() else []
        timestamp = registered_at.strftime(PT_BR_TIMESTAMP)

        for row in rows:
            if normalize_code(cell_to_text(row.get(CODE_COLUMN))) != barcode:
                continue
            previous = parse_quantity(row.get(QUANTITY_COLUMN), default=0)
            total = previous + quantity
            row[QUANTITY_COLUMN] = total
            row[TIMESTAMP_COLUMN] = timestamp
            if weight is not None:
                row[WEIGHT_COLUMN] = weight
            write_rows(self.path, rows, COLUMNS, SHEET_TITLE, COLUMN_WIDTHS)
            logger.info("Inventory updated: %s %d + %d = %d", barcode, previous, quantity, total)
            return InventoryUpsert(
                updated=True, previous=previous, added=quantity, quantity=total, rows=len(rows)
            )

        rows.append(
            {
                CODE_COLUMN: barcode,
                NAME_COLUMN: name,
                QUANTITY_COLUMN: quantity,
                WEIGHT_COLUMN: weight if weight is not None else "",
                TIMESTAMP_COLUMN: timestamp,
            }
        )
        write_rows(self.path, rows, COLUMNS, SHEET_TITLE, COLUMN_WIDTHS)
        logger.info("Inventory row added: %s - %s (%d)", barcode, name, quantity)
        return InventoryUpsert(
            updated=False, previous=0, added=quantity, quantity=quantity, rows=len(rows)
        )
