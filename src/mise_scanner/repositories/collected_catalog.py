from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

from mise_scanner.domain.barcodes import normalize_code
from mise_scanner.domain.models import ExternalProduct
from mise_scanner.repositories.spreadsheet import cell_to_text, read_rows, workbook_lock, write_rows

logger = logging.getLogger(__name__)

COLUMNS = ["Código de Barra", "Nome do Produto", "Fonte", "Data de Coleta"]
_CODE_COLUMNS = ("Código de Barra", "codigo", "Cod. de Barra")
SHEET_TITLE = "Produtos Coletados"

PT_BR_TIMESTAMP = "%d/%m/%Y %H:%M:%S"


class CollectedCatalog:
    """
    Tabelle der online gefundenen Produkte ("OK BASE DO APP COLETADO.xlsx").
    Wird komplett neu geschrieben; Schreibzugriffe sind pro Datei serialisiert.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    async def append_if_absent(self, product: ExternalProduct) -> bool:
        """Returns True if a row was written."""
        async with workbook_lock(self.path):
            return await asyncio.to_thread(self._append_if_absent, product)

    async def count(self) -> int:
        if not self.path.exists():
            return 0
        return len(await asyncio.to_thread(read_rows, self.path))

    def _append_if_absent(self, product: ExternalProduct) -> bool:
        rows = read_rows(self.path) if self.path.exists() else []

        for row in rows:
            raw = next((row[c] for c in _CODE_COLUMNS if row.get(c)), "")
            if normalize_code(cell_to_text(raw)) == product.barcode:
                return False

        rows.append(
            {
                "Código de Barra": product.barcode,
                "Nome do Produto": product.name,
                "Fonte": product.source.value,
                "Data de Coleta": datetime.now().strftime(PT_BR_TIMESTAMP),
            }
        )
        write_rows(self.path, rows, COLUMNS, SHEET_TITLE)
        logger.info("Product stored in %s: %s - %s", self.path.name, product.barcode, product.name)
        return True
