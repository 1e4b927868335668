import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import openpyxl
import pytest
from sqlalchemy.exc import OperationalError

from mise_scanner.domain.models import BARCODE_KEY
from mise_scanner.repositories.dataset import LocalDatasetReader, read_delimited, read_spreadsheet


def write_xlsx(path: Path, rows: list[list[object]]) -> None:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    workbook.save(path)


def test_read_delimited_semicolon(tmp_path: Path) -> None:
    path = tmp_path / "base.csv"
    path.write_text(
        "Cod de Barra;Produto;Marca\n"
        "7891234567890;Arroz Tipo 1;Camil\n"
        "\n"
        ";Sem codigo;X\n"
        "7.8913E+12;Feijão;Kicaldo\n",
        encoding="utf-8",
    )

    records = read_delimited(path)

    assert [r[BARCODE_KEY] for r in records] == ["7891234567890", "7891300000000"]
    assert records[0]["produto"] == "Arroz Tipo 1"
    assert records[0]["marca"] == "Camil"


def test_read_delimited_comma_and_bom(tmp_path: Path) -> None:
    path = tmp_path / "base.csv"
    path.write_text("\ufeffGTIN,Produto\n 7891000100103 ,Leite Condensado\n", encoding="utf-8")

    records = read_delimited(path)

    assert len(records) == 1
    assert records[0][BARCODE_KEY] == "7891000100103"
    assert records[0]["produto"] == "Leite Condensado"


def test_read_delimited_alias_priority(tmp_path: Path) -> None:
    path = tmp_path / "base.csv"
    path.write_text("produto;cod. de barra;gtin\nSabão;;7896098900208\n", encoding="utf-8")

    # Erste Spalte ist nicht leer, leerer Alias wird übersprungen
    records = read_delimited(path)

    assert records[0][BARCODE_KEY] == "7896098900208"


def test_read_delimited_short_row_is_padded(tmp_path: Path) -> None:
    path = tmp_path / "base.csv"
    path.write_text("cod de barra;produto;marca\n7891234567890;Arroz\n", encoding="utf-8")

    records = read_delimited(path)

    assert records[0]["marca"] == ""


def test_read_delimited_keeps_quotes_literal(tmp_path: Path) -> None:
    path = tmp_path / "base.csv"
    path.write_text(
        "cod de barra;produto\n"
        '7891000000001;"Tubo 1/2\n'
        "7891000000002;Arroz\n"
        "7891000000003;Feijao\n",
        encoding="utf-8",
    )

    records = read_delimited(path)

    assert [r[BARCODE_KEY] for r in records] == ["7891000000001", "7891000000002", "7891000000003"]
    assert records[0]["produto"] == '"Tubo 1/2'
    assert records[2]["produto"] == "Feijao"


def test_read_delimited_skips_oversized_row(tmp_path: Path) -> None:
    path = tmp_path / "base.csv"
    path.write_text(
        "cod de barra;produto\n"
        f"7891000000001;{'x' * 200_000}\n"
        "7891000000002;Arroz\n",
        encoding="utf-8",
    )

    records = read_delimited(path)

    assert [r[BARCODE_KEY] for r in records] == ["7891000000002"]


def test_read_spreadsheet_first_sheet(tmp_path: Path) -> None:
    path = tmp_path / "base.xlsx"
    write_xlsx(
        path,
        [
            ["Cod. de Barra", "Produto", "Quantidade"],
            [7891234567890, "Arroz Tipo 1", 5.0],
            [None, None, None],
            [None, "Sem código", 1],
        ],
    )

    records = read_spreadsheet(path)

    assert len(records) == 1
    assert records[0][BARCODE_KEY] == "7891234567890"
    assert records[0]["quantidade"] == "5"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_missing_files_give_empty_index(tmp_path: Path) -> None:
    reader = LocalDatasetReader(tmp_path / "missing.csv", tmp_path / "missing.xlsx")

    assert await reader.load_index() == {}
    assert reader.backend == "none"
    assert await reader.count() == 0


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_prefers_csv_over_xlsx(tmp_path: Path) -> None:
    csv_path = tmp_path / "base.csv"
    csv_path.write_text("cod de barra;produto\n7891234567890;Do CSV\n", encoding="utf-8")
    xlsx_path = tmp_path / "base.xlsx"
    write_xlsx(xlsx_path, [["cod de barra", "produto"], ["7891234567890", "Do XLSX"]])

    reader = LocalDatasetReader(csv_path, xlsx_path)
    record = await reader.find("7891234567890")

    assert record is not None
    assert record["produto"] == "Do CSV"
    assert reader.backend == "csv"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_falls_back_to_xlsx(tmp_path: Path) -> None:
    xlsx_path = tmp_path / "base.xlsx"
    write_xlsx(xlsx_path, [["cod de barra", "produto"], ["7891234567890", "Do XLSX"]])

    reader = LocalDatasetReader(tmp_path / "missing.csv", xlsx_path)

    record = await reader.find("7891234567890")
    assert record is not None
    assert record["produto"] == "Do XLSX"
    assert reader.backend == "xlsx"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_corrupt_spreadsheet_gives_empty_index(tmp_path: Path) -> None:
    xlsx_path = tmp_path / "base.xlsx"
    xlsx_path.write_bytes(b"not a zip file")

    reader = LocalDatasetReader(tmp_path / "missing.csv", xlsx_path)

    assert await reader.load_index() == {}


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_uses_sqlite_first() -> None:
    catalog = AsyncMock()
    catalog.load_products.return_value = [{BARCODE_KEY: "7891234567890", "produto": "Do SQLite"}]

    reader = LocalDatasetReader(Path("missing.csv"), Path("missing.xlsx"), catalog=catalog)

    record = await reader.find("7891234567890")
    assert record is not None
    assert record["produto"] == "Do SQLite"
    assert reader.backend == "sqlite"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_sqlite_failure_falls_back_to_csv(tmp_path: Path) -> None:
    csv_path = tmp_path / "base.csv"
    csv_path.write_text("cod de barra;produto\n7891234567890;Do CSV\n", encoding="utf-8")
    catalog = AsyncMock()
    catalog.load_products.side_effect = OperationalError("SELECT", {}, Exception("locked"))

    reader = LocalDatasetReader(csv_path, tmp_path / "missing.xlsx", catalog=catalog)

    record = await reader.find("7891234567890")
    assert record is not None
    assert reader.backend == "csv"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_rebuilds_index_after_ttl(tmp_path: Path) -> None:
    csv_path = tmp_path / "base.csv"
    csv_path.write_text("cod de barra;produto\n7891234567890;Antigo\n", encoding="utf-8")
    reader = LocalDatasetReader(csv_path, tmp_path / "missing.xlsx", ttl_seconds=300)

    now = time.time()
    with patch("mise_scanner.repositories.dataset.time.time") as mock_time:
        mock_time.return_value = now
        assert (await reader.find("7891234567890"))["produto"] == "Antigo"

        csv_path.write_text("cod de barra;produto\n7891234567890;Novo\n", encoding="utf-8")

        # Noch gültig
        mock_time.return_value = now + 299
        assert (await reader.find("7891234567890"))["produto"] == "Antigo"

        # Abgelaufen
        mock_time.return_value = now + 301
        assert (await reader.find("7891234567890"))["produto"] == "Novo"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_reader_invalidate_forces_reload(tmp_path: Path) -> None:
    csv_path = tmp_path / "base.csv"
    csv_path.write_text("cod de barra;produto\n7891234567890;Antigo\n", encoding="utf-8")
    reader = LocalDatasetReader(csv_path, tmp_path / "missing.xlsx")
    await reader.load_index()

    csv_path.write_text("cod de barra;produto\n7891234567890;Novo\n", encoding="utf-8")
    reader.invalidate()

    assert (await reader.find("7891234567890"))["produto"] == "Novo"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_search_by_name(tmp_path: Path) -> None:
    csv_path = tmp_path / "base.csv"
    lines = ["cod de barra;produto"] + [f"78900000000{i:02d};Arroz {i}" for i in range(15)]
    lines.append("7891111111111;Feijão Preto")
    csv_path.write_text("\n".join(lines), encoding="utf-8")
    reader = LocalDatasetReader(csv_path, tmp_path / "missing.xlsx")

    assert len(await reader.search_by_name("ARROZ")) == 10
    results = await reader.search_by_name("feijão")
    assert [r[BARCODE_KEY] for r in results] == ["7891111111111"]
