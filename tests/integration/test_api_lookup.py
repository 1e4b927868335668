import asyncio
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from mise_scanner.core.config import Settings
from mise_scanner.domain.models import BARCODE_KEY, DataSource
from mise_scanner.repositories.sqlite_catalog import SQLiteCatalogRepository

CODE = "7891234567890"


def write_dataset(settings: Settings) -> None:
    settings.dataset_csv_path.write_text(
        "cod de barra;produto;marca;categoria\n"
        f"{CODE};Arroz Tipo 1;Camil;Grãos\n"
        "7891000100103;Arroz Integral;Tio João;Grãos\n"
        "7896098900208;Sabão em Pó;Omo;Limpeza\n",
        encoding="utf-8",
    )


def test_local_hit(client: TestClient, test_settings: Settings) -> None:
    write_dataset(test_settings)

    response = client.get(f"/consulta/{CODE}")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["origem"] == "local"
    assert data["produto"]["cod de barra"] == CODE
    assert data["produto"]["produto"] == "Arroz Tipo 1"
    assert "fonte" not in data
    assert "mensagem" not in data


def test_local_hit_with_photo(client: TestClient, test_settings: Settings) -> None:
    write_dataset(test_settings)
    test_settings.photos_dir.mkdir(parents=True)
    (test_settings.photos_dir / f"{CODE}.jpg").write_bytes(b"jpeg")

    data = client.get(f"/consulta/{CODE}").json()

    assert data["produto"]["foto"] == {
        "source": "local",
        "url": f"/fotos/{CODE}.jpg",
        "filename": f"{CODE}.jpg",
    }
    photo = client.get(data["produto"]["foto"]["url"])
    assert photo.status_code == 200
    assert photo.content == b"jpeg"


def test_invalid_code(client: TestClient) -> None:
    response = client.get("/consulta/123")

    assert response.status_code == 200
    assert response.json() == {"ok": False, "mensagem": "Código inválido"}


def test_not_found(client: TestClient, stub_registry: dict[DataSource, Any]) -> None:
    response = client.get(f"/consulta/{CODE}")

    data = response.json()
    assert data["ok"] is False
    assert "Produto não encontrado" in data["mensagem"]
    assert all(adapter.calls == [CODE] for adapter in stub_registry.values())


def test_adapter_hit_then_cached_hit(
    client: TestClient, test_settings: Settings, stub_registry: dict[DataSource, Any]
) -> None:
    upc = stub_registry[DataSource.UPCITEMDB]
    upc.products[CODE] = "Leite Integral"

    first = client.get(f"/consulta/{CODE}").json()
    second = client.get(f"/consulta/{CODE}").json()

    assert first["ok"] is True
    assert first["origem"] == "upcitemdb"
    assert first["produto"]["nome"] == "Leite Integral"
    assert second["origem"] == "cache"
    assert second["fonte"] == "upcitemdb"
    assert upc.calls == [CODE]
    # Write-back in Cache-Datei und Sammeltabelle
    assert test_settings.cache_json_path.exists()
    assert test_settings.collected_xlsx_path.exists()


def test_search_by_name(client: TestClient, test_settings: Settings) -> None:
    write_dataset(test_settings)

    data = client.get("/api/buscar-por-nome/arroz").json()

    assert data["ok"] is True
    assert [p["codigo"] for p in data["produtos"]] == [CODE, "7891000100103"]
    assert data["produtos"][0] == {
        "codigo": CODE,
        "nome": "Arroz Tipo 1",
        "marca": "Camil",
        "categoria": "Grãos",
    }
    assert client.get("/api/buscar-por-nome/a").json() == {"ok": True, "produtos": []}


def test_stats(
    client: TestClient, test_settings: Settings, stub_registry: dict[DataSource, Any]
) -> None:
    write_dataset(test_settings)
    stub_registry[DataSource.COSMOS].products["7894900011517"] = "Refrigerante"
    client.get("/consulta/7894900011517")

    data = client.get("/api/stats").json()

    assert data == {"ok": True, "local": 3, "online": 1, "backend": "csv"}


def test_stats_without_dataset(client: TestClient) -> None:
    assert client.get("/api/stats").json() == {"ok": True, "local": 0, "online": 0, "backend": "none"}


def test_stats_with_oversized_dataset_row(client: TestClient, test_settings: Settings) -> None:
    test_settings.dataset_csv_path.write_text(
        f"cod de barra;produto\n7891000000001;{'x' * 200_000}\n{CODE};Arroz Tipo 1\n",
        encoding="utf-8",
    )

    response = client.get("/api/stats")

    assert response.status_code == 200
    assert response.json()["local"] == 1
    assert client.get("/api/buscar-por-nome/arroz").json()["produtos"][0]["codigo"] == CODE


def test_photo_path_traversal_rejected(client: TestClient, test_settings: Settings, tmp_path: Path) -> None:
    test_settings.photos_dir.mkdir(parents=True)
    (tmp_path / "secret.txt").write_text("x")

    assert client.get("/fotos/..%2F..%2Fsecret.txt").status_code == 404
    assert client.get("/fotos/missing.jpg").status_code == 404


def test_remote_photo_disabled(client: TestClient) -> None:
    assert client.get(f"/foto-r2/{CODE}.jpg").status_code == 404


def test_sqlite_catalog_takes_precedence(client: TestClient, test_settings: Settings) -> None:
    write_dataset(test_settings)

    async def seed() -> None:
        repo = SQLiteCatalogRepository.for_path(test_settings.sqlite_path)
        await repo.initialize()
        await repo.import_products([{BARCODE_KEY: CODE, "produto": "Do SQLite"}])
        await repo.dispose()

    asyncio.run(seed())

    data = client.get(f"/consulta/{CODE}").json()

    assert data["produto"]["produto"] == "Do SQLite"
    assert client.get("/api/stats").json() == {
        "ok": True,
        "local": 1,
        "online": 0,
        "backend": "sqlite",
    }
