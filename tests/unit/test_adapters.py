# tests/unit/test_adapters.py
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from mise_scanner.adapters.cosmos import (
    CosmosAdapter,
    _from_first_heading,
    _from_og_title,
    extract_product_name,
)
from mise_scanner.adapters.open_facts import open_beauty_facts, open_food_facts
from mise_scanner.adapters.upcitemdb import UpcItemDbAdapter
from mise_scanner.domain.models import DataSource
from mise_scanner.domain.ports import ExternalApiError, ProductNotFoundError

_OFF_RESPONSE = {
    "status": 1,
    "product": {
        "code": "7891000100103",
        "product_name": "Leite Condensado",
        "product_name_pt": "Leite Condensado Moça | Nestlé",
        "brands": "Nestlé",
        "categories": "Laticínios",
    },
}

_COSMOS_HTML = """
<html>
  <head><meta property="og:title" content="Arroz Tipo 1 Camil - Cosmos"></head>
  <body>
    <h1>Cosmos</h1>
    <span id="product_description">Arroz Branco Tipo 1 Camil 5kg</span>
  </body>
</html>
"""


def make_response(status_code: int = 200, json_data: object = None, text: str = "") -> MagicMock:
    response = MagicMock(spec=httpx.Response)
    response.status_code = status_code
    response.text = text
    response.json.return_value = json_data
    if status_code >= 400:
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"HTTP {status_code}", request=MagicMock(), response=response
        )
    else:
        response.raise_for_status = MagicMock()
    return response


def make_client(*responses: MagicMock) -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get.side_effect = list(responses)
    return client


# ---------------------------------------------------------------------------
# Open Facts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio  # type: ignore[misc]
async def test_off_adapter_prefers_portuguese_name_and_cleans_it() -> None:
    client = make_client(make_response(json_data=_OFF_RESPONSE))
    adapter = open_food_facts(client)

    product = await adapter.fetch_by_barcode("7891000100103")

    assert product.source == DataSource.OPEN_FOOD_FACTS
    assert product.name == "Leite Condensado Moça"
    assert product.brand == "Nestlé"
    assert product.category == "Laticínios"
    url = client.get.call_args.args[0]
    assert url == "https://world.openfoodfacts.org/api/v2/product/7891000100103.json"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_open_beauty_facts_uses_own_host() -> None:
    client = make_client(make_response(json_data=_OFF_RESPONSE))
    adapter = open_beauty_facts(client)

    product = await adapter.fetch_by_barcode("7891000100103")

    assert product.source == DataSource.OPEN_BEAUTY_FACTS
    assert client.get.call_args.args[0].startswith("https://world.openbeautyfacts.org/")


@pytest.mark.asyncio  # type: ignore[misc]
@pytest.mark.parametrize(
    "response",
    [
        make_response(json_data={"status": 0, "product": None}),
        make_response(json_data={"status": 1, "product": {"product_name": "  "}}),
        make_response(status_code=404),
    ],
)
async def test_off_adapter_raises_not_found(response: MagicMock) -> None:
    adapter = open_food_facts(make_client(response))

    with pytest.raises(ProductNotFoundError):
        await adapter.fetch_by_barcode("0000000000000")


@pytest.mark.asyncio  # type: ignore[misc]
async def test_off_adapter_server_error() -> None:
    adapter = open_food_facts(make_client(make_response(status_code=503)))

    with pytest.raises(ExternalApiError):
        await adapter.fetch_by_barcode("7891000100103")


@pytest.mark.asyncio  # type: ignore[misc]
async def test_off_adapter_connection_error() -> None:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get.side_effect = httpx.ConnectError("boom")

    with pytest.raises(ExternalApiError, match="Connection error"):
        await open_food_facts(client).fetch_by_barcode("7891000100103")


@pytest.mark.asyncio  # type: ignore[misc]
async def test_off_adapter_invalid_json() -> None:
    response = make_response()
    response.json.side_effect = ValueError("Expecting value")

    with pytest.raises(ExternalApiError, match="Invalid JSON"):
        await open_food_facts(make_client(response)).fetch_by_barcode("7891000100103")


# ---------------------------------------------------------------------------
# UPCItemDB
# ---------------------------------------------------------------------------


@pytest.mark.asyncio  # type: ignore[misc]
async def test_upcitemdb_adapter_found() -> None:
    payload = {
        "code": "OK",
        "items": [{"title": "Coca-Cola 2L - Pet", "brand": "Coca-Cola", "category": "Drinks"}],
    }
    client = make_client(make_response(json_data=payload))

    product = await UpcItemDbAdapter(client).fetch_by_barcode("7894900011517")

    assert product.name == "Coca-Cola 2L"
    assert product.brand == "Coca-Cola"
    assert product.source == DataSource.UPCITEMDB
    assert client.get.call_args.kwargs["params"] == {"upc": "7894900011517"}


@pytest.mark.asyncio  # type: ignore[misc]
async def test_upcitemdb_falls_back_to_description() -> None:
    payload = {"code": "OK", "items": [{"title": "", "description": "Guaraná Antarctica"}]}

    product = await UpcItemDbAdapter(make_client(make_response(json_data=payload))).fetch_by_barcode(
        "7891991000833"
    )

    assert product.name == "Guaraná Antarctica"


@pytest.mark.asyncio  # type: ignore[misc]
@pytest.mark.parametrize(
    "response",
    [
        make_response(json_data={"code": "OK", "items": []}),
        make_response(json_data={"code": "INVALID_UPC", "items": []}),
        make_response(status_code=400),
    ],
)
async def test_upcitemdb_not_found(response: MagicMock) -> None:
    with pytest.raises(ProductNotFoundError):
        await UpcItemDbAdapter(make_client(response)).fetch_by_barcode("0000000000000")


@pytest.mark.asyncio  # type: ignore[misc]
async def test_upcitemdb_rate_limit_is_api_error() -> None:
    with pytest.raises(ExternalApiError):
        await UpcItemDbAdapter(make_client(make_response(status_code=429))).fetch_by_barcode(
            "7894900011517"
        )


# ---------------------------------------------------------------------------
# Cosmos
# ---------------------------------------------------------------------------


def test_extract_prefers_product_description() -> None:
    assert extract_product_name(_COSMOS_HTML) == "Arroz Branco Tipo 1 Camil 5kg"


def test_extract_falls_back_to_og_title() -> None:
    html = '<html><head><meta property="og:title" content="Feijão Preto - Cosmos"></head></html>'
    assert extract_product_name(html) == "Feijão Preto"


def test_extract_ignores_dash_placeholder() -> None:
    html = '<span id="product_description">-</span><h1>Macarrão Espaguete</h1>'
    assert extract_product_name(html) == "Macarrão Espaguete"


def test_extract_with_custom_strategies() -> None:
    assert extract_product_name(_COSMOS_HTML, (_from_first_heading,)) == "Cosmos"
    assert extract_product_name("<p>nada</p>", (_from_og_title,)) is None


@pytest.mark.asyncio  # type: ignore[misc]
async def test_cosmos_adapter_tries_second_url() -> None:
    client = make_client(make_response(status_code=403), make_response(text=_COSMOS_HTML))

    product = await CosmosAdapter(client).fetch_by_barcode("7896006711117")

    assert product.name == "Arroz Branco Tipo 1 Camil 5kg"
    assert product.source == DataSource.COSMOS
    assert client.get.call_count == 2
    assert client.get.call_args_list[1].args[0] == "https://cosmos.bluesoft.com.br/produtos/7896006711117"


@pytest.mark.asyncio  # type: ignore[misc]
async def test_cosmos_adapter_not_found() -> None:
    client = make_client(make_response(status_code=404), make_response(text="<html></html>"))

    with pytest.raises(ProductNotFoundError):
        await CosmosAdapter(client).fetch_by_barcode("0000000000000")


@pytest.mark.asyncio  # type: ignore[misc]
async def test_cosmos_adapter_network_failure_is_api_error() -> None:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.get.side_effect = [httpx.ConnectTimeout("slow"), make_response(status_code=502)]

    with pytest.raises(ExternalApiError):
        await CosmosAdapter(client).fetch_by_barcode("7896006711117")
