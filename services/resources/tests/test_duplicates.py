import httpx
import pytest

from app.catalog import CatalogClient
from app.duplicates import DuplicateTitleGuard
from conftest import CATALOG_URL, TOKEN


@pytest.mark.asyncio
async def test_case_insensitive_exact_match_is_a_duplicate(backend):
    backend.add_resource("Intro to Networks")
    guard = DuplicateTitleGuard(CatalogClient(backend.client, CATALOG_URL, TOKEN))

    assert await guard.check_duplicate("intro TO networks") is True
    assert await guard.check_duplicate("  Intro to Networks  ") is True


@pytest.mark.asyncio
async def test_partial_match_is_not_a_duplicate(backend):
    backend.add_resource("Intro to Networks II")
    guard = DuplicateTitleGuard(CatalogClient(backend.client, CATALOG_URL, TOKEN))

    assert await guard.check_duplicate("Intro to Networks") is False


@pytest.mark.asyncio
async def test_lookup_uses_a_small_first_page(backend):
    guard = DuplicateTitleGuard(CatalogClient(backend.client, CATALOG_URL, TOKEN), page_size=10)
    await guard.check_duplicate(" Lab Notes ")

    (request,) = backend.requests_to("GET", "/resources")
    assert request.url.params["search"] == "Lab Notes"
    assert request.url.params["page"] == "0"
    assert request.url.params["limit"] == "10"


@pytest.mark.asyncio
async def test_search_failure_fails_open(backend, caplog):
    backend.add_resource("Lab Notes")
    backend.fail_search = True
    guard = DuplicateTitleGuard(CatalogClient(backend.client, CATALOG_URL, TOKEN))

    with caplog.at_level("WARNING", logger="duplicates"):
        assert await guard.check_duplicate("Lab Notes") is False
    assert "allowing upload" in caplog.text


@pytest.mark.asyncio
async def test_unreachable_catalog_fails_open():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    guard = DuplicateTitleGuard(CatalogClient(client, CATALOG_URL, TOKEN))
    assert await guard.check_duplicate("Lab Notes") is False


@pytest.mark.parametrize("body", [
    {"status": "success", "data": ["x"]},
    {"status": "success", "data": {"resources": "x"}},
])
@pytest.mark.asyncio
async def test_malformed_listing_fails_open(body, caplog):
    def handler(request):
        return httpx.Response(200, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    guard = DuplicateTitleGuard(CatalogClient(client, CATALOG_URL, TOKEN))

    with caplog.at_level("WARNING", logger="duplicates"):
        assert await guard.check_duplicate("Lab Notes") is False
    assert "allowing upload" in caplog.text


class _RaisingCatalog:
    async def list(self, *args, **kwargs):
        raise AttributeError("'list' object has no attribute 'get'")


@pytest.mark.asyncio
async def test_any_listing_failure_fails_open(caplog):
    guard = DuplicateTitleGuard(_RaisingCatalog())

    with caplog.at_level("WARNING", logger="duplicates"):
        assert await guard.check_duplicate("Lab Notes") is False
    assert "AttributeError" in caplog.text
