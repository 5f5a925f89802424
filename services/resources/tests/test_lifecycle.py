import pytest

from app.catalog import CatalogClient
from app.errors import LifecycleError
from app.lifecycle import ResourceLifecycle
from conftest import CATALOG_URL, TOKEN


def _lifecycle(backend):
    return ResourceLifecycle(CatalogClient(backend.client, CATALOG_URL, TOKEN))


@pytest.mark.asyncio
async def test_raw_toggle_flips_both_ways(backend):
    record = backend.add_resource("Toggle me")
    catalog = CatalogClient(backend.client, CATALOG_URL, TOKEN)

    first = await catalog.trash_or_restore(record["resourceId"])
    second = await catalog.trash_or_restore(record["resourceId"])

    assert first.is_deleted is True
    assert first.deleted_at is not None
    assert second.is_deleted is False


@pytest.mark.asyncio
async def test_trash_and_restore_are_idempotent(backend):
    record = backend.add_resource("Notes")
    lifecycle = _lifecycle(backend)
    rid = record["resourceId"]

    assert (await lifecycle.trash(rid)).state == "trashed"
    assert (await lifecycle.trash(rid)).state == "trashed"
    assert len(backend.requests_to("PATCH", "trash-or-restore")) == 1

    assert (await lifecycle.restore(rid)).state == "active"
    assert (await lifecycle.restore(rid)).state == "active"
    assert len(backend.requests_to("PATCH", "trash-or-restore")) == 2


@pytest.mark.asyncio
async def test_permanent_delete_requires_trash_first(backend):
    record = backend.add_resource("Still active")
    lifecycle = _lifecycle(backend)

    with pytest.raises(LifecycleError) as exc:
        await lifecycle.permanently_delete(record["resourceId"])

    assert "trashed" in exc.value.message
    assert backend.requests_to("DELETE", "/resources") == []
    assert record["resourceId"] in backend.resources


@pytest.mark.asyncio
async def test_trash_then_permanent_delete(backend):
    record = backend.add_resource("Old")
    lifecycle = _lifecycle(backend)

    await lifecycle.trash(record["resourceId"])
    await lifecycle.permanently_delete(record["resourceId"])

    assert record["resourceId"] not in backend.resources
    with pytest.raises(LifecycleError):
        await lifecycle.restore(record["resourceId"])


@pytest.mark.asyncio
async def test_concurrent_toggle_is_detected(backend):
    record = backend.add_resource("Raced")
    lifecycle = _lifecycle(backend)
    original = backend.handler

    def racing_handler(request):
        # another admin toggles between our read and our toggle
        if request.method == "PATCH" and request.url.path.endswith("trash-or-restore"):
            backend.resources[record["resourceId"]]["isDeleted"] = True
        return original(request)

    backend.handler = racing_handler
    with pytest.raises(LifecycleError) as exc:
        await lifecycle.trash(record["resourceId"])
    assert "concurrent" in exc.value.message


@pytest.mark.asyncio
async def test_batch_reports_failures_per_id(backend):
    a = backend.add_resource("A")["resourceId"]
    b = backend.add_resource("B")["resourceId"]
    lifecycle = _lifecycle(backend)

    trashed = await lifecycle.trash_many([a, "res-missing", b, a])

    assert trashed.action == "trash"
    assert trashed.succeeded == [a, b]
    assert list(trashed.failed) == ["res-missing"]
    assert backend.resources[a]["isDeleted"] is True
    assert backend.resources[b]["isDeleted"] is True

    await lifecycle.restore(b)
    deleted = await lifecycle.delete_many([a, b])
    assert deleted.succeeded == [a]
    assert "trashed" in deleted.failed[b]
    assert b in backend.resources

    restored = await lifecycle.restore_many([b])
    assert restored.succeeded == [b]
    assert restored.failed == {}
