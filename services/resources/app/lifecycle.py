"""
Resource lifecycle: active -> trashed -> {active (restored), gone}.

The catalog only offers a toggle (trash-or-restore) plus a hard delete. We
wrap it in explicit, idempotent operations:

  trash(id)    active -> trashed, no-op if already trashed
  restore(id)  trashed -> active, no-op if already active
  permanently_delete(id)  trashed -> gone; refused for an active resource

Each reads the current state first and checks the state the toggle returns,
so a concurrent toggle from another caller shows up as a LifecycleError
instead of silently flipping the resource the wrong way.

Batch variants apply the same transition to each id independently and report
per-id failures; one bad id never aborts the rest.
"""

import logging
from typing import Awaitable, Callable, Iterable

from .catalog import CatalogClient
from .errors import CatalogError, LifecycleError
from .models import BatchResult, Resource

logger = logging.getLogger("lifecycle")


class ResourceLifecycle:
    def __init__(self, catalog: CatalogClient):
        self.catalog = catalog

    async def _current(self, resource_id: str) -> Resource:
        try:
            return await self.catalog.get(resource_id)
        except CatalogError as e:
            raise LifecycleError(resource_id, e.message)

    async def _toggle_to(self, resource_id: str, want_deleted: bool) -> Resource:
        current = await self._current(resource_id)
        if current.is_deleted == want_deleted:
            return current
        try:
            updated = await self.catalog.trash_or_restore(resource_id)
        except CatalogError as e:
            raise LifecycleError(resource_id, e.message)
        if updated.is_deleted != want_deleted:
            raise LifecycleError(resource_id, f"resource ended {updated.state}, concurrent change suspected")
        logger.info("Resource %s is now %s", resource_id, updated.state)
        return updated

    async def trash(self, resource_id: str) -> Resource:
        return await self._toggle_to(resource_id, True)

    async def restore(self, resource_id: str) -> Resource:
        return await self._toggle_to(resource_id, False)

    async def permanently_delete(self, resource_id: str) -> None:
        current = await self._current(resource_id)
        if not current.is_deleted:
            raise LifecycleError(resource_id, "resource must be trashed before it can be deleted permanently")
        try:
            await self.catalog.permanently_delete(resource_id)
        except CatalogError as e:
            raise LifecycleError(resource_id, e.message)

    # -------------------------------------------------------------------------
    # Batch variants
    # -------------------------------------------------------------------------
    async def _batch(
        self, action: str, ids: Iterable[str], op: Callable[[str], Awaitable[object]]
    ) -> BatchResult:
        result = BatchResult(action=action)
        # dict.fromkeys keeps order and drops repeated ids
        for resource_id in dict.fromkeys(ids):
            try:
                await op(resource_id)
            except LifecycleError as e:
                result.failed[resource_id] = e.message
                continue
            result.succeeded.append(resource_id)
        if result.failed:
            logger.warning("%s: %s ok, %s failed %s", action, len(result.succeeded), len(result.failed), sorted(result.failed))
        return result

    async def trash_many(self, ids: Iterable[str]) -> BatchResult:
        return await self._batch("trash", ids, self.trash)

    async def restore_many(self, ids: Iterable[str]) -> BatchResult:
        return await self._batch("restore", ids, self.restore)

    async def delete_many(self, ids: Iterable[str]) -> BatchResult:
        return await self._batch("delete", ids, self.permanently_delete)
