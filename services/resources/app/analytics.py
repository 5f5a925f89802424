"""
Fire-and-forget view/download counters.

track_view()/track_download() return immediately. The POST runs in a
background task; failures are logged and never retried or surfaced. While a
call for the same (actor, kind) is outstanding, further calls are dropped so
one actor cannot double count.
"""

import asyncio
import logging
from typing import Optional, Set, Tuple

from .catalog import CatalogClient
from .errors import CatalogError

logger = logging.getLogger("analytics")


class AnalyticsTracker:
    def __init__(self):
        self._in_flight: Set[Tuple[str, str]] = set()
        self._tasks: Set[asyncio.Task] = set()

    def is_tracking(self, actor: str, kind: str) -> bool:
        return (actor, kind) in self._in_flight

    def track_view(self, catalog: CatalogClient, resource_id: str, actor: Optional[str] = None) -> bool:
        return self._fire(catalog, "view", resource_id, actor)

    def track_download(self, catalog: CatalogClient, resource_id: str, actor: Optional[str] = None) -> bool:
        return self._fire(catalog, "download", resource_id, actor)

    def _fire(self, catalog: CatalogClient, kind: str, resource_id: str, actor: Optional[str]) -> bool:
        key = (actor or catalog.token, kind)
        if key in self._in_flight:
            logger.debug("Skipping %s tracking for %s, previous call still running", kind, resource_id)
            return False
        self._in_flight.add(key)
        task = asyncio.create_task(self._send(catalog, kind, resource_id, key))
        # keep a reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _send(self, catalog: CatalogClient, kind: str, resource_id: str, key: Tuple[str, str]) -> None:
        try:
            if kind == "view":
                await catalog.track_view(resource_id)
            else:
                await catalog.track_download(resource_id)
        except CatalogError as e:
            logger.warning("Failed to track %s for %s: %s", kind, resource_id, e.message)
        finally:
            self._in_flight.discard(key)

    async def drain(self) -> None:
        """Wait for outstanding tracking calls (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
