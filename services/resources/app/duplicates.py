"""
Duplicate-title guard.

A heuristic existence check, not an exhaustive scan: search the catalog with
the candidate title and look for a case-insensitive exact match in the first
page of results.

Policy: fail open. If the search itself fails we log it and report "no
duplicate", so a flaky catalog never blocks a legitimate upload.
"""

import logging

from .catalog import CatalogClient
from .errors import CatalogError
from .models import ResourceFilters

logger = logging.getLogger("duplicates")


def _norm(title: str) -> str:
    return title.strip().casefold()


class DuplicateTitleGuard:
    def __init__(self, catalog: CatalogClient, page_size: int = 10):
        self.catalog = catalog
        self.page_size = page_size

    async def check_duplicate(self, title: str) -> bool:
        wanted = _norm(title)
        if not wanted:
            return False
        try:
            page = await self.catalog.list(ResourceFilters(search=title.strip()), page=0, limit=self.page_size)
        except CatalogError as e:
            logger.warning("Duplicate check failed for %r, allowing upload: %s", title, e)
            return False
        except Exception:
            logger.exception("Duplicate check failed for %r, allowing upload", title)
            return False
        return any(_norm(r.title) == wanted for r in page.resources)
