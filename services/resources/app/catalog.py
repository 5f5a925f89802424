"""
HTTP client for the resource catalog (the authoritative store of resources).

All calls are bearer-token authenticated. The catalog answers with an envelope
{"status": "success", "data": {...}}; anything else becomes a CatalogError.
Visibility filtering for non-admin callers is enforced server-side; we only
pass the filters we are given.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .errors import CatalogError
from .models import (
    Resource,
    ResourceAnalytics,
    ResourceFilters,
    ResourceMetadata,
    ResourcesPage,
    ResourceUpdate,
)

logger = logging.getLogger("catalog")


class CatalogClient:
    def __init__(self, client: httpx.AsyncClient, base_url: str, token: str):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.token = token

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = await self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            raise CatalogError(f"{method} {path} failed: {type(e).__name__}: {e}")

        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if r.status_code < 200 or r.status_code >= 300:
            message = body.get("message")
            raise CatalogError(message or f"{method} {path} answered {r.status_code}", r.status_code)

        if body and body.get("status") not in (None, "success"):
            raise CatalogError(body.get("message") or f"{method} {path} was not successful", r.status_code)
        return body

    @staticmethod
    def _data(body: Dict[str, Any]) -> Dict[str, Any]:
        data = body.get("data") or {}
        if not isinstance(data, dict):
            raise CatalogError(f"Malformed catalog response: data is {type(data).__name__}, not an object")
        return data

    @classmethod
    def _resource(cls, body: Dict[str, Any]) -> Resource:
        try:
            return Resource.model_validate(cls._data(body).get("resource"))
        except ValidationError as e:
            raise CatalogError(f"Malformed resource in catalog response: {e.error_count()} errors")

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------
    async def create(self, metadata: ResourceMetadata, file_urls: List[str]) -> Resource:
        payload = metadata.model_dump(by_alias=True)
        payload["fileUrls"] = list(file_urls)
        body = await self._request("POST", "/resources", json=payload)
        resource = self._resource(body)
        logger.info("Created resource %s with %s files", resource.resource_id, len(file_urls))
        return resource

    async def get(self, resource_id: str) -> Resource:
        return self._resource(await self._request("GET", f"/resources/{resource_id}"))

    async def update(self, resource_id: str, changes: ResourceUpdate) -> Resource:
        payload = changes.model_dump(by_alias=True, exclude_unset=True)
        return self._resource(await self._request("PATCH", f"/resources/{resource_id}", json=payload))

    async def list(
        self, filters: Optional[ResourceFilters] = None, page: int = 0, limit: int = 10
    ) -> ResourcesPage:
        params = (filters or ResourceFilters()).to_params(page, limit)
        body = await self._request("GET", "/resources", params=params)
        data = self._data(body)
        try:
            # pagination sits next to data in some catalog versions, inside it in others
            return ResourcesPage.model_validate(
                {
                    "resources": data.get("resources") or [],
                    "pagination": data.get("pagination") or body.get("pagination") or {},
                }
            )
        except ValidationError as e:
            raise CatalogError(f"Malformed resource listing: {e.error_count()} errors")

    async def trash_or_restore(self, resource_id: str) -> Resource:
        """Toggle isDeleted. The catalog infers the direction from the current state."""
        body = await self._request("PATCH", f"/resources/{resource_id}/trash-or-restore")
        return self._resource(body)

    async def permanently_delete(self, resource_id: str) -> None:
        await self._request("DELETE", f"/resources/{resource_id}")
        logger.info("Permanently deleted resource %s", resource_id)

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------
    async def track_view(self, resource_id: str) -> None:
        await self._request("POST", f"/resources/analytics/track-view/{resource_id}")

    async def track_download(self, resource_id: str) -> None:
        await self._request("POST", f"/resources/analytics/track-download/{resource_id}")

    async def analytics(self, resource_id: str) -> ResourceAnalytics:
        body = await self._request("GET", f"/resources/analytics/{resource_id}")
        try:
            return ResourceAnalytics.model_validate(self._data(body))
        except ValidationError as e:
            raise CatalogError(f"Malformed analytics summary: {e.error_count()} errors")
