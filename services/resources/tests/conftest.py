import os
import re
import tempfile
from datetime import datetime, timezone

import httpx
import pytest

# Settings are read once at import time, so point them at test values first.
os.environ.setdefault("DATA_ROOT", tempfile.mkdtemp(prefix="resources-test-"))
os.environ["CATALOG_BASE_URL"] = "http://catalog.test/api"
os.environ["STORAGE_BASE_URL"] = "http://storage.test/api/storage"
os.environ["PUBLISH_EVENTS"] = "false"

from app.models import LocalFile  # noqa: E402

CATALOG_URL = os.environ["CATALOG_BASE_URL"]
STORAGE_URL = os.environ["STORAGE_BASE_URL"]
TOKEN = "test-token"


def _json(status: int, body: dict) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeBackend:
    """
    In-memory stand-in for the catalog and the object storage, served through
    httpx.MockTransport. Knobs:
      fail_upload   file names whose upload answers 500
      fail_create   number of upcoming creates that answer 500
      fail_search   listing answers 503
    """

    def __init__(self):
        self.resources = {}
        self.requests = []
        self.uploads = []
        self.folders = []
        self.fail_upload = set()
        self.fail_create = 0
        self.fail_search = False
        self.tracked = []
        self.media_links = {}
        self._next_id = 1

    @property
    def client(self) -> httpx.AsyncClient:
        # late-bound so tests can swap the handler after building clients
        return httpx.AsyncClient(transport=httpx.MockTransport(lambda request: self.handler(request)))

    def add_resource(self, title: str, **overrides) -> dict:
        resource_id = f"res-{self._next_id}"
        self._next_id += 1
        now = datetime.now(timezone.utc).isoformat()
        record = {
            "resourceId": resource_id,
            "title": title,
            "description": "seeded",
            "category": "lecture_note",
            "department": "computer_science",
            "visibility": "all",
            "academicLevel": "all",
            "fileUrls": [f"https://files.test/itca-resources/{resource_id}.pdf"],
            "downloads": 0,
            "viewCount": 0,
            "isDeleted": False,
            "deletedAt": None,
            "deletedBy": None,
            "createdBy": "admin",
            "createdAt": now,
            "updatedAt": now,
        }
        record.update(overrides)
        self.resources[resource_id] = record
        return record

    def requests_to(self, method: str, path_part: str):
        return [r for r in self.requests if r.method == method and path_part in r.url.path]

    # -------------------------------------------------------------------------
    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "storage.test":
            return self._storage(request)
        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return _json(401, {"status": "error", "message": "Unauthorized"})
        return self._catalog(request)

    def _storage(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/api/storage"):]
        if request.method == "POST" and path == "/upload":
            name = re.search(rb'filename="([^"]+)"', request.content).group(1).decode()
            folder = re.search(rb'name="folder"\r\n\r\n([^\r]+)', request.content).group(1).decode()
            self.uploads.append(name)
            self.folders.append(folder)
            if name in self.fail_upload:
                return _json(500, {"status": "error", "message": "bucket unavailable"})
            return _json(200, {"status": "success", "data": {
                "fileUrl": f"https://files.test/{folder}/{name}", "fileName": name,
            }})
        if request.method == "GET" and path.startswith("/file/"):
            name = path[len("/file/"):]
            link = self.media_links.get(name)
            if not link:
                return _json(404, {"status": "error", "message": "not found"})
            return _json(200, {"status": "success", "data": {"metadata": {"mediaLink": link, "size": "10"}}})
        return _json(404, {"status": "error", "message": "no route"})

    def _catalog(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/api"):]
        method = request.method

        if path.startswith("/resources/analytics/"):
            rest = path[len("/resources/analytics/"):]
            if method == "POST":
                kind, _, resource_id = rest.partition("/")
                self.tracked.append((kind, resource_id))
                return _json(200, {"status": "success", "data": {}})
            return _json(200, {"status": "success", "data": {
                "views": 3, "downloads": 1, "uniqueViewers": 2, "uniqueDownloaders": 1,
                "viewsByDay": [{"date": "2026-10-01", "count": 3}], "downloadsByDay": [],
            }})

        if path == "/resources" and method == "GET":
            if self.fail_search:
                return _json(503, {"status": "error", "message": "search unavailable"})
            params = request.url.params
            search = (params.get("search") or "").lower()
            include_deleted = params.get("includeDeleted") == "true"
            found = [
                r for r in self.resources.values()
                if search in r["title"].lower() and (include_deleted or not r["isDeleted"])
            ]
            limit = int(params.get("limit", 10))
            return _json(200, {"status": "success", "data": {
                "message": "ok",
                "resources": found[:limit],
                "pagination": {"total": len(found), "limit": limit, "totalPages": 1,
                               "currentPage": int(params.get("page", 0)),
                               "hasNextPage": False, "hasPrevPage": False},
            }})

        if path == "/resources" and method == "POST":
            if self.fail_create:
                self.fail_create -= 1
                return _json(500, {"status": "error", "message": "database unavailable"})
            payload = httpx.Response(200, content=request.content).json()
            record = self.add_resource(**payload)
            return _json(201, {"status": "success", "data": {"message": "created", "resource": record}})

        parts = path.strip("/").split("/")  # resources/<id>[/trash-or-restore]
        record = self.resources.get(parts[1]) if len(parts) > 1 else None
        if record is None:
            return _json(404, {"status": "error", "message": "Resource not found"})

        if len(parts) == 3 and parts[2] == "trash-or-restore" and method == "PATCH":
            record["isDeleted"] = not record["isDeleted"]
            record["deletedAt"] = datetime.now(timezone.utc).isoformat() if record["isDeleted"] else None
            action = "trashed" if record["isDeleted"] else "restored"
            return _json(200, {"status": "success", "data": {"resource": record, "action": action}})
        if method == "GET":
            return _json(200, {"status": "success", "data": {"resource": record}})
        if method == "PATCH":
            record.update(httpx.Response(200, content=request.content).json())
            return _json(200, {"status": "success", "data": {"resource": record}})
        if method == "DELETE":
            del self.resources[record["resourceId"]]
            return httpx.Response(204)
        return _json(405, {"status": "error", "message": "method not allowed"})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_file(tmp_path):
    """Write a small local file and describe it with a (possibly larger) declared size."""
    def _make(name: str, size: int = 1024, content: bytes = b"data") -> LocalFile:
        path = tmp_path / name
        path.write_bytes(content)
        return LocalFile(name=name, size=size, path=str(path), content_type="application/pdf")
    return _make
