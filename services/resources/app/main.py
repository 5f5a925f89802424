"""
FastAPI app for the resources service.

Responsibilities:
- Hold batch upload sessions in memory (one per opened upload form) and drive
  them through the upload orchestrator: select files, remove files, submit,
  resume, reset, cancel.
- Expose the resource lifecycle (trash / restore / permanent delete, single and
  batch) and thin catalog passthroughs (list, get, update, analytics).
- Fire-and-forget view/download tracking.
- Publish ResourceCreated / ResourceLifecycleChanged events when enabled.

Every route needs a bearer token; it is forwarded to the catalog as-is.
"""

import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiofiles
import httpx
from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile

from common.config import settings
from common.events import lifecycle_changed, publish_quietly, publisher, resource_created
from .analytics import AnalyticsTracker
from .catalog import CatalogClient
from .duplicates import DuplicateTitleGuard
from .errors import (
    CatalogError,
    DuplicateResourceError,
    PipelineError,
    SessionBusyError,
    SessionResetError,
    UploadError,
    UploadValidationError,
)
from .lifecycle import ResourceLifecycle
from .models import (
    BatchRequest,
    BatchResult,
    LocalFile,
    Resource,
    ResourceAnalytics,
    ResourceFilters,
    ResourceListing,
    ResourceMetadata,
    ResourceUpdate,
    ResourceView,
    SelectionReport,
    SessionView,
)
from .orchestrator import UploadOrchestrator, UploadSession
from .storage import StorageUploader, spool_path

app = FastAPI(title="Resources Service")
logger = logging.getLogger("resources")

SPOOL_CHUNK = 1024 * 1024

# -----------------------------------------------------------------------------
# Process state
# -----------------------------------------------------------------------------
@dataclass
class SessionEntry:
    session: UploadSession
    token: str


_sessions: Dict[str, SessionEntry] = {}
_http: Optional[httpx.AsyncClient] = None
tracker = AnalyticsTracker()


@app.on_event("startup")
async def startup():
    global _http
    _http = httpx.AsyncClient(timeout=settings.http_timeout)
    logger.info("Resources service ready catalog=%s storage=%s", settings.catalog_base_url, settings.storage_base_url)


@app.on_event("shutdown")
async def shutdown():
    global _http
    await tracker.drain()
    if _http is not None:
        await _http.aclose()
        _http = None
    await publisher.close()

# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
def get_http_client() -> httpx.AsyncClient:
    global _http
    if _http is None:
        _http = httpx.AsyncClient(timeout=settings.http_timeout)
    return _http


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Bearer token required")
    return token.strip()


def get_catalog(token: str = Depends(bearer_token), http: httpx.AsyncClient = Depends(get_http_client)) -> CatalogClient:
    return CatalogClient(http, settings.catalog_base_url, token)


def get_storage(http: httpx.AsyncClient = Depends(get_http_client)) -> StorageUploader:
    return StorageUploader(http, settings.storage_base_url, settings.storage_folder)


def get_orchestrator(
    catalog: CatalogClient = Depends(get_catalog),
    storage: StorageUploader = Depends(get_storage),
) -> UploadOrchestrator:
    return UploadOrchestrator(
        storage,
        catalog,
        DuplicateTitleGuard(catalog, page_size=settings.duplicate_check_limit),
        max_files=settings.max_files,
        max_file_bytes=settings.max_file_bytes,
    )


def _entry(session_id: str, token: str) -> SessionEntry:
    entry = _sessions.get(session_id)
    # someone else's session looks exactly like a missing one
    if entry is None or entry.token != token:
        raise HTTPException(status_code=404, detail="Upload session not found")
    return entry


def _session_dir(session_id: str) -> str:
    return os.path.join(settings.upload_dir, session_id)


def _discard_spool(session_id: str) -> None:
    shutil.rmtree(_session_dir(session_id), ignore_errors=True)


def _remove_spooled(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _pipeline_http_error(e: PipelineError) -> HTTPException:
    """Map a pipeline error to a response the UI can act on (resume vs fix form)."""
    detail = {"message": e.message, "phase": e.phase}
    if isinstance(e, DuplicateResourceError):
        return HTTPException(status_code=409, detail={**detail, "field": e.field, "error": "duplicate_resource"})
    if isinstance(e, UploadValidationError):
        return HTTPException(status_code=422, detail={**detail, "field": e.field, "error": "validation"})
    if isinstance(e, (SessionBusyError, SessionResetError)):
        return HTTPException(status_code=409, detail={**detail, "error": "session_state"})
    if isinstance(e, UploadError):
        return HTTPException(
            status_code=502,
            detail={**detail, "error": "upload_failed", "fileName": e.file_name, "index": e.index},
        )
    # CreateError: every file is stored, resubmitting only retries the create
    return HTTPException(status_code=502, detail={**detail, "error": "create_failed"})


def _catalog_http_error(e: CatalogError) -> HTTPException:
    status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
    return HTTPException(status_code=status, detail=e.message)

# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------
@app.get("/health")
def health():
    """
    Lightweight readiness endpoint. No external calls.
    """
    return {"status": "ok", "service": settings.service_name, "sessions": len(_sessions)}

# -----------------------------------------------------------------------------
# Upload sessions
# -----------------------------------------------------------------------------
@app.post("/sessions", response_model=SessionView, status_code=201)
def open_session(token: str = Depends(bearer_token)):
    session = UploadSession()
    session.subscribe(
        lambda snap: logger.debug("Session %s: %s %s%%", session.session_id, snap.action_label, snap.percentage)
    )
    _sessions[session.session_id] = SessionEntry(session=session, token=token)
    os.makedirs(_session_dir(session.session_id), exist_ok=True)
    return SessionView(session_id=session.session_id, progress=session.snapshot(), files=[])


@app.get("/sessions/{session_id}", response_model=SessionView)
def session_status(session_id: str, token: str = Depends(bearer_token)):
    """Progress snapshot for polling, plus the selection newest first."""
    session = _entry(session_id, token).session
    return SessionView(session_id=session.session_id, progress=session.snapshot(), files=session.display_files())


async def _spool(session_id: str, upload: UploadFile) -> LocalFile:
    """Stream one multipart file to disk without holding it in memory."""
    name = upload.filename or "file"
    path = spool_path(settings.upload_dir, session_id, uuid.uuid4().hex[:12], name)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    size = 0
    async with aiofiles.open(path, "wb") as out:
        while True:
            chunk = await upload.read(SPOOL_CHUNK)
            if not chunk:
                break
            size += len(chunk)
            await out.write(chunk)
    return LocalFile(
        name=name,
        size=size,
        path=path,
        content_type=upload.content_type or "application/octet-stream",
    )


@app.post("/sessions/{session_id}/files", response_model=SelectionReport)
async def add_files(
    session_id: str,
    files: List[UploadFile] = File(...),
    token: str = Depends(bearer_token),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    session = _entry(session_id, token).session
    if session.is_busy:
        raise _pipeline_http_error(SessionBusyError(session.phase))

    spooled = [await _spool(session_id, f) for f in files]
    try:
        report = orchestrator.add_files(session, spooled)
    except PipelineError as e:
        raise _pipeline_http_error(e)
    finally:
        kept = {f.path for f in session.selected_files}
        for f in spooled:
            if f.path not in kept:
                _remove_spooled(f.path)
    return report


@app.delete("/sessions/{session_id}/files/{index}", response_model=SessionView)
def remove_file(
    session_id: str,
    index: int,
    display: bool = Query(False, description="index counts in display (newest first) order"),
    token: str = Depends(bearer_token),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    session = _entry(session_id, token).session
    try:
        if display:
            removed = orchestrator.remove_displayed_file(session, index)
        else:
            removed = orchestrator.remove_file(session, index)
    except IndexError:
        raise HTTPException(status_code=404, detail=f"No selected file at index {index}")
    _remove_spooled(removed.path)
    return SessionView(session_id=session.session_id, progress=session.snapshot(), files=session.display_files())


@app.post("/sessions/{session_id}/submit", response_model=Resource, status_code=201)
async def submit(
    session_id: str,
    metadata: ResourceMetadata,
    token: str = Depends(bearer_token),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    """
    Run (or resume) the batch: validate, upload what is not uploaded yet, create
    the resource. On success the session is cleared and its spool removed.
    """
    session = _entry(session_id, token).session
    file_count = len(session.selected_files)
    try:
        resource = await orchestrator.submit(session, metadata)
    except PipelineError as e:
        raise _pipeline_http_error(e)

    _discard_spool(session_id)
    os.makedirs(_session_dir(session_id), exist_ok=True)
    await publish_quietly(resource_created(resource.resource_id, resource.title, file_count, session_id))
    return resource


@app.post("/sessions/{session_id}/reset", response_model=SessionView)
def reset_session(
    session_id: str,
    token: str = Depends(bearer_token),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    """Forget the selection and uploaded files; the next submit starts from zero."""
    session = _entry(session_id, token).session
    orchestrator.reset(session)
    _discard_spool(session_id)
    os.makedirs(_session_dir(session_id), exist_ok=True)
    return SessionView(session_id=session.session_id, progress=session.snapshot(), files=[])


@app.delete("/sessions/{session_id}", status_code=204)
def cancel_session(
    session_id: str,
    token: str = Depends(bearer_token),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
):
    entry = _entry(session_id, token)
    orchestrator.reset(entry.session)
    _sessions.pop(session_id, None)
    _discard_spool(session_id)

# -----------------------------------------------------------------------------
# Catalog passthroughs
# -----------------------------------------------------------------------------
@app.get("/resources", response_model=ResourceListing)
async def list_resources(
    page: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    department: Optional[str] = None,
    category: Optional[str] = None,
    fileType: Optional[str] = None,
    visibility: Optional[str] = None,
    includeDeleted: bool = False,
    catalog: CatalogClient = Depends(get_catalog),
):
    filters = ResourceFilters(
        search=search,
        department=department,
        category=category,
        file_type=fileType,
        visibility=visibility,
        include_deleted=includeDeleted,
    )
    try:
        result = await catalog.list(filters, page=page, limit=limit)
    except CatalogError as e:
        raise _catalog_http_error(e)
    return ResourceListing(
        resources=result.resources,
        pagination=result.pagination,
        items=[ResourceView.from_resource(r) for r in result.resources],
    )


@app.get("/resources/{resource_id}", response_model=Resource)
async def get_resource(resource_id: str, catalog: CatalogClient = Depends(get_catalog)):
    try:
        return await catalog.get(resource_id)
    except CatalogError as e:
        raise _catalog_http_error(e)


@app.patch("/resources/{resource_id}", response_model=Resource)
async def update_resource(resource_id: str, changes: ResourceUpdate, catalog: CatalogClient = Depends(get_catalog)):
    try:
        return await catalog.update(resource_id, changes)
    except CatalogError as e:
        raise _catalog_http_error(e)


@app.post("/resources/{resource_id}/trash-or-restore", response_model=Resource)
async def trash_or_restore(resource_id: str, catalog: CatalogClient = Depends(get_catalog)):
    """Raw toggle. Prefer /resources/trash and /resources/restore, which are idempotent."""
    try:
        return await catalog.trash_or_restore(resource_id)
    except CatalogError as e:
        raise _catalog_http_error(e)


@app.get("/resources/{resource_id}/analytics", response_model=ResourceAnalytics)
async def resource_analytics(resource_id: str, catalog: CatalogClient = Depends(get_catalog)):
    try:
        return await catalog.analytics(resource_id)
    except CatalogError as e:
        raise _catalog_http_error(e)

# -----------------------------------------------------------------------------
# Lifecycle (batch, per-id outcome)
# -----------------------------------------------------------------------------
async def _run_batch(action: str, body: BatchRequest, catalog: CatalogClient) -> BatchResult:
    lifecycle = ResourceLifecycle(catalog)
    op = {"trash": lifecycle.trash_many, "restore": lifecycle.restore_many, "delete": lifecycle.delete_many}[action]
    result = await op(body.ids)
    await publish_quietly(lifecycle_changed(action, result.succeeded, list(result.failed)))
    return result


@app.post("/resources/trash", response_model=BatchResult)
async def trash_resources(body: BatchRequest, catalog: CatalogClient = Depends(get_catalog)):
    return await _run_batch("trash", body, catalog)


@app.post("/resources/restore", response_model=BatchResult)
async def restore_resources(body: BatchRequest, catalog: CatalogClient = Depends(get_catalog)):
    return await _run_batch("restore", body, catalog)


@app.post("/resources/delete", response_model=BatchResult)
async def delete_resources(body: BatchRequest, catalog: CatalogClient = Depends(get_catalog)):
    """Permanent delete. Ids that are not in the trash are reported as failed."""
    return await _run_batch("delete", body, catalog)

# -----------------------------------------------------------------------------
# Analytics counters (fire-and-forget)
# -----------------------------------------------------------------------------
@app.post("/resources/{resource_id}/view", status_code=202)
async def track_view(resource_id: str, catalog: CatalogClient = Depends(get_catalog)):
    return {"accepted": tracker.track_view(catalog, resource_id)}


@app.get("/resources/{resource_id}/download")
async def download(
    resource_id: str,
    index: int = Query(0, ge=0),
    catalog: CatalogClient = Depends(get_catalog),
    storage: StorageUploader = Depends(get_storage),
):
    """Resolve a download link for one file of the resource and count the download."""
    try:
        resource = await catalog.get(resource_id)
    except CatalogError as e:
        raise _catalog_http_error(e)
    if index >= len(resource.file_urls):
        raise HTTPException(status_code=404, detail=f"Resource has no file at index {index}")

    file_url = resource.file_urls[index]
    link = await storage.download_link(file_url)
    tracker.track_download(catalog, resource_id)
    return {"url": link, "fileUrl": file_url, "title": resource.title}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.service_port)
