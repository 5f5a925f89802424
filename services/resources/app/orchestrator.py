"""
Batch upload orchestrator.

An UploadSession is the in-memory state of one batch: the selected files, the
URLs of files already stored and a progress snapshot. The orchestrator is the
only thing that mutates it, driving

    idle -> validating -> uploading -> creating -> idle      (success)
                                   \\-> failed  <-/           (upload/create error)

Resume rule: uploaded_urls is always a prefix of selected_files in selection
order. A resubmit from `failed` starts at len(uploaded_urls), so a file whose
URL is already recorded is never uploaded twice. If every file is stored and
only the catalog create failed, a resubmit goes straight to `creating`.

Removing a file while the session is not idle, or while any URL is recorded,
invalidates that prefix, so it resets the whole session. A duplicate title on
a resubmit keeps the session `failed` so the prefix survives a title change. Each reset bumps `epoch`; a submit that is still
awaiting the network notices the bump and drops its result.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .errors import (
    CatalogError,
    CreateError,
    DuplicateResourceError,
    SessionBusyError,
    SessionResetError,
    UploadError,
    UploadValidationError,
)
from .models import (
    LocalFile,
    Phase,
    ProgressSnapshot,
    Resource,
    ResourceMetadata,
    SelectedFile,
    SelectionReport,
    format_file_size,
    suggest_title,
)
from .validator import check_submission, select_files

logger = logging.getLogger("orchestrator")

BUSY_PHASES = ("validating", "uploading", "creating")

ProgressListener = Callable[[ProgressSnapshot], None]


def _percent(done: int, total: int) -> int:
    # half-up rounding, so 1/8 -> 13 rather than banker's 12
    if total <= 0:
        return 0
    return int(math.floor(done * 100 / total + 0.5))


@dataclass
class UploadSession:
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    selected_files: List[LocalFile] = field(default_factory=list)
    uploaded_urls: List[str] = field(default_factory=list)
    phase: Phase = "idle"
    current_file_index: int = 0
    total_files: int = 0
    current_file_name: str = ""
    percentage: int = 0
    last_error: Optional[str] = None
    epoch: int = 0
    # kept on the session so they outlive the orchestrator that drives one request
    listeners: List[ProgressListener] = field(default_factory=list, repr=False, compare=False)

    @property
    def is_busy(self) -> bool:
        return self.phase in BUSY_PHASES

    def subscribe(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def action_label(self) -> str:
        if self.phase == "validating":
            return "Validating..."
        if self.phase == "uploading":
            shown = min(self.current_file_index + 1, self.total_files)
            return f"Uploading {shown}/{self.total_files} files..."
        if self.phase == "creating":
            return "Creating Resource..."
        if self.phase == "failed":
            return "Resume Upload"
        return "Create Resource"

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            phase=self.phase,
            current_file_index=self.current_file_index,
            total_files=self.total_files,
            current_file_name=self.current_file_name,
            percentage=self.percentage,
            uploaded_count=len(self.uploaded_urls),
            action_label=self.action_label(),
            last_error=self.last_error,
        )

    # Display order is newest first. Upload order is always selection order;
    # the two are only ever related through these helpers.
    def display_files(self) -> List[SelectedFile]:
        return [
            SelectedFile(index=i, name=f.name, size=f.size, size_label=format_file_size(f.size))
            for i, f in reversed(list(enumerate(self.selected_files)))
        ]

    def selection_index(self, display_index: int) -> int:
        if display_index < 0 or display_index >= len(self.selected_files):
            raise IndexError(display_index)
        return len(self.selected_files) - 1 - display_index


class UploadOrchestrator:
    """
    Drives one UploadSession through validate -> upload-each -> create.

    Collaborators are injected: `uploader.upload(file) -> url`,
    `catalog.create(metadata, urls) -> Resource`, `guard.check_duplicate(title) -> bool`.
    """

    def __init__(
        self,
        uploader,
        catalog,
        guard,
        *,
        max_files: int = 20,
        max_file_bytes: int = 100 * 1024 * 1024,
    ):
        self.uploader = uploader
        self.catalog = catalog
        self.guard = guard
        self.max_files = max_files
        self.max_file_bytes = max_file_bytes

    def _notify(self, session: UploadSession) -> None:
        snap = session.snapshot()
        for listener in list(session.listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("progress listener failed")

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------
    def add_files(self, session: UploadSession, files: Sequence[LocalFile]) -> SelectionReport:
        """
        Append files in the order given. Allowed while idle or failed: appending
        keeps the uploaded prefix valid, so a failed batch can still resume.
        """
        if session.is_busy:
            raise SessionBusyError(session.phase)

        was_empty = not session.selected_files
        to_add, report = select_files(
            session.selected_files, files, max_files=self.max_files, max_file_bytes=self.max_file_bytes
        )
        session.selected_files.extend(to_add)
        if was_empty and to_add:
            report.suggested_title = suggest_title(to_add[0].name)
        if report.dropped or report.oversized:
            logger.info(
                "Session %s selection trimmed: dropped=%s oversized=%s",
                session.session_id, report.dropped, len(report.oversized),
            )
        return report

    def remove_file(self, session: UploadSession, index: int) -> LocalFile:
        """
        Remove by selection index. Outside idle, or with any file already
        stored, this resets the whole session: the stored prefix no longer
        matches the selection.
        """
        removed = session.selected_files.pop(index)
        if session.phase != "idle" or session.uploaded_urls:
            logger.info(
                "Session %s: removed %s during %s, discarding %s uploaded files",
                session.session_id, removed.name, session.phase, len(session.uploaded_urls),
            )
            self._reset_progress(session)
            self._notify(session)
        return removed

    def remove_displayed_file(self, session: UploadSession, display_index: int) -> LocalFile:
        return self.remove_file(session, session.selection_index(display_index))

    def reset(self, session: UploadSession) -> None:
        """Explicit reset/cancel: forget the selection and what was uploaded."""
        session.selected_files.clear()
        self._reset_progress(session)
        self._notify(session)

    def _reset_progress(self, session: UploadSession) -> None:
        session.epoch += 1
        session.phase = "idle"
        session.uploaded_urls = []
        session.current_file_index = 0
        session.total_files = 0
        session.current_file_name = ""
        session.percentage = 0
        session.last_error = None

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------
    def _check_form(self, session: UploadSession, metadata: ResourceMetadata) -> None:
        if not session.selected_files:
            raise UploadValidationError("Select at least one file", field="files")
        if not metadata.title:
            raise UploadValidationError("Title is required", field="title")
        if not metadata.description:
            raise UploadValidationError("Description is required", field="description")
        if not metadata.category:
            raise UploadValidationError("Category is required", field="category")
        if not metadata.department:
            raise UploadValidationError("Department is required", field="department")
        check_submission(session.selected_files, max_files=self.max_files, max_file_bytes=self.max_file_bytes)
        if len(session.uploaded_urls) > len(session.selected_files):
            # selection shrank without going through remove_file
            raise UploadValidationError("Selection changed since the last attempt, reset the upload", field="files")

    def _check_epoch(self, session: UploadSession, epoch: int) -> None:
        if session.epoch != epoch:
            raise SessionResetError("Upload session was reset while the submit was in flight")

    def _fail(self, session: UploadSession, message: str) -> None:
        session.phase = "failed"
        session.last_error = message
        self._notify(session)

    async def submit(self, session: UploadSession, metadata: ResourceMetadata) -> Resource:
        if session.is_busy:
            raise SessionBusyError(session.phase)

        # validation errors leave the phase untouched
        self._check_form(session, metadata)
        epoch = session.epoch

        session.phase = "validating"
        session.last_error = None
        self._notify(session)

        try:
            is_duplicate = await self.guard.check_duplicate(metadata.title)
        except Exception:
            # the guard fails open; so do we if it breaks that promise
            logger.exception("Session %s: duplicate check raised, allowing upload", session.session_id)
            is_duplicate = False
        self._check_epoch(session, epoch)
        if is_duplicate:
            logger.info("Session %s: duplicate title %r", session.session_id, metadata.title)
            error = DuplicateResourceError(metadata.title)
            if session.uploaded_urls:
                # stay resumable: the stored prefix still matches the selection
                self._fail(session, error.message)
            else:
                session.phase = "idle"
                self._notify(session)
            raise error

        total = len(session.selected_files)
        start = len(session.uploaded_urls)
        session.phase = "uploading"
        session.total_files = total
        session.current_file_index = start
        session.percentage = _percent(start, total)
        self._notify(session)
        if start:
            logger.info("Session %s: resuming at file %s/%s", session.session_id, start + 1, total)

        for index in range(start, total):
            file = session.selected_files[index]
            session.current_file_name = file.name
            self._notify(session)
            try:
                url = await self.uploader.upload(file)
            except Exception as e:
                self._check_epoch(session, epoch)
                if isinstance(e, UploadError):
                    error = e
                    logger.warning("Session %s: upload halted at %s: %s", session.session_id, file.name, e.cause)
                else:
                    error = UploadError(file.name, f"{type(e).__name__}: {e}")
                    logger.exception("Session %s: unexpected error uploading %s", session.session_id, file.name)
                error.index = index
                self._fail(session, error.message)
                if error is e:
                    raise
                raise error from e
            self._check_epoch(session, epoch)
            session.uploaded_urls.append(url)
            session.current_file_index = index + 1
            session.percentage = _percent(index + 1, total)
            self._notify(session)

        session.phase = "creating"
        session.percentage = 100
        session.current_file_name = ""
        self._notify(session)

        try:
            resource = await self.catalog.create(metadata, list(session.uploaded_urls))
        except Exception as e:
            self._check_epoch(session, epoch)
            # the files stay in storage; a resubmit only retries the create
            if isinstance(e, CatalogError):
                cause = e.message
                logger.warning("Session %s: create failed after %s files: %s", session.session_id, total, cause)
            else:
                cause = f"{type(e).__name__}: {e}"
                logger.exception("Session %s: unexpected error creating resource", session.session_id)
            error = CreateError(cause)
            self._fail(session, error.message)
            raise error from e
        self._check_epoch(session, epoch)

        logger.info(
            "Session %s: created resource %s (%s files, %s)",
            session.session_id, resource.resource_id, total,
            format_file_size(sum(f.size for f in session.selected_files)),
        )
        self.reset(session)
        return resource
