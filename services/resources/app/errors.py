# Exception taxonomy for the upload pipeline and resource lifecycle.
#
# Every failure is scoped to one upload session or one lifecycle call and
# carries enough context (phase, file, index, resource id) for the caller to
# resume or report it.

from typing import Optional


class PipelineError(Exception):
    """Base class for errors raised by an upload session."""
    phase = "idle"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadValidationError(PipelineError):
    """Missing field, quota or size violation. The session does not advance."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DuplicateResourceError(UploadValidationError):
    def __init__(self, title: str):
        super().__init__(
            "A resource with the same title already exists. Please choose a different title.",
            field="title",
        )
        self.title = title


class SessionBusyError(PipelineError):
    """The session is validating, uploading or creating."""

    def __init__(self, phase: str):
        super().__init__(f"Session is busy ({phase})")
        self.phase = phase


class SessionResetError(PipelineError):
    """The session was reset while a submit was in flight; its results are discarded."""
    phase = "idle"


class UploadError(PipelineError):
    """One file failed to reach storage. Files before it stay uploaded."""
    phase = "uploading"

    def __init__(self, file_name: str, cause: str, index: Optional[int] = None):
        super().__init__(f"Failed to upload {file_name}: {cause}")
        self.file_name = file_name
        self.cause = cause
        self.index = index


class CreateError(PipelineError):
    """All files are stored but the catalog record could not be created."""
    phase = "creating"

    def __init__(self, cause: str):
        super().__init__(f"Failed to create resource: {cause}")
        self.cause = cause


class CatalogError(Exception):
    """The resource catalog answered with an error or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class LifecycleError(Exception):
    """A trash/restore/delete transition failed for one resource id."""

    def __init__(self, resource_id: str, message: str):
        super().__init__(f"{resource_id}: {message}")
        self.resource_id = resource_id
        self.message = message
