# =============================================================================
# Pydantic v2 models for the resources service.
#
# Responsibilities:
#   - Closed schemas for resource metadata (unknown enum values are rejected).
#   - Wire shapes of the remote catalog (camelCase aliases, snake_case in code).
#   - Local file and progress value objects used by the upload pipeline.
# =============================================================================

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Category = Literal[
    "lecture_note",
    "assignment",
    "past_papers",
    "tutorial",
    "textbook",
    "research_papers",
]
Department = Literal["computer_science", "information_systems", "telecommunications", "all"]
Visibility = Literal["all", "admin"]
AcademicLevel = Literal["undergraduate", "postgraduate", "all"]

# idle -> validating -> uploading -> creating -> (idle | failed)
Phase = Literal["idle", "validating", "uploading", "creating", "failed"]
ResourceState = Literal["active", "trashed"]

_CAMEL = {"populate_by_name": True}


class ResourceMetadata(BaseModel):
    """
    Descriptive fields submitted with a batch upload.

    category/department default to None ("not chosen yet"); the orchestrator
    reports that as a field-level error instead of guessing a value.
    """
    title: str = ""
    description: str = ""
    category: Optional[Category] = None
    department: Optional[Department] = None
    visibility: Visibility = "all"
    academic_level: AcademicLevel = Field("all", alias="academicLevel")

    model_config = {"populate_by_name": True, "extra": "forbid"}

    @field_validator("title", "description")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class ResourceUpdate(BaseModel):
    """Partial update. Only fields that were set are sent."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None
    department: Optional[Department] = None
    visibility: Optional[Visibility] = None
    academic_level: Optional[AcademicLevel] = Field(None, alias="academicLevel")

    model_config = {"populate_by_name": True, "extra": "forbid"}


class Resource(BaseModel):
    """
    One catalog record. fileUrls keeps upload order and is never empty.
    """
    resource_id: str = Field(..., alias="resourceId")
    title: str
    description: str = ""
    category: Category
    department: Department
    visibility: Visibility = "all"
    academic_level: AcademicLevel = Field("all", alias="academicLevel")
    file_urls: List[str] = Field(..., alias="fileUrls", min_length=1)
    downloads: int = 0
    view_count: int = Field(0, alias="viewCount")
    is_deleted: bool = Field(False, alias="isDeleted")
    deleted_at: Optional[datetime] = Field(None, alias="deletedAt")
    deleted_by: Optional[str] = Field(None, alias="deletedBy")
    created_by: Optional[str] = Field(None, alias="createdBy")
    updated_by: Optional[str] = Field(None, alias="updatedBy")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = _CAMEL

    @property
    def state(self) -> ResourceState:
        return "trashed" if self.is_deleted else "active"


class Pagination(BaseModel):
    total: int = 0
    limit: int = 10
    total_pages: int = Field(0, alias="totalPages")
    current_page: int = Field(0, alias="currentPage")
    has_next_page: bool = Field(False, alias="hasNextPage")
    has_prev_page: bool = Field(False, alias="hasPrevPage")

    model_config = _CAMEL


class ResourcesPage(BaseModel):
    resources: List[Resource]
    pagination: Pagination = Field(default_factory=Pagination)


class ResourceListing(ResourcesPage):
    """Listing response: raw records plus their table projection."""
    items: List["ResourceView"] = Field(default_factory=list)


class ResourceFilters(BaseModel):
    """
    Listing filters. The value "all" means no filter and is never sent.
    """
    search: Optional[str] = None
    department: Optional[str] = None
    category: Optional[str] = None
    file_type: Optional[str] = Field(None, alias="fileType")
    visibility: Optional[str] = None
    include_deleted: bool = Field(False, alias="includeDeleted")

    model_config = _CAMEL

    def to_params(self, page: int, limit: int) -> dict:
        params = {"page": page, "limit": limit}
        if self.search and self.search.strip():
            params["search"] = self.search.strip()
        for key, value in (
            ("department", self.department),
            ("category", self.category),
            ("fileType", self.file_type),
            ("visibility", self.visibility),
        ):
            if value and value != "all":
                params[key] = value
        if self.include_deleted:
            params["includeDeleted"] = "true"
        return params


class DailyCount(BaseModel):
    date: str
    count: int


class ResourceAnalytics(BaseModel):
    views: int = 0
    downloads: int = 0
    unique_viewers: int = Field(0, alias="uniqueViewers")
    unique_downloaders: int = Field(0, alias="uniqueDownloaders")
    views_by_day: List[DailyCount] = Field(default_factory=list, alias="viewsByDay")
    downloads_by_day: List[DailyCount] = Field(default_factory=list, alias="downloadsByDay")

    model_config = _CAMEL


class ResourceView(BaseModel):
    """Listing projection: primary file, its name/type and the upload date."""
    resource_id: str = Field(..., alias="resourceId")
    title: str
    file_url: str = Field(..., alias="fileUrl")
    file_name: str = Field(..., alias="fileName")
    file_type: str = Field(..., alias="type")
    file_count: int = Field(..., alias="fileCount")
    date_uploaded: Optional[str] = Field(None, alias="dateUploaded")

    model_config = _CAMEL

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceView":
        primary = resource.file_urls[0]
        # "<folder>/<name>" tail of the storage URL
        file_name = "/".join(primary.split("/")[-2:])
        return cls(
            resource_id=resource.resource_id,
            title=resource.title,
            file_url=primary,
            file_name=file_name,
            file_type=file_type_of(file_name),
            file_count=len(resource.file_urls),
            date_uploaded=resource.created_at.date().isoformat() if resource.created_at else None,
        )


# -----------------------------------------------------------------------------
# Upload pipeline value objects
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class LocalFile:
    """A selected file spooled on local disk, waiting to be uploaded."""
    name: str
    size: int
    path: str
    content_type: str = "application/octet-stream"


class SelectedFile(BaseModel):
    index: int  # position in selection (= upload) order
    name: str
    size: int
    size_label: str = Field(..., alias="sizeLabel")

    model_config = _CAMEL


class SelectionReport(BaseModel):
    """Outcome of adding files to a session."""
    accepted: List[str] = Field(default_factory=list)
    dropped: int = 0
    oversized: List[str] = Field(default_factory=list)
    total_selected: int = Field(0, alias="totalSelected")
    suggested_title: Optional[str] = Field(None, alias="suggestedTitle")
    message: Optional[str] = None

    model_config = _CAMEL


class ProgressSnapshot(BaseModel):
    phase: Phase
    current_file_index: int = Field(..., alias="currentFileIndex")
    total_files: int = Field(..., alias="totalFiles")
    current_file_name: str = Field("", alias="currentFileName")
    percentage: int = 0
    uploaded_count: int = Field(0, alias="uploadedCount")
    action_label: str = Field(..., alias="actionLabel")
    last_error: Optional[str] = Field(None, alias="lastError")

    model_config = _CAMEL


class SessionView(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    progress: ProgressSnapshot
    files: List[SelectedFile]  # newest first, for display

    model_config = _CAMEL


class BatchRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class BatchResult(BaseModel):
    """Per-id outcome of a multi-select lifecycle call."""
    action: str
    succeeded: List[str] = Field(default_factory=list)
    failed: dict = Field(default_factory=dict)  # id -> reason


# -----------------------------------------------------------------------------
# Small helpers shared by the pipeline and the HTTP layer
# -----------------------------------------------------------------------------
def format_file_size(size: int) -> str:
    """1536 -> '1.5 KB'."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    value = round(size / math.pow(1024, i), 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[i]}"


def file_type_of(file_name: str) -> str:
    if "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[-1].lower()


def suggest_title(file_name: str) -> str:
    """'intro_to-networks.pdf' -> 'Intro To Networks'."""
    stem = file_name.rsplit(".", 1)[0] if "." in file_name else file_name
    words = stem.replace("-", " ").replace("_", " ").split(" ")
    return " ".join(w[:1].upper() + w[1:] for w in words if w)


ResourceListing.model_rebuild()
