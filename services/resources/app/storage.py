"""
Adapter for the external object-storage service.

- upload(): one file, one POST, returns the stored file URL. No retries here;
  the orchestrator resumes at batch level.
- file_info() / download_link(): best-effort metadata lookups, used to hand out
  a direct media link for downloads. They never raise.
"""

import logging
import os
from typing import Optional
from urllib.parse import quote

import httpx

from .errors import UploadError
from .models import LocalFile

logger = logging.getLogger("storage")


class StorageUploader:
    def __init__(self, client: httpx.AsyncClient, base_url: str, folder: str = "itca-resources"):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.folder = folder

    async def upload(self, file: LocalFile) -> str:
        """
        POST the file as multipart form data with the target folder. httpx reads
        the open spool file in chunks, so large files are never held in memory.
        Expected answer: {"status": "success", "data": {"fileUrl": ..., "fileName": ...}}
        """
        try:
            with open(file.path, "rb") as fh:
                r = await self.client.post(
                    f"{self.base_url}/upload",
                    files={"file": (file.name, fh, file.content_type)},
                    data={"folder": self.folder},
                )
        except OSError as e:
            raise UploadError(file.name, f"cannot read local file ({e.strerror or e})")
        except httpx.HTTPError as e:
            # timeouts and connection errors land here
            raise UploadError(file.name, f"{type(e).__name__}: {e}")

        if r.status_code < 200 or r.status_code >= 300:
            raise UploadError(file.name, f"storage answered {r.status_code} {r.reason_phrase}")

        try:
            body = r.json()
        except ValueError:
            raise UploadError(file.name, "storage answered with a non-JSON body")
        if not isinstance(body, dict):
            raise UploadError(file.name, "storage answered with an unexpected body")

        data = body.get("data") or {}
        if body.get("status") != "success" or not isinstance(data, dict) or not data.get("fileUrl"):
            raise UploadError(file.name, body.get("message") or "File upload failed")

        logger.info("Stored %s (%s bytes) -> %s", file.name, file.size, data["fileUrl"])
        return data["fileUrl"]

    async def file_info(self, file_name: str) -> Optional[dict]:
        """Metadata for a stored file, or None when unknown or unreachable."""
        try:
            r = await self.client.get(f"{self.base_url}/file/{quote(file_name, safe='')}")
            if r.status_code != 200:
                return None
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not fetch file info for %s: %s", file_name, e)
            return None
        if not isinstance(body, dict) or body.get("status") != "success":
            return None
        data = body.get("data")
        return data if isinstance(data, dict) else None

    async def download_link(self, file_url: str) -> str:
        """
        Prefer the storage media link (forces a proper download); fall back to
        the stored URL itself.
        """
        file_name = "/".join(file_url.split("/")[-2:])
        info = await self.file_info(file_name)
        metadata = (info or {}).get("metadata")
        media_link = metadata.get("mediaLink") if isinstance(metadata, dict) else None
        return media_link or file_url


def spool_path(upload_dir: str, session_id: str, file_id: str, file_name: str) -> str:
    """Local path for one selected file: <upload_dir>/<session>/<id>-<name>."""
    safe = os.path.basename(file_name).replace("/", "_") or "file"
    return os.path.join(upload_dir, session_id, f"{file_id}-{safe}")
