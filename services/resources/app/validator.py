"""
Size and count checks for a batch upload.

Two entry points:
  - select_files(): run when files are added to a session. Oversized files
    reject the whole addition; a count overflow keeps only what fits.
  - check_submission(): the same limits, re-checked when the batch is submitted
    in case the selection changed behind our back. Raises instead of trimming.
"""

from typing import List, Sequence, Tuple

from .errors import UploadValidationError
from .models import LocalFile, SelectionReport, format_file_size


def select_files(
    current: Sequence[LocalFile],
    new_files: Sequence[LocalFile],
    *,
    max_files: int,
    max_file_bytes: int,
) -> Tuple[List[LocalFile], SelectionReport]:
    """
    Return (files_to_add, report).

    25 new files on an empty selection -> 20 kept, dropped=5.
    5 new files on 18 selected         -> 2 kept, dropped=3.
    """
    oversized = [f.name for f in new_files if f.size > max_file_bytes]
    if oversized:
        report = SelectionReport(
            oversized=oversized,
            total_selected=len(current),
            message=f"File too large. Maximum file size is {format_file_size(max_file_bytes)} per file.",
        )
        return [], report

    remaining = max(max_files - len(current), 0)
    to_add = list(new_files[:remaining])
    dropped = len(new_files) - len(to_add)

    message = None
    if dropped:
        message = f"Only {len(to_add)} files added. Maximum {max_files} files allowed per resource."

    report = SelectionReport(
        accepted=[f.name for f in to_add],
        dropped=dropped,
        total_selected=len(current) + len(to_add),
        message=message,
    )
    return to_add, report


def check_submission(files: Sequence[LocalFile], *, max_files: int, max_file_bytes: int) -> None:
    if not files:
        raise UploadValidationError("Select at least one file", field="files")
    if len(files) > max_files:
        raise UploadValidationError(
            f"Maximum {max_files} files allowed per resource, {len(files)} selected", field="files"
        )
    for f in files:
        if f.size > max_file_bytes:
            raise UploadValidationError(
                f"{f.name} is larger than {format_file_size(max_file_bytes)}", field="files"
            )
