"""
DocGate Backend - Upload Admission Guard
========================================

What:  Admits multipart file parts by declared media type and size, then
       hands them to collaborators as in-memory byte buffers.
How:   Size is checked first (from the parser's measured size, or by a
       bounded read when the size is unknown), then the declared media type
       against a fixed allow-list. Content is never sniffed.
Who:   Called by the route group handler for every multipart request.

Policy:
    Allowed media types:  text/plain, text/markdown, application/json, text/csv
    Max size per file:    settings.max_file_size (10 MiB)
    Max files per form:   settings.max_upload_files

    Size before type: an oversized part is reported as FileTooLargeError
    whatever type it declares.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from starlette.datastructures import FormData, UploadFile

from docgate.exceptions import FileTooLargeError, InvalidFileTypeError, InvalidUploadError

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES: FrozenSet[str] = frozenset(
    {
        "text/plain",
        "text/markdown",
        "application/json",
        "text/csv",
    }
)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


def normalize_media_type(content_type: Optional[str]) -> str:
    """'Text/Plain; charset=utf-8' -> 'text/plain'. Missing -> ''."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


@dataclass(frozen=True)
class UploadedFile:
    """An admitted file part, fully buffered."""

    field_name: str
    filename: Optional[str]
    media_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


class UploadGuard:
    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = 5,
        allowed_media_types: FrozenSet[str] = ALLOWED_MEDIA_TYPES,
    ):
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.allowed_media_types = frozenset(allowed_media_types)

    @classmethod
    def from_settings(cls, settings) -> "UploadGuard":
        return cls(max_file_size=settings.max_file_size, max_files=settings.max_upload_files)

    def check(self, media_type: str, size: Optional[int], filename: Optional[str] = None) -> None:
        """
        Pure policy check on (declared media type, measured size).

        Raises:
            FileTooLargeError: size above the ceiling
            InvalidFileTypeError: media type outside the allow-list
        """
        if size is not None and size > self.max_file_size:
            raise FileTooLargeError(self.max_file_size, size=size, filename=filename)
        if normalize_media_type(media_type) not in self.allowed_media_types:
            raise InvalidFileTypeError(media_type, filename=filename)

    async def admit(self, upload: UploadFile, field_name: str = "file") -> UploadedFile:
        """Validate one parsed file part and buffer it into memory."""
        media_type = normalize_media_type(upload.content_type)
        filename = upload.filename
        self.check(media_type, upload.size, filename)

        # Bounded read: never more than one byte past the ceiling
        await upload.seek(0)
        content = await upload.read(self.max_file_size + 1)
        if len(content) > self.max_file_size:
            raise FileTooLargeError(self.max_file_size, size=len(content), filename=filename)

        logger.info(
            "Admitted upload field=%s filename=%s type=%s size=%d",
            field_name,
            filename or "unknown",
            media_type,
            len(content),
        )
        return UploadedFile(
            field_name=field_name,
            filename=filename,
            media_type=media_type,
            content=content,
        )

    async def admit_form(self, form: FormData) -> Tuple[Dict[str, Any], List[UploadedFile]]:
        """
        Split a parsed multipart form into plain fields and admitted files.

        Repeated plain fields become lists. Every file part is closed whether
        or not it was admitted.
        """
        uploads = [(key, value) for key, value in form.multi_items() if isinstance(value, UploadFile)]
        try:
            if len(uploads) > self.max_files:
                raise InvalidUploadError(
                    message=f"Too many files. Maximum is {self.max_files} per request.",
                    context={"files": len(uploads), "max_files": self.max_files},
                )

            fields: Dict[str, Any] = {}
            for key, value in form.multi_items():
                if isinstance(value, UploadFile):
                    continue
                if key in fields:
                    existing = fields[key]
                    fields[key] = existing + [value] if isinstance(existing, list) else [existing, value]
                else:
                    fields[key] = value

            files = [await self.admit(upload, field_name=key) for key, upload in uploads]
            return fields, files
        finally:
            for _, upload in uploads:
                await upload.close()
