"""Helpers for reading multipart uploads into memory."""

from __future__ import annotations

from fastapi import UploadFile

from ..config import MEGABYTE
from ..models import UploadedDocument
from ..utils.errors import FileTooLargeError, MissingInputError

CHUNK_SIZE = 1024 * 1024  # 1MB


def too_large_message(size: int, limit: int) -> str:
    return (
        f"File too large. Maximum file size is {limit // MEGABYTE}MB. "
        f"Your file is {size / MEGABYTE:.2f}MB."
    )


async def read_upload(upload: UploadFile | None, *, max_size: int) -> UploadedDocument:
    """Read ``upload`` in chunks, rejecting it once it exceeds ``max_size``."""

    if upload is None or not (upload.filename or "").strip():
        raise MissingInputError("No file provided")

    declared = getattr(upload, "size", None)
    if declared is not None and declared > max_size:
        await upload.close()
        raise FileTooLargeError(too_large_message(declared, max_size))

    chunks: list[bytes] = []
    total_bytes = 0
    try:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > max_size:
                raise FileTooLargeError(too_large_message(total_bytes, max_size))
            chunks.append(chunk)
    finally:
        await upload.close()

    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    return UploadedDocument(
        data=b"".join(chunks),
        mime_type=content_type,
        filename=upload.filename or "",
    )


__all__ = ["CHUNK_SIZE", "read_upload", "too_large_message"]
