"""Transient document containers passed through the analysis pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePath


@dataclass(frozen=True)
class UploadedDocument:
    """Raw upload held in memory for the lifetime of one request or job."""

    data: bytes = field(repr=False)
    mime_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return PurePath(self.filename or "").suffix.lower().lstrip(".")

    @property
    def size_mb(self) -> float:
        return self.size / (1024 * 1024)


@dataclass(frozen=True)
class ExtractedText:
    """Text recovered from a document plus where it came from."""

    text: str
    filename: str
    mime_type: str
    method: str
    delimiter: str | None = None
    model: str | None = None
    fallback: bool = False

    def __len__(self) -> int:
        return len(self.text)


__all__ = ["ExtractedText", "UploadedDocument"]
