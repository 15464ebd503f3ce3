"""Format-specific text extraction for uploaded lab reports."""

from __future__ import annotations

import io
import logging
from typing import Awaitable, Callable

import openpyxl

from ..models import ExtractedText, UploadedDocument
from ..utils.errors import (
    EmptyExtractionError,
    HealthInsightsError,
    UnsupportedFileTypeError,
    UpstreamExtractionError,
)
from .gateway import GenerationResult

LOGGER = logging.getLogger(__name__)

VisionDelegate = Callable[[bytes, str, str], Awaitable[GenerationResult]]

CSV_MIME_TYPES = {"text/csv", "application/csv", "text/comma-separated-values"}
TEXT_MIME_TYPES = {"text/plain"}
PDF_MIME_TYPES = {"application/pdf"}
IMAGE_MIME_TYPES = {
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/png": "image/png",
    "image/gif": "image/gif",
    "image/webp": "image/webp",
}
IMAGE_EXTENSIONS = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}
CSV_DELIMITERS = (",", ";", "\t", "|")

PDF_INSTRUCTION = (
    "This is a PDF medical document. Extract all text with special focus on lab "
    "results, biomarkers, test values, and their reference ranges. Preserve the "
    "table structure where possible and keep each test name next to its value, "
    "unit and reference range."
)
IMAGE_INSTRUCTION = (
    "This is a medical image or document. Extract all visible text and data, "
    "especially test results, values, and reference ranges if present."
)


def _decode(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def sniff_delimiter(text: str) -> str:
    """Return the most frequent candidate delimiter in the header line."""

    header = text.splitlines()[0] if text else ""
    counts = {delimiter: header.count(delimiter) for delimiter in CSV_DELIMITERS}
    best = max(CSV_DELIMITERS, key=lambda delimiter: counts[delimiter])
    return best if counts[best] else ","


def _is_csv(document: UploadedDocument) -> bool:
    return document.mime_type in CSV_MIME_TYPES or document.extension == "csv"


def _is_spreadsheet(document: UploadedDocument) -> bool:
    mime = document.mime_type
    return (
        document.extension in {"xls", "xlsx"}
        or "spreadsheetml" in mime
        or "ms-excel" in mime
    )


def _is_text(document: UploadedDocument) -> bool:
    return document.mime_type in TEXT_MIME_TYPES or document.extension in {"txt", "text"}


def _vision_mime(document: UploadedDocument) -> str | None:
    if document.mime_type in PDF_MIME_TYPES or document.extension == "pdf":
        return "application/pdf"
    if document.mime_type in IMAGE_MIME_TYPES:
        return IMAGE_MIME_TYPES[document.mime_type]
    return IMAGE_EXTENSIONS.get(document.extension)


def workbook_to_text(data: bytes) -> str:
    """Render every sheet as a ``## Sheet`` heading followed by tab-joined rows."""

    try:
        workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as exc:
        raise EmptyExtractionError(f"Could not read spreadsheet: {exc}") from exc

    blocks: list[str] = []
    try:
        for sheet in workbook.worksheets:
            rows: list[str] = []
            for row in sheet.iter_rows(values_only=True):
                cells = ["" if value is None else str(value) for value in row]
                if not any(cell.strip() for cell in cells):
                    continue
                rows.append("\t".join(cells))
            if rows:
                blocks.append(f"## Sheet: {sheet.title}\n" + "\n".join(rows))
    finally:
        workbook.close()
    return "\n\n".join(blocks)


class Extractor:
    """Turn an uploaded document into plain text.

    Handlers are tried in priority order: CSV, spreadsheet, plain text and
    finally PDF/image transcription through the vision delegate.
    """

    def __init__(self, vision: VisionDelegate | None = None) -> None:
        self._vision = vision

    async def extract(self, document: UploadedDocument) -> ExtractedText:
        if _is_csv(document):
            text = _decode(document.data)
            result = self._result(document, text, "csv", delimiter=sniff_delimiter(text))
        elif _is_spreadsheet(document):
            result = self._result(document, workbook_to_text(document.data), "spreadsheet")
        elif _is_text(document):
            result = self._result(document, _decode(document.data), "text")
        else:
            vision_mime = _vision_mime(document)
            if vision_mime is None:
                raise UnsupportedFileTypeError(
                    f"Unsupported file type: {document.mime_type or document.extension or 'unknown'}",
                    extra={"fileType": document.mime_type},
                )
            result = await self._transcribe(document, vision_mime)

        if not result.text.strip():
            raise EmptyExtractionError(
                f"No text could be extracted from {document.filename or 'the document'}"
            )
        LOGGER.info(
            "Extracted %d characters from %s via %s",
            len(result.text),
            document.filename,
            result.method,
        )
        return result

    async def _transcribe(
        self, document: UploadedDocument, vision_mime: str
    ) -> ExtractedText:
        if not document.data:
            raise EmptyExtractionError(f"{document.filename or 'Document'} is empty")
        if self._vision is None:
            raise UpstreamExtractionError("No vision model is configured")

        instruction = PDF_INSTRUCTION if vision_mime == "application/pdf" else IMAGE_INSTRUCTION
        try:
            generation = await self._vision(document.data, vision_mime, instruction)
        except HealthInsightsError as exc:
            raise UpstreamExtractionError(
                f"Failed to extract text from {document.filename}: {exc.message}",
                details=exc.details,
            ) from exc
        return self._result(
            document,
            generation.text,
            "vision",
            model=generation.model_used,
            fallback=generation.used_fallback,
        )

    @staticmethod
    def _result(
        document: UploadedDocument, text: str, method: str, **extra
    ) -> ExtractedText:
        return ExtractedText(
            text=text,
            filename=document.filename,
            mime_type=document.mime_type,
            method=method,
            **extra,
        )


__all__ = [
    "Extractor",
    "IMAGE_INSTRUCTION",
    "PDF_INSTRUCTION",
    "VisionDelegate",
    "sniff_delimiter",
    "workbook_to_text",
]
