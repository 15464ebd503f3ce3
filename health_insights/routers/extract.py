"""General text extraction endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile

from ..config import Settings, get_settings
from ..services.container import ServiceContainer, get_services
from ..services.orchestrator import run_until_disconnect
from ..services.rate_limit import enforce_rate_limit
from ..services.uploads import read_upload

router = APIRouter(prefix="/api", tags=["extract"])


@router.post("/extract", dependencies=[Depends(enforce_rate_limit)])
async def extract_text(
    request: Request,
    file: UploadFile | None = File(None),
    services: ServiceContainer = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> dict[str, object]:
    """Return the text extracted from an uploaded document."""

    document = await read_upload(file, max_size=settings.max_upload_size_general)
    extracted = await run_until_disconnect(request, services.extractor.extract(document))
    payload: dict[str, object] = {
        "success": True,
        "text": extracted.text,
        "filename": extracted.filename,
        "fileType": extracted.mime_type,
        "method": extracted.method,
    }
    if extracted.delimiter:
        payload["delimiter"] = extracted.delimiter
    if extracted.model:
        payload["model"] = extracted.model
        payload["fallback"] = extracted.fallback
    return payload


__all__ = ["router"]
