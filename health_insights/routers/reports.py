"""Structured metrics and trend analysis endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile
from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..services.container import ServiceContainer, get_services
from ..services.orchestrator import run_until_disconnect
from ..services.rate_limit import enforce_rate_limit
from ..services.reports import ReportSnapshot, analyze_trends, extract_metrics
from ..services.uploads import read_upload

router = APIRouter(prefix="/api/reports", tags=["reports"])


class TrendsRequest(BaseModel):
    reports: list[ReportSnapshot] = Field(default_factory=list)
    metrics: list[str] = Field(default_factory=list)


@router.post("/metrics", dependencies=[Depends(enforce_rate_limit)])
async def read_report_metrics(
    request: Request,
    file: UploadFile | None = File(None),
    services: ServiceContainer = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> dict[str, object]:
    document = await read_upload(file, max_size=settings.max_upload_size_labs)

    async def _run():
        extracted = await services.extractor.extract(document)
        return await extract_metrics(services.gateway, extracted.text)

    metrics, result = await run_until_disconnect(request, _run())
    return {
        "success": True,
        "metrics": [metric.model_dump() for metric in metrics],
        "model": result.model_used,
        "fallback": result.used_fallback,
    }


@router.post("/trends", dependencies=[Depends(enforce_rate_limit)])
async def analyze_report_trends(
    payload: TrendsRequest,
    request: Request,
    services: ServiceContainer = Depends(get_services),
) -> dict[str, object]:
    """Describe how the selected metrics changed across the given reports."""

    result = await run_until_disconnect(
        request, analyze_trends(services.gateway, payload.reports, payload.metrics)
    )
    return {
        "success": True,
        "analysis": result.text,
        "model": result.model_used,
        "fallback": result.used_fallback,
    }


__all__ = ["router"]
