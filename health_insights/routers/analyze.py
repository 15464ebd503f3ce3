"""Lab report analysis endpoints."""

from __future__ import annotations

import logging

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)

from ..auth import current_user_id
from ..config import Settings, get_settings
from ..observability import metrics_registry
from ..services.container import ServiceContainer, get_services
from ..services.orchestrator import AsyncHandle, run_until_disconnect
from ..services.rate_limit import enforce_rate_limit
from ..services.uploads import read_upload
from ..utils.errors import HealthInsightsError, MissingInputError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analyze"])


@router.post("/analyze", dependencies=[Depends(enforce_rate_limit)])
async def analyze_lab_report(
    request: Request,
    response: Response,
    file: UploadFile | None = File(None),
    message: str | None = Form(None),
    user_id: str | None = Depends(current_user_id),
    services: ServiceContainer = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> dict[str, object]:
    """Analyse a lab report inline, or queue it when the upload is large."""

    document = await read_upload(file, max_size=settings.max_upload_size_labs)
    try:
        outcome = await run_until_disconnect(
            request, services.orchestrator.analyze(document, message, user_id)
        )
    except HealthInsightsError:
        metrics_registry.record_analysis("error")
        raise

    if isinstance(outcome, AsyncHandle):
        metrics_registry.record_analysis("queued")
        response.status_code = status.HTTP_202_ACCEPTED
        return outcome.to_payload()

    metrics_registry.record_analysis(outcome.status, fallback=outcome.fallback)
    return outcome.to_payload()


@router.post("/analyze/init", status_code=status.HTTP_202_ACCEPTED, dependencies=[Depends(enforce_rate_limit)])
async def start_analysis_job(
    file: UploadFile | None = File(None),
    message: str | None = Form(None),
    user_id: str | None = Depends(current_user_id),
    services: ServiceContainer = Depends(get_services),
    settings: Settings = Depends(get_settings),
) -> dict[str, object]:
    """Always queue the analysis and return the job id to poll."""

    document = await read_upload(file, max_size=settings.max_upload_size_labs)
    handle = await services.orchestrator.start_job(document, message, user_id)
    metrics_registry.record_analysis("queued")
    return handle.to_payload()


@router.get("/analyze/status")
async def read_analysis_status(
    job_id: str | None = Query(None, alias="id"),
    user_id: str | None = Depends(current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, object]:
    if not job_id:
        raise MissingInputError("Job ID is required")

    job = await services.job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if job.owner_id and job.owner_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this job",
        )
    return job.status_payload()


__all__ = ["router"]
