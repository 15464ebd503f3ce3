"""Routes that expose operational observability data."""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from .. import __version__
from ..database import get_engine
from ..observability import metrics_registry

router = APIRouter(prefix="/api", tags=["observability"])


def _database_ok() -> bool:
    """Run a lightweight database check."""

    try:
        with Session(get_engine()) as session:
            session.exec(select(1)).one()
    except SQLAlchemyError:
        return False
    return True


@router.get("/metrics")
def read_metrics() -> dict[str, object]:
    return metrics_registry.snapshot()


@router.get("/status")
def read_status(request: Request) -> dict[str, object]:
    """Return version, backing store health, worker state and metrics."""

    services = request.app.state.services
    settings = services.settings
    return {
        "app": {"version": __version__, "environment": settings.environment},
        "database": {"ok": _database_ok()},
        "jobs": {
            "backend": settings.job_store_backend,
            "worker_running": services.orchestrator.worker.running,
        },
        "rate_limit": {
            "backend": settings.rate_limit_backend,
            "requests": settings.rate_limit_requests,
            "window_s": settings.rate_limit_window_s,
        },
        "metrics": metrics_registry.snapshot(),
    }


__all__ = ["router"]
