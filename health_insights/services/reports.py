"""Structured metric extraction and multi-report trend analysis."""

from __future__ import annotations

import logging
import datetime as dt
from typing import Any, Literal, Sequence

from pydantic import BaseModel, Field, field_validator

from ..utils.errors import MissingInputError, ModelParseError
from .gateway import GenerationResult, GenerationSettings, ModelGateway
from .gemini_client import text_part
from .prompts import metrics_request, trends_request

logger = logging.getLogger(__name__)

MetricStatus = Literal["normal", "high", "low", "unknown"]


class Metric(BaseModel):
    name: str
    value: str | None = None
    unit: str | None = None
    range: str | None = None
    status: MetricStatus = "unknown"

    @field_validator("value", "unit", "range", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in {"normal", "high", "low"} else "unknown"


class ReportSnapshot(BaseModel):
    """A previously analysed report and its extracted metrics."""

    id: str | None = None
    title: str | None = None
    date: dt.date | dt.datetime
    metrics: list[Metric] = Field(default_factory=list)


async def extract_metrics(
    gateway: ModelGateway, text: str
) -> tuple[list[Metric], GenerationResult]:
    """Ask the model for the metrics contained in ``text`` as JSON."""

    payload, result = await gateway.generate_json(
        None,
        [text_part(metrics_request(text))],
        generation=GenerationSettings(
            temperature=0.1,
            max_output_tokens=4096,
            response_mime_type="application/json",
        ),
    )
    if isinstance(payload, dict):
        items = payload.get("metrics")
    else:
        items = payload
    if not isinstance(items, list):
        raise ModelParseError("Model response did not contain a metrics list", raw=result.text)

    metrics: list[Metric] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        metrics.append(Metric.model_validate(item))
    logger.info("Extracted %d metrics using %s", len(metrics), result.model_used)
    return metrics, result


def _sort_key(report: ReportSnapshot) -> dt.datetime:
    value = report.date
    if isinstance(value, dt.datetime):
        return value.replace(tzinfo=None)
    return dt.datetime.combine(value, dt.datetime.min.time())


def build_series(
    reports: Sequence[ReportSnapshot], metric_names: Sequence[str]
) -> dict[str, list[dict[str, Any]]]:
    """Return the history of each selected metric across reports, oldest first."""

    wanted = {name.strip().lower(): name for name in metric_names if name.strip()}
    series: dict[str, list[dict[str, Any]]] = {name: [] for name in wanted.values()}
    for report in sorted(reports, key=_sort_key):
        for metric in report.metrics:
            label = wanted.get(metric.name.strip().lower())
            if label is None:
                continue
            series[label].append(
                {
                    "date": report.date.isoformat(),
                    "value": metric.value,
                    "unit": metric.unit,
                    "range": metric.range,
                    "status": metric.status,
                }
            )
    return series


async def analyze_trends(
    gateway: ModelGateway,
    reports: Sequence[ReportSnapshot],
    metric_names: Sequence[str],
) -> GenerationResult:
    if len(reports) < 2:
        raise MissingInputError("At least two reports are required for trend analysis")
    if not [name for name in metric_names if name.strip()]:
        raise MissingInputError("Select at least one metric to analyze")

    ordered = sorted(reports, key=_sort_key)
    series = build_series(ordered, metric_names)
    config = gateway.load_config()
    return await gateway.generate(
        config.system_prompt,
        [
            text_part(
                trends_request(
                    series,
                    [report.model_dump(include={"date", "title"}) for report in ordered],
                )
            )
        ],
        generation=GenerationSettings(
            temperature=0.3,
            top_k=32,
            top_p=0.95,
            max_output_tokens=max(config.max_output_tokens, 4096),
        ),
        config=config,
    )


__all__ = [
    "Metric",
    "ReportSnapshot",
    "analyze_trends",
    "build_series",
    "extract_metrics",
]
