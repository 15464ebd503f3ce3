"""Prompt templates sent to the analysis models."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

DEFAULT_ANALYSIS_MESSAGE = (
    "Please analyze this lab report and explain what it means for my health."
)

LAB_ANALYSIS_INSTRUCTIONS = """\
Analyze the lab report below.

1. Summarize the overall picture in two or three sentences.
2. List every test result with its value, unit and reference range, and mark it
   as normal, high or low.
3. Explain what the out-of-range results can indicate, in plain language.
4. Suggest questions the patient could ask their doctor.

Do not diagnose. Remind the reader that this analysis is educational and that a
healthcare professional should interpret the results."""

METRICS_INSTRUCTIONS = """\
Extract every lab test result from the report below and return ONLY a JSON
object of the form:

{"metrics": [{"name": "Hemoglobin", "value": "13.5", "unit": "g/dL",
"range": "12.0-15.5", "status": "normal"}]}

"status" must be one of "normal", "high", "low" or "unknown". Use null for any
field that is not present in the report. Do not add commentary."""

TRENDS_INSTRUCTIONS = """\
You are given lab results from several reports of the same person, ordered from
oldest to newest. For each metric describe the direction of change, whether it
moved into or out of its reference range, and what the trend might suggest.
Finish with a short overall summary. Do not diagnose and remind the reader to
discuss the results with a healthcare professional."""

CONFIG_TEST_PROMPT = "Reply with the single word OK."


def analysis_prompt(system_prompt: str) -> str:
    return f"{system_prompt.strip()}\n\n{LAB_ANALYSIS_INSTRUCTIONS}"


def analysis_request(text: str, user_message: str | None) -> str:
    message = (user_message or "").strip() or DEFAULT_ANALYSIS_MESSAGE
    return f"Lab report contents:\n\n{text}\n\nUser request: {message}"


def metrics_request(text: str) -> str:
    return f"{METRICS_INSTRUCTIONS}\n\nReport:\n\n{text}"


def trends_request(
    series: Mapping[str, Iterable[Mapping[str, Any]]],
    reports: Iterable[Mapping[str, Any]],
) -> str:
    timeline = [
        {"date": report.get("date"), "title": report.get("title")} for report in reports
    ]
    return (
        f"{TRENDS_INSTRUCTIONS}\n\n"
        f"Reports:\n{json.dumps(timeline, indent=2, default=str)}\n\n"
        f"Metric history:\n{json.dumps({k: list(v) for k, v in series.items()}, indent=2, default=str)}"
    )


__all__ = [
    "CONFIG_TEST_PROMPT",
    "DEFAULT_ANALYSIS_MESSAGE",
    "analysis_prompt",
    "analysis_request",
    "metrics_request",
    "trends_request",
]
