"""Data models for the Health Insights service."""

from .chat import ChatMessage, ChatRecord, ChatSummary, ChatView
from .document import ExtractedText, UploadedDocument
from .job import AnalysisJob, JobInput, JobStatus

__all__ = [
    "AnalysisJob",
    "ChatMessage",
    "ChatRecord",
    "ChatSummary",
    "ChatView",
    "ExtractedText",
    "JobInput",
    "JobStatus",
    "UploadedDocument",
]
