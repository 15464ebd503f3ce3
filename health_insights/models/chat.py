"""Chat conversation models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class ChatMessage(BaseModel):
    """A single turn in a conversation."""

    role: Literal["user", "assistant"]
    content: str
    id: str | None = None


class ChatRecord(SQLModel, table=True):
    """Persisted conversation owned by a single user."""

    __tablename__ = "chats"

    id: str = Field(primary_key=True, description="Chat identifier.")
    user_id: str = Field(index=True, description="Identifier of the owning user.")
    title: str = Field(default="New Chat")
    messages: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
        description="Ordered list of serialised chat messages.",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatSummary(BaseModel):
    """Lightweight listing entry for a conversation."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0


class ChatView(BaseModel):
    """Conversation returned by the chat API."""

    id: str
    title: str
    messages: list[ChatMessage] = PydanticField(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    source: Literal["database", "file"] = "database"


__all__ = ["ChatMessage", "ChatRecord", "ChatSummary", "ChatView"]
