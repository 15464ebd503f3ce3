"""Chat persistence with a relational primary store and a file fallback."""

from __future__ import annotations

import json
import logging
import os
import re
import secrets
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from sqlalchemy import desc
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ..models import ChatMessage, ChatRecord, ChatSummary, ChatView
from ..utils.errors import ChatOwnershipError

logger = logging.getLogger(__name__)

TITLE_WORDS = 7
DEFAULT_TITLE = "New Chat"
_CHAT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def new_chat_id() -> str:
    return f"chat_{secrets.token_hex(8)}"


def validate_chat_id(chat_id: str) -> str:
    if not chat_id or not _CHAT_ID_PATTERN.match(chat_id):
        raise ValueError(f"Invalid chat id: {chat_id!r}")
    return chat_id


def make_title(messages: Sequence[ChatMessage]) -> str:
    """Return the first user message truncated to seven words."""

    first = next((message for message in messages if message.role == "user"), None)
    if first is None or not first.content.strip():
        return DEFAULT_TITLE
    words = first.content.split()
    if len(words) > TITLE_WORDS:
        return " ".join(words[:TITLE_WORDS]) + "..."
    return " ".join(words)


def is_continuation(
    stored: Sequence[ChatMessage], incoming: Sequence[ChatMessage]
) -> bool:
    """Return whether ``incoming`` extends ``stored`` without rewriting it."""

    if len(incoming) < len(stored):
        return False
    return all(
        (old.role, old.content) == (new.role, new.content)
        for old, new in zip(stored, incoming)
    )


def _dump(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    return [message.model_dump(exclude_none=True) for message in messages]


class ChatStore(Protocol):
    def save(self, owner_id: str, chat_id: str, messages: Sequence[ChatMessage]) -> ChatView:
        ...

    def list(self, owner_id: str) -> list[ChatSummary]:
        ...

    def get(self, owner_id: str, chat_id: str) -> ChatView | None:
        ...

    def delete(self, owner_id: str, chat_id: str) -> bool:
        ...


class SqlChatStore:
    """Chat records stored in the ``chats`` table."""

    def __init__(self, engine_factory: Callable[[], Engine]) -> None:
        self._engine_factory = engine_factory

    def _session(self) -> Session:
        return Session(self._engine_factory())

    @staticmethod
    def _view(record: ChatRecord) -> ChatView:
        return ChatView(
            id=record.id,
            title=record.title,
            messages=[ChatMessage.model_validate(item) for item in record.messages],
            created_at=record.created_at,
            updated_at=record.updated_at,
            source="database",
        )

    def save(self, owner_id: str, chat_id: str, messages: Sequence[ChatMessage]) -> ChatView:
        validate_chat_id(chat_id)
        now = datetime.now(UTC)
        with self._session() as session:
            record = session.get(ChatRecord, chat_id)
            if record is None:
                record = ChatRecord(
                    id=chat_id,
                    user_id=owner_id,
                    title=make_title(messages),
                    messages=_dump(messages),
                    created_at=now,
                    updated_at=now,
                )
            else:
                if record.user_id != owner_id:
                    raise ChatOwnershipError(chat_id)
                record.messages = _dump(messages)
                record.updated_at = now
            session.add(record)
            session.commit()
            session.refresh(record)
            return self._view(record)

    def list(self, owner_id: str) -> list[ChatSummary]:
        with self._session() as session:
            records = session.exec(
                select(ChatRecord)
                .where(ChatRecord.user_id == owner_id)
                .order_by(desc(ChatRecord.updated_at))
            ).all()
            return [
                ChatSummary(
                    id=record.id,
                    title=record.title,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                    message_count=len(record.messages),
                )
                for record in records
            ]

    def get(self, owner_id: str, chat_id: str) -> ChatView | None:
        with self._session() as session:
            record = session.get(ChatRecord, chat_id)
            if record is None:
                return None
            if record.user_id != owner_id:
                raise ChatOwnershipError(chat_id)
            return self._view(record)

    def delete(self, owner_id: str, chat_id: str) -> bool:
        with self._session() as session:
            record = session.get(ChatRecord, chat_id)
            if record is None:
                return False
            if record.user_id != owner_id:
                raise ChatOwnershipError(chat_id)
            session.delete(record)
            session.commit()
            return True


class FileChatStore:
    """One JSON array of messages per ``<chat_id>.json``.

    Files are addressed by chat id only, so listing a user's chats is not
    possible and ``list`` always returns an empty list.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def _path(self, chat_id: str) -> Path:
        return self._directory / f"{validate_chat_id(chat_id)}.json"

    def save(self, owner_id: str, chat_id: str, messages: Sequence[ChatMessage]) -> ChatView:
        path = self._path(chat_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(_dump(messages), indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
        now = datetime.now(UTC)
        return ChatView(
            id=chat_id,
            title=make_title(messages),
            messages=list(messages),
            updated_at=now,
            source="file",
        )

    def list(self, owner_id: str) -> list[ChatSummary]:
        return []

    def get(self, owner_id: str, chat_id: str) -> ChatView | None:
        path = self._path(chat_id)
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        messages = [ChatMessage.model_validate(item) for item in data]
        modified = datetime.fromtimestamp(path.stat().st_mtime, UTC)
        return ChatView(
            id=chat_id,
            title=make_title(messages),
            messages=messages,
            updated_at=modified,
            source="file",
        )

    def delete(self, owner_id: str, chat_id: str) -> bool:
        path = self._path(chat_id)
        if not path.exists():
            return False
        path.unlink()
        return True


class FallbackChatStore:
    """Try ``primary`` on every call and fall back to ``secondary`` on failure.

    There is no sticky degraded mode: each call starts with the primary again.
    The secondary is only consulted when the primary raises, so a healthy
    primary answering "not found" is final. Ownership violations are never
    retried against the secondary.
    """

    def __init__(self, primary: ChatStore, secondary: ChatStore) -> None:
        self.primary = primary
        self.secondary = secondary

    def _fallback(self, operation: str, exc: Exception) -> None:
        logger.warning(
            "Primary chat store failed during %s (%s); using file fallback",
            operation,
            exc,
        )

    def save(self, owner_id: str, chat_id: str, messages: Sequence[ChatMessage]) -> ChatView:
        try:
            return self.primary.save(owner_id, chat_id, messages)
        except (ChatOwnershipError, ValueError):
            raise
        except Exception as exc:
            self._fallback("save", exc)
        return self.secondary.save(owner_id, chat_id, messages)

    def list(self, owner_id: str) -> list[ChatSummary]:
        try:
            return self.primary.list(owner_id)
        except Exception as exc:
            self._fallback("list", exc)
        return self.secondary.list(owner_id)

    def get(self, owner_id: str, chat_id: str) -> ChatView | None:
        try:
            return self.primary.get(owner_id, chat_id)
        except (ChatOwnershipError, ValueError):
            raise
        except Exception as exc:
            self._fallback("get", exc)
        return self.secondary.get(owner_id, chat_id)

    def delete(self, owner_id: str, chat_id: str) -> bool:
        try:
            return self.primary.delete(owner_id, chat_id)
        except (ChatOwnershipError, ValueError):
            raise
        except Exception as exc:
            self._fallback("delete", exc)
        return self.secondary.delete(owner_id, chat_id)


__all__ = [
    "ChatStore",
    "FallbackChatStore",
    "FileChatStore",
    "SqlChatStore",
    "is_continuation",
    "make_title",
    "new_chat_id",
    "validate_chat_id",
]
