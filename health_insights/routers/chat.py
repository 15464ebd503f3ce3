"""Chat conversation endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..auth import require_user
from ..models import ChatMessage, ChatSummary, ChatView
from ..services.container import ServiceContainer, get_services
from ..services.chat_store import is_continuation, new_chat_id, validate_chat_id
from ..services.gemini_client import text_part
from ..utils.errors import ChatOwnershipError, MissingInputError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class ChatRequest(BaseModel):
    chat_id: str | None = Field(default=None, alias="chatId")
    messages: list[ChatMessage] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class ChatReply(BaseModel):
    success: bool = True
    chat: ChatView
    reply: ChatMessage
    model: str
    fallback: bool


def _forbidden() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to access this chat"
    )


def _checked_id(chat_id: str) -> str:
    try:
        return validate_chat_id(chat_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _contents(messages: list[ChatMessage]) -> list[dict[str, object]]:
    return [
        {
            "role": "model" if message.role == "assistant" else "user",
            "parts": [text_part(message.content)],
        }
        for message in messages
    ]


@router.get("/chat", response_model=list[ChatSummary])
def list_chats(
    user_id: str = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> list[ChatSummary]:
    return services.chat_store.list(user_id)


@router.get("/chat/{chat_id}", response_model=ChatView)
def read_chat(
    chat_id: str,
    user_id: str = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> ChatView:
    try:
        chat = services.chat_store.get(user_id, _checked_id(chat_id))
    except ChatOwnershipError as exc:
        raise _forbidden() from exc
    if chat is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return chat


@router.post("/chat", response_model=ChatReply)
async def send_chat_message(
    payload: ChatRequest,
    user_id: str = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> ChatReply:
    """Generate the assistant's reply and persist the extended conversation."""

    if not payload.messages or payload.messages[-1].role != "user":
        raise MissingInputError("The last message must come from the user")

    chat_id = _checked_id(payload.chat_id) if payload.chat_id else new_chat_id()
    try:
        existing = services.chat_store.get(user_id, chat_id)
    except ChatOwnershipError as exc:
        raise _forbidden() from exc
    if existing is not None and not is_continuation(existing.messages, payload.messages):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Conversation does not extend the stored history",
        )

    config = services.gateway.load_config()
    result = await services.gateway.generate_contents(
        config.system_prompt, _contents(payload.messages), config=config
    )
    reply = ChatMessage(role="assistant", content=result.text)

    try:
        chat = services.chat_store.save(user_id, chat_id, [*payload.messages, reply])
    except ChatOwnershipError as exc:
        raise _forbidden() from exc
    return ChatReply(
        chat=chat, reply=reply, model=result.model_used, fallback=result.used_fallback
    )


@router.delete("/chat/{chat_id}")
def delete_chat(
    chat_id: str,
    user_id: str = Depends(require_user),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, bool]:
    try:
        deleted = services.chat_store.delete(user_id, _checked_id(chat_id))
    except ChatOwnershipError as exc:
        raise _forbidden() from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return {"success": True}


__all__ = ["router"]
