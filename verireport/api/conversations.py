"""
Conversations API.

POST /v1/conversations                        — Create a conversation
GET  /v1/conversations/{conversation_id}          — Conversation with messages and files
POST /v1/conversations/{conversation_id}/messages — Append a message
POST /v1/conversations/{conversation_id}/chat     — Send a message and get the assistant reply
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.config import get_settings
from ..core.dependencies import get_completion_dep, get_db, get_user
from ..core.errors import ValidationError
from ..models.conversation import Message
from ..models.file import FileRecord
from ..services import conversations as store
from ..services.assistant import generate_reply
from ..services.chain import format_timestamp
from ..services.llm import CompletionService

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["conversations"])


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class MessageCreate(BaseModel):
    role: str
    content: str
    content_type: Optional[str] = None
    file_id: Optional[str] = None


class ChatRequest(BaseModel):
    message: str


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    sequence_number: int
    content_type: Optional[str] = None
    file_id: Optional[str] = None
    created_at: str


class FileOut(BaseModel):
    id: str
    filename: str
    mime_type: str
    size_bytes: int
    content_fingerprint: Optional[str] = None
    verified_at: Optional[str] = None
    ocr_text: Optional[str] = None
    created_at: str


class ConversationDetail(BaseModel):
    id: str
    user_id: str
    title: Optional[str] = None
    messages: list[MessageOut] = []
    files: list[FileOut] = []


def message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        role=m.role,
        content=m.content or "",
        sequence_number=m.sequence_number,
        content_type=m.content_type,
        file_id=m.file_id,
        created_at=format_timestamp(m.created_at),
    )


def file_out(f: FileRecord) -> FileOut:
    return FileOut(
        id=f.id,
        filename=f.filename,
        mime_type=f.mime_type,
        size_bytes=f.size_bytes or 0,
        content_fingerprint=f.content_fingerprint,
        verified_at=format_timestamp(f.verified_at) if f.verified_at else None,
        ocr_text=f.ocr_text,
        created_at=format_timestamp(f.created_at),
    )


@conversations_router.post("", response_model=ConversationDetail)
async def create_conversation(
    request: ConversationCreate,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    convo = await store.create_conversation(db, user.user_id, request.title)
    return ConversationDetail(id=convo.id, user_id=convo.user_id, title=convo.title)


@conversations_router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a conversation with its messages and files."""
    convo = await store.get_conversation(db, conversation_id)
    messages = await store.list_messages(db, convo.id)
    files = await store.list_files(db, convo.id)

    return ConversationDetail(
        id=convo.id,
        user_id=convo.user_id,
        title=convo.title,
        messages=[message_out(m) for m in messages],
        files=[file_out(f) for f in files],
    )


@conversations_router.post("/{conversation_id}/messages", response_model=MessageOut)
async def append_message(
    conversation_id: str,
    request: MessageCreate,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    msg = await store.append_message(
        db,
        conversation_id,
        role=request.role,
        content=request.content,
        content_type=request.content_type,
        file_id=request.file_id,
    )
    return message_out(msg)


class ChatResponse(BaseModel):
    message: MessageOut
    reply: MessageOut


@conversations_router.post("/{conversation_id}/chat", response_model=ChatResponse)
async def chat(
    conversation_id: str,
    request: ChatRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    completion: CompletionService = Depends(get_completion_dep),
):
    """
    Store the user's message, then ask the assistant for a reply.

    The user message is committed first and kept if the reply fails.

    Example:
        curl -X POST http://localhost:8000/v1/conversations/<id>/chat \\
             -H "X-User-Id: u1" -H "Content-Type: application/json" \\
             -d '{"message": "What was the Q3 total?"}'
    """
    if not request.message.strip():
        raise ValidationError("message must not be empty")

    msg = await store.append_message(db, conversation_id, role="user", content=request.message)
    await db.commit()

    reply = await generate_reply(db, conversation_id, completion, model=get_settings().chat_model)
    return ChatResponse(message=message_out(msg), reply=message_out(reply))
