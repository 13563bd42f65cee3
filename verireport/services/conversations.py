"""
Conversation store access — the reads and appends the pipeline and the API need.
Messages are append-only and ordered by (created_at, sequence_number).
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, ValidationError
from ..models.conversation import Conversation, Message
from ..models.file import FileRecord

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")


async def create_conversation(db: AsyncSession, user_id: str, title: Optional[str] = None) -> Conversation:
    convo = Conversation(user_id=user_id, title=title)
    db.add(convo)
    await db.flush()
    logger.info("Created conversation: %s (user=%s)", convo.id, user_id)
    return convo


async def get_conversation(db: AsyncSession, conversation_id: str) -> Conversation:
    if not conversation_id:
        raise ValidationError("conversation_id is required")
    convo = await db.get(Conversation, conversation_id)
    if convo is None:
        raise NotFoundError(
            f"Conversation not found: {conversation_id}", {"conversation_id": conversation_id}
        )
    return convo


async def append_message(
    db: AsyncSession,
    conversation_id: str,
    role: str,
    content: str,
    content_type: Optional[str] = None,
    file_id: Optional[str] = None,
) -> Message:
    if role not in ROLES:
        raise ValidationError(f"role must be one of {', '.join(ROLES)}", {"role": role})
    convo = await get_conversation(db, conversation_id)

    result = await db.execute(
        select(func.coalesce(func.max(Message.sequence_number), 0))
        .where(Message.conversation_id == convo.id)
    )
    next_seq = (result.scalar_one() or 0) + 1

    msg = Message(
        conversation_id=convo.id,
        role=role,
        content=content or "",
        sequence_number=next_seq,
        content_type=content_type,
        file_id=file_id,
    )
    db.add(msg)
    await db.flush()
    return msg


async def list_messages(
    db: AsyncSession, conversation_id: str, until: Optional[datetime] = None
) -> list[Message]:
    """Messages in creation order. `until` bounds the snapshot (inclusive)."""
    query = select(Message).where(Message.conversation_id == conversation_id)
    if until is not None:
        query = query.where(Message.created_at <= until)
    result = await db.execute(
        query.order_by(Message.created_at.asc(), Message.sequence_number.asc())
    )
    return list(result.scalars().all())


async def list_files(
    db: AsyncSession, conversation_id: str, until: Optional[datetime] = None
) -> list[FileRecord]:
    query = select(FileRecord).where(FileRecord.conversation_id == conversation_id)
    if until is not None:
        query = query.where(FileRecord.created_at <= until)
    result = await db.execute(query.order_by(FileRecord.created_at.asc()))
    return list(result.scalars().all())
