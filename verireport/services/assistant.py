"""
Assistant replies.

The conversation history, plus text extracted from its verified files, goes to
the completion service; the reply is appended as an `assistant` message.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.conversation import Message
from . import conversations as store
from .extraction import is_no_text
from .llm import CompletionService

logger = logging.getLogger(__name__)

ASSISTANT_SYSTEM_PROMPT = (
    "You are a helpful assistant that helps users analyze their files and prepare reports. "
    "Use the text extracted from the conversation's files when it is relevant. "
    "Be concise and factual; say so when the files do not contain the answer."
)

EMPTY_REPLY = "I could not produce a reply. Please try again."

MAX_HISTORY_MESSAGES = 50
MAX_FILE_CONTEXT_CHARS = 20_000


def build_file_context(files: Iterable[tuple[str, Optional[str]]]) -> str:
    """`[filename]` headed blocks of extracted text, capped in total length."""
    blocks = []
    remaining = MAX_FILE_CONTEXT_CHARS
    for filename, text in files:
        if not text or is_no_text(text) or remaining <= 0:
            continue
        block = f"[{filename}]\n{text.strip()}"[:remaining]
        blocks.append(block)
        remaining -= len(block)
    return "\n\n".join(blocks)


def build_chat_messages(
    history: list[tuple[str, str]], files: Iterable[tuple[str, Optional[str]]] = ()
) -> list[dict]:
    system = ASSISTANT_SYSTEM_PROMPT
    file_context = build_file_context(files)
    if file_context:
        system += f"\n\nFiles in this conversation:\n\n{file_context}"
    messages = [{"role": "system", "content": system}]
    messages.extend({"role": role, "content": content} for role, content in history[-MAX_HISTORY_MESSAGES:])
    return messages


async def generate_reply(
    db: AsyncSession,
    conversation_id: str,
    completion: CompletionService,
    model: Optional[str] = None,
) -> Message:
    """
    Answer the latest messages of a conversation and append the reply.
    ExternalServiceError propagates; nothing is appended in that case.
    """
    convo = await store.get_conversation(db, conversation_id)
    history = [(m.role, m.content or "") for m in await store.list_messages(db, convo.id)]
    files = [(f.filename, f.ocr_text) for f in await store.list_files(db, convo.id)]

    text = await completion.complete(build_chat_messages(history, files), model=model or None)
    text = (text or "").strip()
    if not text:
        logger.warning("Assistant returned empty text for conversation %s", convo.id)
        text = EMPTY_REPLY

    reply = await store.append_message(db, convo.id, "assistant", text)
    logger.info("Assistant replied in %s: %d messages → %d chars", convo.id, len(history), len(text))
    return reply
