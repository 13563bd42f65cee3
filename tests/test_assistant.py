import asyncio

import pytest

from conftest import StubCompletion
from verireport.core.errors import ExternalServiceError
from verireport.models.file import FileRecord
from verireport.services import conversations
from verireport.services.assistant import (
    ASSISTANT_SYSTEM_PROMPT,
    EMPTY_REPLY,
    MAX_HISTORY_MESSAGES,
    build_chat_messages,
    build_file_context,
    generate_reply,
)
from verireport.services.extraction import NO_TEXT_SENTINEL


def test_history_follows_the_system_prompt():
    messages = build_chat_messages([("user", "hi"), ("assistant", "hello"), ("user", "total?")])

    assert messages[0] == {"role": "system", "content": ASSISTANT_SYSTEM_PROMPT}
    assert messages[1:] == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "total?"},
    ]


def test_only_recent_history_is_sent():
    history = [("user", f"m{i}") for i in range(MAX_HISTORY_MESSAGES + 10)]
    messages = build_chat_messages(history)
    assert len(messages) == MAX_HISTORY_MESSAGES + 1
    assert messages[-1]["content"] == f"m{MAX_HISTORY_MESSAGES + 9}"


def test_file_text_goes_into_the_system_prompt():
    messages = build_chat_messages(
        [("user", "total?")],
        [("sales.png", "Total: $1,234"), ("photo.jpg", NO_TEXT_SENTINEL), ("bundle.zip", None)],
    )
    system = messages[0]["content"]
    assert "[sales.png]\nTotal: $1,234" in system
    assert "photo.jpg" not in system
    assert "bundle.zip" not in system


def test_file_context_is_capped():
    context = build_file_context([("a.txt", "x" * 30_000), ("b.txt", "never reached")])
    assert len(context) == 20_000
    assert "b.txt" not in context


async def seed_conversation(session):
    convo = await conversations.create_conversation(session, "u1", "Sales")
    session.add(FileRecord(
        user_id="u1", conversation_id=convo.id, filename="sales.png", mime_type="image/png",
        storage_key="uploads/u1/sales.png", size_bytes=10, ocr_text="Total: $1,234",
    ))
    await conversations.append_message(session, convo.id, "user", "What was the total?")
    return convo


def test_reply_is_appended_as_assistant_message(open_db):
    stub = StubCompletion(replies=["The total was $1,234."])

    async def scenario():
        async with open_db() as factory:
            async with factory() as session:
                async with session.begin():
                    convo = await seed_conversation(session)
                    reply = await generate_reply(session, convo.id, stub, model="chat-model")
            async with factory() as session:
                return reply, await conversations.list_messages(session, convo.id)

    reply, messages = asyncio.run(scenario())

    assert reply.role == "assistant"
    assert reply.content == "The total was $1,234."
    assert [(m.role, m.content) for m in messages] == [
        ("user", "What was the total?"),
        ("assistant", "The total was $1,234."),
    ]
    sent, model = stub.calls[0]
    assert model == "chat-model"
    assert "Total: $1,234" in sent[0]["content"]
    assert sent[-1] == {"role": "user", "content": "What was the total?"}


def test_empty_reply_gets_a_placeholder(open_db):
    async def scenario():
        async with open_db() as factory:
            async with factory() as session:
                convo = await seed_conversation(session)
                return await generate_reply(session, convo.id, StubCompletion(replies=["  "]))

    assert asyncio.run(scenario()).content == EMPTY_REPLY


def test_failed_reply_appends_nothing(open_db):
    stub = StubCompletion(error=ExternalServiceError("down", service="llm", upstream_status=500))

    async def scenario():
        async with open_db() as factory:
            async with factory() as session:
                convo = await seed_conversation(session)
                with pytest.raises(ExternalServiceError):
                    await generate_reply(session, convo.id, stub)
                return await conversations.list_messages(session, convo.id)

    messages = asyncio.run(scenario())
    assert [m.role for m in messages] == ["user"]
