import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from conftest import PNG_BYTES, StubCompletion
from verireport.core.errors import ExternalServiceError, NotFoundError, ValidationError
from verireport.models.conversation import Message
from verireport.models.report import Report
from verireport.services import conversations
from verireport.services.fingerprint import fingerprint_bytes
from verireport.services.publisher import ReportPublisher
from verireport.services.reports import ReportGenerator, list_reports, take_snapshot
from verireport.services.summarizer import EMPTY_TRANSCRIPT_SUMMARY
from verireport.services.verification import VerificationPipeline


async def seed_verified_conversation(factory, storage, seed_file):
    f = await seed_file(factory, storage, PNG_BYTES)
    pipeline = VerificationPipeline(factory, storage, StubCompletion(replies=["Total: $1,234"]))
    await pipeline.verify_file(f.id)
    async with factory() as session:
        async with session.begin():
            await conversations.append_message(session, f.conversation_id, "user", "Here are the Q3 numbers.")
            await conversations.append_message(session, f.conversation_id, "assistant", "Sales total $1,234.")
    return f


async def count_reports(factory):
    async with factory() as session:
        return (await session.execute(select(func.count()).select_from(Report))).scalar_one()


def test_html_report_end_to_end(open_db, storage, seed_file):
    stub = StubCompletion(replies=["Q3 sales were reviewed."])

    async def scenario():
        async with open_db() as factory:
            f = await seed_verified_conversation(factory, storage, seed_file)
            generator = ReportGenerator(factory, stub, ReportPublisher(storage), summary_model="sum-model")
            report = await generator.generate(f.conversation_id, "html", requested_by="u2")
            async with factory() as session:
                listed = await list_reports(session, f.conversation_id)
            return f, report, listed

    f, report, listed = asyncio.run(scenario())

    assert report.format == "html"
    assert report.user_id == "u2"
    assert report.title.startswith("Report - ")
    assert report.url == f"/v1/storage/{report.storage_key}"
    assert report.report_metadata["message_count"] == 2
    assert report.report_metadata["file_count"] == 1
    assert report.report_metadata["verified_file_count"] == 1
    assert report.report_metadata["summary_model"] == "sum-model"
    assert [r.id for r in listed] == [report.id]

    html = storage.path_for(report.storage_key).read_text(encoding="utf-8")
    assert "Q3 sales were reviewed." in html
    assert "Here are the Q3 numbers." in html
    assert "sales.png" in html
    assert fingerprint_bytes(PNG_BYTES) in html
    assert "Total: $1,234" in html
    assert html.index("Here are the Q3 numbers.") < html.index("Sales total $1,234.")

    messages, model = stub.calls[0]
    assert model == "sum-model"
    assert "USER: Here are the Q3 numbers." in messages[1]["content"]


def test_pdf_report(open_db, storage, seed_file):
    async def scenario():
        async with open_db() as factory:
            f = await seed_verified_conversation(factory, storage, seed_file)
            generator = ReportGenerator(factory, StubCompletion(replies=["Summary."]), ReportPublisher(storage))
            return await generator.generate(f.conversation_id, "PDF")

    report = asyncio.run(scenario())

    assert report.format == "pdf"
    assert report.storage_key.endswith(".pdf")
    assert report.user_id == "u1"
    assert storage.path_for(report.storage_key).read_bytes().startswith(b"%PDF")


def test_summary_failure_stores_nothing(open_db, storage, seed_file):
    stub = StubCompletion(error=ExternalServiceError("down", service="llm", upstream_status=500))

    async def scenario():
        async with open_db() as factory:
            f = await seed_verified_conversation(factory, storage, seed_file)
            generator = ReportGenerator(factory, stub, ReportPublisher(storage))
            with pytest.raises(ExternalServiceError):
                await generator.generate(f.conversation_id, "html")
            return await count_reports(factory)

    assert asyncio.run(scenario()) == 0
    assert not storage.path_for("reports").exists()


def test_empty_conversation_gets_placeholder_summary(open_db, storage):
    stub = StubCompletion(replies=["unused"])

    async def scenario():
        async with open_db() as factory:
            async with factory() as session:
                async with session.begin():
                    convo = await conversations.create_conversation(session, "u1", "Empty")
            generator = ReportGenerator(factory, stub, ReportPublisher(storage))
            return await generator.generate(convo.id, "html")

    report = asyncio.run(scenario())

    assert stub.calls == []
    assert report.report_metadata["message_count"] == 0
    html = storage.path_for(report.storage_key).read_text(encoding="utf-8")
    assert EMPTY_TRANSCRIPT_SUMMARY in html
    assert "Attached Files" not in html


def test_invalid_requests(open_db, storage):
    stub = StubCompletion()

    async def scenario():
        async with open_db() as factory:
            generator = ReportGenerator(factory, stub, ReportPublisher(storage))
            with pytest.raises(ValidationError):
                await generator.generate("c1", "docx")
            with pytest.raises(ValidationError):
                await generator.generate("", "html")
            with pytest.raises(NotFoundError):
                await generator.generate("missing", "html")
            return await count_reports(factory)

    assert asyncio.run(scenario()) == 0
    assert stub.calls == []


def test_snapshot_excludes_messages_after_the_cutoff(open_db, storage, seed_file):
    cutoff = datetime.now(timezone.utc)

    async def scenario():
        async with open_db() as factory:
            async with factory() as session:
                async with session.begin():
                    convo = await conversations.create_conversation(session, "u1")
                    session.add(Message(
                        conversation_id=convo.id, role="user", content="before",
                        sequence_number=1, created_at=cutoff - timedelta(seconds=5),
                    ))
                    session.add(Message(
                        conversation_id=convo.id, role="assistant", content="after",
                        sequence_number=2, created_at=cutoff + timedelta(seconds=5),
                    ))
            return await take_snapshot(factory, convo.id, cutoff)

    snapshot = asyncio.run(scenario())

    assert [m.content for m in snapshot.messages] == ["before"]
    assert snapshot.user_id == "u1"
