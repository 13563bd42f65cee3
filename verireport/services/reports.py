"""
Report generation.

    snapshot (messages + files) → summarize → compose → render → publish → Report row

The snapshot is read once, in one transaction, bounded by the generation
time; messages appended while the report is being built are not included.
A summarization failure aborts the run before anything is stored.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import ValidationError
from ..models.report import Report
from .compositor import SUPPORTED_FORMATS, ReportFile, ReportMessage, compose_report, render_report
from .conversations import get_conversation, list_files, list_messages
from .llm import CompletionService
from .publisher import ReportPublisher
from .summarizer import summarize_conversation

logger = logging.getLogger(__name__)


@dataclass
class ReportSnapshot:
    conversation_id: str
    user_id: str
    taken_at: datetime
    messages: list[ReportMessage]
    files: list[ReportFile]


async def take_snapshot(
    session_factory: async_sessionmaker[AsyncSession],
    conversation_id: str,
    taken_at: Optional[datetime] = None,
) -> ReportSnapshot:
    taken_at = taken_at or datetime.now(timezone.utc)
    async with session_factory() as session:
        async with session.begin():
            convo = await get_conversation(session, conversation_id)
            messages = await list_messages(session, convo.id, until=taken_at)
            files = await list_files(session, convo.id, until=taken_at)

    return ReportSnapshot(
        conversation_id=convo.id,
        user_id=convo.user_id,
        taken_at=taken_at,
        messages=[ReportMessage(m.role, m.content or "", m.created_at) for m in messages],
        files=[
            ReportFile(
                filename=f.filename,
                size_bytes=f.size_bytes or 0,
                ocr_text=f.ocr_text,
                content_fingerprint=f.content_fingerprint,
                verified_at=f.verified_at,
            )
            for f in files
        ],
    )


class ReportGenerator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        completion: CompletionService,
        publisher: ReportPublisher,
        summary_model: Optional[str] = None,
        title: str = "AI Report",
    ):
        self._session_factory = session_factory
        self.completion = completion
        self.publisher = publisher
        self.summary_model = summary_model or None
        self.title = title

    async def generate(
        self,
        conversation_id: str,
        fmt: str = "html",
        requested_by: Optional[str] = None,
    ) -> Report:
        fmt = (fmt or "").lower()
        if fmt not in SUPPORTED_FORMATS:
            raise ValidationError(
                f"Unsupported report format '{fmt}'", {"supported": list(SUPPORTED_FORMATS)}
            )
        if not conversation_id:
            raise ValidationError("conversation_id is required")

        ensure_configured = getattr(self.completion, "ensure_configured", None)
        if callable(ensure_configured):
            ensure_configured()

        generated_at = datetime.now(timezone.utc)
        snapshot = await take_snapshot(self._session_factory, conversation_id, generated_at)

        summary = await summarize_conversation(
            [(m.role, m.content) for m in snapshot.messages],
            self.completion,
            model=self.summary_model,
        )

        doc = compose_report(
            summary,
            snapshot.messages,
            snapshot.files,
            generated_at=generated_at,
            title=self.title,
        )
        rendered = await asyncio.to_thread(render_report, doc, fmt)
        published = await self.publisher.publish(rendered, snapshot.conversation_id, generated_at)

        async with self._session_factory() as session:
            async with session.begin():
                report = Report(
                    conversation_id=snapshot.conversation_id,
                    user_id=requested_by or snapshot.user_id,
                    title=f"Report - {generated_at:%Y-%m-%d}",
                    format=fmt,
                    storage_key=published.storage_key,
                    url=published.url,
                    report_metadata={
                        "message_count": doc.message_count,
                        "file_count": doc.file_count,
                        "verified_file_count": sum(1 for f in doc.files if f.is_verified),
                        "summary_model": self.summary_model or "",
                        "size_bytes": len(rendered.content),
                    },
                    created_at=generated_at,
                )
                session.add(report)

        logger.info(
            "Report generated: %s (%s, %d messages, %d files)",
            report.id, fmt, doc.message_count, doc.file_count,
        )
        return report


async def list_reports(db: AsyncSession, conversation_id: str) -> list[Report]:
    result = await db.execute(
        select(Report)
        .where(Report.conversation_id == conversation_id)
        .order_by(Report.created_at.desc())
    )
    return list(result.scalars().all())
