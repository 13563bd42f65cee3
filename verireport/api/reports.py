"""
Reports API.

POST /v1/conversations/{conversation_id}/reports — Generate an HTML or PDF report
GET  /v1/conversations/{conversation_id}/reports — List reports for a conversation
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_report_generator, get_user
from ..models.report import Report
from ..services import conversations as store
from ..services.chain import format_timestamp
from ..services.reports import ReportGenerator, list_reports

logger = logging.getLogger(__name__)

reports_router = APIRouter(prefix="/conversations", tags=["reports"])


class ReportRequest(BaseModel):
    format: Literal["html", "pdf"] = "html"


class ReportOut(BaseModel):
    id: str
    conversation_id: str
    title: str
    format: str
    storage_key: str
    url: str
    metadata: dict = {}
    created_at: str


def report_out(r: Report) -> ReportOut:
    return ReportOut(
        id=r.id,
        conversation_id=r.conversation_id,
        title=r.title,
        format=r.format,
        storage_key=r.storage_key,
        url=r.url,
        metadata=r.report_metadata or {},
        created_at=format_timestamp(r.created_at),
    )


@reports_router.post("/{conversation_id}/reports", response_model=ReportOut)
async def generate_report(
    conversation_id: str,
    request: ReportRequest,
    user: AuthenticatedUser = Depends(get_user),
    generator: ReportGenerator = Depends(get_report_generator),
):
    """
    Summarize the conversation and publish a report document.

    Example:
        curl -X POST http://localhost:8000/v1/conversations/<id>/reports \\
             -H "X-User-Id: u1" -H "Content-Type: application/json" \\
             -d '{"format": "pdf"}'
    """
    report = await generator.generate(conversation_id, request.format, user.user_id)
    return report_out(report)


@reports_router.get("/{conversation_id}/reports", response_model=list[ReportOut])
async def get_reports(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    convo = await store.get_conversation(db, conversation_id)
    return [report_out(r) for r in await list_reports(db, convo.id)]
