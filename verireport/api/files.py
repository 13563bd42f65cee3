"""
Files API — upload and verification.

POST /v1/conversations/{conversation_id}/files — Upload via multipart form (optionally verify)
POST /v1/files/{file_id}/verify                — Run the verification pipeline
POST /v1/files/verify                          — Verify several files concurrently
GET  /v1/files/{file_id}/verification          — Latest record + full history
GET  /v1/files/{file_id}/integrity             — Re-fingerprint stored bytes and compare
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import (
    get_db,
    get_storage_dep,
    get_user,
    get_verification_pipeline,
)
from ..core.errors import NotFoundError, PipelineError, ValidationError
from ..core.storage import StorageBackend, build_upload_key, guess_content_type
from ..models.file import FileRecord
from ..models.verification import VerificationRecord
from ..services import conversations as store
from ..services.chain import format_timestamp
from ..services.fingerprint import fingerprint_chunks
from ..services.verification import VerificationOutcome, VerificationPipeline
from .conversations import FileOut, file_out

logger = logging.getLogger(__name__)

files_router = APIRouter(tags=["files"])

# ── Size limits ───────────────────────────────────────────────────────

MAX_UPLOAD_SIZE = 50 * 1024 * 1024   # 50 MB
UPLOAD_CHUNK_SIZE = 1024 * 1024

# ── Allowed file types ────────────────────────────────────────────────

ALLOWED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".tiff"}
ALLOWED_DOC_EXTENSIONS = {".pdf", ".docx", ".doc", ".txt", ".md", ".csv", ".json", ".xlsx"}
ALLOWED_EXTENSIONS = ALLOWED_IMAGE_EXTENSIONS | ALLOWED_DOC_EXTENSIONS


# ── Response models ───────────────────────────────────────────────────

class UploadResponse(BaseModel):
    file: FileOut
    received_fingerprint: str
    verification: Optional[dict] = None


class BatchVerifyRequest(BaseModel):
    file_ids: list[str]


class VerificationRecordOut(BaseModel):
    id: str
    file_id: str
    content_fingerprint: str
    chain_fingerprint: str
    previous_chain_fingerprint: Optional[str] = None
    verified_by: str
    status: str
    verified_at: str
    metadata: dict = {}


class VerificationHistory(BaseModel):
    file_id: str
    latest: Optional[VerificationRecordOut] = None
    history: list[VerificationRecordOut] = []


def record_out(r: VerificationRecord) -> VerificationRecordOut:
    return VerificationRecordOut(
        id=r.id,
        file_id=r.file_id,
        content_fingerprint=r.content_fingerprint,
        chain_fingerprint=r.chain_fingerprint,
        previous_chain_fingerprint=r.previous_chain_fingerprint,
        verified_by=r.verified_by,
        status=r.status,
        verified_at=format_timestamp(r.verified_at),
        metadata=r.metadata_ or {},
    )


# ── POST /v1/conversations/{conversation_id}/files ────────────────────

@files_router.post("/conversations/{conversation_id}/files", response_model=UploadResponse)
async def upload_file(
    conversation_id: str,
    file: UploadFile = File(..., description="File to attach to the conversation"),
    verify: bool = Form(False),
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage_dep),
    pipeline: VerificationPipeline = Depends(get_verification_pipeline),
):
    """
    Upload a file into a conversation.

    With verify=true the verification pipeline runs right after the upload;
    a verification failure is reported in the response and the upload is kept.

    Example:
        curl -X POST http://localhost:8000/v1/conversations/<id>/files \\
             -H "X-User-Id: u1" -F "file=@scan.png" -F "verify=true"
    """
    convo = await store.get_conversation(db, conversation_id)

    filename = file.filename or "upload"
    _validate_extension(filename)

    chunks = []
    size = 0
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > MAX_UPLOAD_SIZE:
            raise ValidationError(
                f"File too large (max {MAX_UPLOAD_SIZE // (1024 * 1024)}MB)",
                {"size_bytes": size},
            )
        chunks.append(chunk)
    if size == 0:
        raise ValidationError("Empty file")
    received_fingerprint = fingerprint_chunks(chunks)
    file_bytes = b"".join(chunks)

    mime_type = file.content_type or guess_content_type(filename)
    if mime_type == "application/octet-stream":
        mime_type = guess_content_type(filename)

    key = build_upload_key(user.user_id, filename)
    await storage.put(key, file_bytes, mime_type)

    record = FileRecord(
        user_id=user.user_id,
        conversation_id=convo.id,
        filename=filename,
        mime_type=mime_type,
        storage_key=key,
        size_bytes=len(file_bytes),
    )
    db.add(record)
    await db.flush()
    # The pipeline works in its own transactions and must see the row
    await db.commit()

    logger.info(
        "Uploaded: %s (%d bytes, %s) → %s", filename, len(file_bytes), mime_type, record.id,
    )

    verification = None
    if verify:
        try:
            result = await pipeline.verify_file(record.id, user.user_id)
            if result.content_fingerprint != received_fingerprint:
                logger.error(
                    "Stored bytes differ from upload for %s: %s != %s",
                    record.id, result.content_fingerprint[:12], received_fingerprint[:12],
                )
            outcome = VerificationOutcome(record.id, result=result)
        except PipelineError as e:
            logger.warning("Verification after upload failed for %s: %s", record.id, e.message)
            outcome = VerificationOutcome(record.id, error=e)
        verification = outcome.to_dict()
        await db.refresh(record)

    return UploadResponse(
        file=file_out(record), received_fingerprint=received_fingerprint, verification=verification
    )


# ── Verification ──────────────────────────────────────────────────────

@files_router.post("/files/verify")
async def verify_files(
    request: BatchVerifyRequest,
    user: AuthenticatedUser = Depends(get_user),
    pipeline: VerificationPipeline = Depends(get_verification_pipeline),
):
    """Verify several files concurrently. Each file reports its own outcome."""
    if not request.file_ids:
        raise ValidationError("file_ids must not be empty")
    outcomes = await pipeline.verify_files(request.file_ids, user.user_id)
    return {"results": [o.to_dict() for o in outcomes]}


@files_router.post("/files/{file_id}/verify")
async def verify_file(
    file_id: str,
    user: AuthenticatedUser = Depends(get_user),
    pipeline: VerificationPipeline = Depends(get_verification_pipeline),
):
    result = await pipeline.verify_file(file_id, user.user_id)
    return {"success": True, "verification": result.to_dict()}


@files_router.get("/files/{file_id}/verification", response_model=VerificationHistory)
async def get_verification(
    file_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    pipeline: VerificationPipeline = Depends(get_verification_pipeline),
):
    if await db.get(FileRecord, file_id) is None:
        raise NotFoundError(f"File not found: {file_id}", {"file_id": file_id})

    history = await pipeline.store.list_verifications(file_id)
    return VerificationHistory(
        file_id=file_id,
        latest=record_out(history[-1]) if history else None,
        history=[record_out(r) for r in history],
    )


@files_router.get("/files/{file_id}/integrity")
async def check_integrity(
    file_id: str,
    user: AuthenticatedUser = Depends(get_user),
    pipeline: VerificationPipeline = Depends(get_verification_pipeline),
):
    report = await pipeline.audit_file(file_id)
    return report.to_dict()


# ── Helpers ───────────────────────────────────────────────────────────

def _validate_extension(filename: str) -> None:
    """Validate file extension against allowed types."""
    ext = Path(filename).suffix.lower()
    if ext and ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"File type '{ext}' not allowed. "
            f"Supported: images ({', '.join(sorted(ALLOWED_IMAGE_EXTENSIONS))}), "
            f"documents ({', '.join(sorted(ALLOWED_DOC_EXTENSIONS))})",
        )
