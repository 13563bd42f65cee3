"""
File verification pipeline.

    stored bytes → fingerprint → text extraction → store (attested under the file lock)

The fingerprint is always computed from the bytes read back from storage, so
the value shown to the user matches what is stored. Any failure before the
store step leaves no record behind; the store step itself is transactional.
Each file is an independent unit of work; several can run concurrently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import NotFoundError, PipelineError, ValidationError
from ..core.storage import StorageBackend
from ..models.base import as_utc
from ..models.file import FileRecord
from .chain import format_timestamp, verify_attestation
from .extraction import (
    METHOD_DOCX,
    METHOD_PDF,
    METHOD_PDF_VISION,
    METHOD_PLAINTEXT,
    METHOD_VISION,
    VisionTextExtractor,
    decode_text,
    extract_docx_text,
    extract_pdf_text,
    extraction_method,
    is_low_text,
    is_no_text,
    render_pdf_pages,
    to_data_url,
)
from .fingerprint import fingerprint_bytes
from .llm import CompletionService
from .verification_store import VerificationStore

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    file_id: str
    record_id: str
    content_fingerprint: str
    chain_fingerprint: str
    verified_at: datetime
    verified_by: str
    extractor: str
    ocr_text: Optional[str] = None
    previous_chain_fingerprint: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "record_id": self.record_id,
            "content_fingerprint": self.content_fingerprint,
            "chain_fingerprint": self.chain_fingerprint,
            "previous_chain_fingerprint": self.previous_chain_fingerprint,
            "verified_at": format_timestamp(self.verified_at),
            "verified_by": self.verified_by,
            "extractor": self.extractor,
            "ocr_text": self.ocr_text,
        }


@dataclass
class VerificationOutcome:
    file_id: str
    result: Optional[VerificationResult] = None
    error: Optional[PipelineError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"file_id": self.file_id, "success": False, "error": self.error.to_dict()}
        return {"file_id": self.file_id, "success": True, "verification": self.result.to_dict()}


@dataclass
class IntegrityReport:
    file_id: str
    verified: bool
    current_fingerprint: str
    recorded_fingerprint: Optional[str] = None
    chain_valid: Optional[bool] = None
    details: dict = field(default_factory=dict)

    @property
    def matches(self) -> bool:
        return self.verified and self.current_fingerprint == self.recorded_fingerprint

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "verified": self.verified,
            "matches": self.matches,
            "current_fingerprint": self.current_fingerprint,
            "recorded_fingerprint": self.recorded_fingerprint,
            "chain_valid": self.chain_valid,
            **self.details,
        }


class VerificationPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: StorageBackend,
        completion: CompletionService,
        ocr_model: Optional[str] = None,
        use_ocr: bool = True,
        chain_prior_records: bool = False,
    ):
        self._session_factory = session_factory
        self.storage = storage
        self.completion = completion
        self.store = VerificationStore(session_factory)
        self.extractor = VisionTextExtractor(completion, model=ocr_model or None)
        self.use_ocr = use_ocr
        self.chain_prior_records = chain_prior_records

    async def _load_file(self, file_id: str) -> FileRecord:
        if not file_id or not file_id.strip():
            raise ValidationError("file_id is required")
        async with self._session_factory() as session:
            file = await session.get(FileRecord, file_id)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}", {"file_id": file_id})
        return file

    async def _extract(self, file: FileRecord, data: bytes, method: Optional[str]) -> tuple[Optional[str], dict]:
        if method == METHOD_VISION:
            url = await self.storage.get_url(file.storage_key)
            if not url.startswith(("http://", "https://")):
                url = to_data_url(data, file.mime_type)
            return await self.extractor.extract(url, file.mime_type), {}

        if method == METHOD_PDF:
            try:
                text = await asyncio.to_thread(extract_pdf_text, data)
            except Exception as e:
                # Local parse failure: file is still fingerprinted and attested
                logger.error("pdfplumber extraction failed for %s: %s", file.id, e)
                return None, {"extraction_error": str(e)[:200]}
            if is_low_text(text):
                return await self._extract_scanned_pdf(file, data, text)
            return text, {}

        if method == METHOD_DOCX:
            try:
                return await asyncio.to_thread(extract_docx_text, data), {}
            except Exception as e:
                logger.error("DOCX extraction failed for %s: %s", file.id, e)
                return None, {"extraction_error": str(e)[:200]}

        if method == METHOD_PLAINTEXT:
            return decode_text(data), {}

        return None, {}

    async def _extract_scanned_pdf(self, file: FileRecord, data: bytes, text: str) -> tuple[str, dict]:
        """Little or no text layer: send page images to the vision model, keep the longer text."""
        try:
            pages = await asyncio.to_thread(render_pdf_pages, data)
            ocr_text = await self.extractor.extract_pages([to_data_url(p, "image/png") for p in pages])
        except PipelineError as e:
            logger.warning("Vision fallback failed for %s: %s", file.id, e.message)
            return text, {"ocr_error": e.to_dict()}
        except Exception as e:
            logger.error("PDF page rendering failed for %s: %s", file.id, e)
            return text, {"ocr_error": {"type": "render_error", "message": str(e)[:200]}}

        if not is_no_text(ocr_text) and (is_no_text(text) or len(ocr_text.strip()) > len(text.strip())):
            logger.info("Scanned PDF %s read by the vision model (%d pages)", file.id, len(pages))
            return ocr_text, {"extractor": METHOD_PDF_VISION, "scanned_pages": len(pages)}
        return text, {}

    async def verify_file(self, file_id: str, verified_by: Optional[str] = None) -> VerificationResult:
        file = await self._load_file(file_id)
        method = extraction_method(file.mime_type) if self.use_ocr else None

        # Fail on missing credentials before touching storage or the network
        if method == METHOD_VISION:
            ensure_configured = getattr(self.completion, "ensure_configured", None)
            if callable(ensure_configured):
                ensure_configured()

        start = time.monotonic()
        data = await self.storage.get(file.storage_key)
        content_fingerprint = fingerprint_bytes(data)
        if file.size_bytes and len(data) != file.size_bytes:
            logger.warning(
                "Stored size differs from upload size for %s: %d != %d",
                file.id, len(data), file.size_bytes,
            )

        ocr_text, extra = await self._extract(file, data, method)

        elapsed_ms = int((time.monotonic() - start) * 1000)

        if not self.use_ocr:
            extractor = "disabled"
        else:
            extractor = extra.pop("extractor", None) or method or "skipped"

        metadata = {
            "ocr_length": len(ocr_text or ""),
            "ocr_empty": ocr_text is not None and is_no_text(ocr_text),
            "processing_ms": elapsed_ms,
            "extractor": extractor,
            "mime_type": file.mime_type,
            "size_bytes": len(data),
            **extra,
        }
        principal = verified_by or file.user_id

        # Chain value and timestamp are fixed under the store lock
        record = await self.store.record_attestation(
            file_id=file.id,
            content_fingerprint=content_fingerprint,
            verified_by=principal,
            ocr_text=ocr_text,
            metadata=metadata,
            chain_prior_records=self.chain_prior_records,
        )

        logger.info(
            "File verified: %s (%s, %d bytes, extractor=%s, %dms)",
            file.id, content_fingerprint[:12], len(data), extractor, elapsed_ms,
        )
        return VerificationResult(
            file_id=file.id,
            record_id=record.id,
            content_fingerprint=record.content_fingerprint,
            chain_fingerprint=record.chain_fingerprint,
            verified_at=record.verified_at,
            verified_by=principal,
            extractor=extractor,
            ocr_text=ocr_text,
            previous_chain_fingerprint=record.previous_chain_fingerprint,
        )

    async def verify_files(
        self, file_ids: Iterable[str], verified_by: Optional[str] = None
    ) -> list[VerificationOutcome]:
        """Verify several files concurrently. One failure does not affect the others."""

        async def _one(file_id: str) -> VerificationOutcome:
            try:
                return VerificationOutcome(file_id, result=await self.verify_file(file_id, verified_by))
            except PipelineError as e:
                logger.warning("Verification failed for %s: %s", file_id, e.message)
                return VerificationOutcome(file_id, error=e)

        unique_ids = list(dict.fromkeys(file_ids))
        return list(await asyncio.gather(*(_one(f) for f in unique_ids)))

    async def audit_file(self, file_id: str) -> IntegrityReport:
        """Re-fingerprint the stored bytes and compare with the latest record."""
        file = await self._load_file(file_id)
        data = await self.storage.get(file.storage_key)
        current = fingerprint_bytes(data)

        record = await self.store.get_verification(file.id)
        if record is None:
            return IntegrityReport(file_id=file.id, verified=False, current_fingerprint=current)

        chain_valid = verify_attestation(
            record.content_fingerprint,
            as_utc(record.verified_at),
            record.chain_fingerprint,
            record.previous_chain_fingerprint,
        )
        return IntegrityReport(
            file_id=file.id,
            verified=True,
            current_fingerprint=current,
            recorded_fingerprint=record.content_fingerprint,
            chain_valid=chain_valid,
            details={"record_id": record.id, "verified_at": format_timestamp(record.verified_at)},
        )
