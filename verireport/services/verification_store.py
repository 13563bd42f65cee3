"""
Verification store — persists verification records and the file's
denormalized verification fields.

The record insert and the file update happen in one database transaction:
both commit or neither does. Records are append-only; a re-verification adds
a new row and the file row always reflects the latest committed attempt.

`record_attestation` reads the predecessor record and builds the chain value
while holding the file row lock (SELECT ... FOR UPDATE on PostgreSQL) and a
per-file in-process lock, so concurrent re-verifications of one file append
to a single linear chain instead of forking it.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import NotFoundError, ValidationError
from ..models.file import FileRecord
from ..models.verification import VerificationRecord, STATUS_VERIFIED
from .chain import attest
from .fingerprint import is_fingerprint

logger = logging.getLogger(__name__)

# SQLite ignores FOR UPDATE; this covers writers sharing one process.
_file_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _file_lock(file_id: str) -> asyncio.Lock:
    lock = _file_locks.get(file_id)
    if lock is None:
        lock = asyncio.Lock()
        _file_locks[file_id] = lock
    return lock


def _latest_query(file_id: str):
    return (
        select(VerificationRecord)
        .where(VerificationRecord.file_id == file_id)
        .order_by(VerificationRecord.verified_at.desc(), VerificationRecord.created_at.desc())
        .limit(1)
    )


class VerificationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record_verification(
        self,
        file_id: str,
        content_fingerprint: str,
        chain_fingerprint: str,
        verified_by: str,
        verified_at: datetime,
        ocr_text: Optional[str] = None,
        metadata: Optional[dict] = None,
        previous_chain_fingerprint: Optional[str] = None,
    ) -> VerificationRecord:
        """Persist a precomputed attestation."""
        self._check(file_id, content_fingerprint, verified_by)
        if not is_fingerprint(chain_fingerprint):
            raise ValidationError("chain_fingerprint must be a SHA-256 hex digest")

        async with _file_lock(file_id):
            async with self._session_factory() as session:
                async with session.begin():
                    file = await self._lock_file(session, file_id)
                    record = self._apply(
                        session, file, content_fingerprint, chain_fingerprint,
                        previous_chain_fingerprint, verified_at,
                        verified_by, ocr_text, dict(metadata or {}),
                    )
                    await session.flush()

        self._log(record)
        return record

    async def record_attestation(
        self,
        file_id: str,
        content_fingerprint: str,
        verified_by: str,
        ocr_text: Optional[str] = None,
        metadata: Optional[dict] = None,
        chain_prior_records: bool = False,
    ) -> VerificationRecord:
        """
        Attest a content fingerprint now and persist it.

        With chain_prior_records the latest committed record's chain value is
        folded in; it is read after the file row is locked, so the predecessor
        cannot change between the read and the insert.
        """
        self._check(file_id, content_fingerprint, verified_by)

        async with _file_lock(file_id):
            async with self._session_factory() as session:
                async with session.begin():
                    file = await self._lock_file(session, file_id)

                    previous = None
                    if chain_prior_records:
                        latest = (await session.execute(_latest_query(file_id))).scalar_one_or_none()
                        previous = latest.chain_fingerprint if latest else None

                    attestation = attest(content_fingerprint, previous_chain_fingerprint=previous)
                    metadata = {**(metadata or {}), "processed_at": attestation.timestamp}
                    record = self._apply(
                        session, file, attestation.content_fingerprint,
                        attestation.chain_fingerprint, attestation.previous_chain_fingerprint,
                        attestation.verified_at, verified_by, ocr_text, metadata,
                    )
                    await session.flush()

        self._log(record)
        return record

    @staticmethod
    def _check(file_id: str, content_fingerprint: str, verified_by: str) -> None:
        if not file_id:
            raise ValidationError("file_id is required")
        if not is_fingerprint(content_fingerprint):
            raise ValidationError("content_fingerprint must be a SHA-256 hex digest")
        if not verified_by:
            raise ValidationError("verified_by is required")

    @staticmethod
    async def _lock_file(session: AsyncSession, file_id: str) -> FileRecord:
        file = await session.get(FileRecord, file_id, with_for_update=True)
        if file is None:
            raise NotFoundError(f"File not found: {file_id}", {"file_id": file_id})
        return file

    @staticmethod
    def _apply(
        session: AsyncSession,
        file: FileRecord,
        content_fingerprint: str,
        chain_fingerprint: str,
        previous_chain_fingerprint: Optional[str],
        verified_at: datetime,
        verified_by: str,
        ocr_text: Optional[str],
        metadata: dict,
    ) -> VerificationRecord:
        record = VerificationRecord(
            file_id=file.id,
            content_fingerprint=content_fingerprint,
            chain_fingerprint=chain_fingerprint,
            previous_chain_fingerprint=previous_chain_fingerprint or None,
            verified_by=verified_by,
            status=STATUS_VERIFIED,
            verified_at=verified_at,
            metadata_=metadata,
        )
        session.add(record)

        file.ocr_text = ocr_text
        file.content_fingerprint = content_fingerprint
        file.verified_at = verified_at
        return record

    @staticmethod
    def _log(record: VerificationRecord) -> None:
        logger.info(
            "Verification recorded: file=%s fp=%s… chain=%s…",
            record.file_id, record.content_fingerprint[:12], record.chain_fingerprint[:12],
        )

    async def get_verification(self, file_id: str) -> Optional[VerificationRecord]:
        """Latest verification record for a file, or None."""
        if not file_id:
            raise ValidationError("file_id is required")
        async with self._session_factory() as session:
            result = await session.execute(_latest_query(file_id))
            return result.scalar_one_or_none()

    async def list_verifications(self, file_id: str) -> list[VerificationRecord]:
        """Full history for a file, oldest first."""
        if not file_id:
            raise ValidationError("file_id is required")
        async with self._session_factory() as session:
            result = await session.execute(
                select(VerificationRecord)
                .where(VerificationRecord.file_id == file_id)
                .order_by(VerificationRecord.verified_at.asc(), VerificationRecord.created_at.asc())
            )
            return list(result.scalars().all())
