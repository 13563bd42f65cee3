"""
Verification records — append-only audit trail of file attestations.
Rows are written once and never updated.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, JSON, DateTime, ForeignKey, Index, event
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase

STATUS_VERIFIED = "verified"


class ImmutableRecordError(RuntimeError):
    """Raised when something tries to update a persisted verification record."""


class VerificationRecord(RecordBase):
    __tablename__ = "verification_records"
    __table_args__ = (
        Index("ix_verification_records_file_verified", "file_id", "verified_at"),
    )

    file_id: Mapped[str] = mapped_column(
        String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    # Not unique: identical bytes attested in the same millisecond hash alike
    chain_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Only set when FF_CHAIN_PRIOR_RECORDS folds the prior record into the hash
    previous_chain_fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    verified_by: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=STATUS_VERIFIED)
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSON, nullable=True, default=dict
    )
    # ocr_length, processing_ms, extractor, mime_type


@event.listens_for(VerificationRecord, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"Verification record {target.id} is immutable; re-verify to append a new one"
    )
