"""
Uploaded files. Created on upload; the verification pipeline fills in
ocr_text / content_fingerprint / verified_at.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, BigInteger, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class FileRecord(RecordBase):
    __tablename__ = "files"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String, nullable=False)
    mime_type: Mapped[str] = mapped_column(String, nullable=False, default="application/octet-stream")
    storage_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Denormalized from the latest VerificationRecord
    ocr_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
