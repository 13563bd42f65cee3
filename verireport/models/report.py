"""
Generated reports. One row per generation call, never mutated.
"""

from sqlalchemy import String, Text, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class Report(RecordBase):
    __tablename__ = "reports"

    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    format: Mapped[str] = mapped_column(String, nullable=False)  # html, pdf
    storage_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    report_metadata: Mapped[dict] = mapped_column(JSON, nullable=True, default=dict)
    # message_count, file_count, summary_model
