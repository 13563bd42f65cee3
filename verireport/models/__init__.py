"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import RecordBase
from .conversation import Conversation, Message
from .file import FileRecord
from .verification import VerificationRecord, ImmutableRecordError, STATUS_VERIFIED
from .report import Report

__all__ = [
    "RecordBase",
    "Conversation", "Message",
    "FileRecord",
    "VerificationRecord", "ImmutableRecordError", "STATUS_VERIFIED",
    "Report",
]
