"""
Report publisher — writes rendered reports to blob storage.

Keys are scoped by conversation and generation time plus a random suffix, so
concurrent generations for one conversation never target the same key. The
storage layer refuses to overwrite; a collision surfaces as StorageError.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..core.errors import ValidationError
from ..core.storage import StorageBackend
from .compositor import RenderedReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishedReport:
    storage_key: str
    url: str


def build_report_key(conversation_id: str, generated_at: datetime, extension: str) -> str:
    """reports/{conversation_id}/{YYYYMMDDTHHMMSSffffffZ}-{random}.{ext}"""
    if not conversation_id:
        raise ValidationError("conversation_id is required")
    if generated_at.tzinfo is None:
        generated_at = generated_at.replace(tzinfo=timezone.utc)
    stamp = generated_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"reports/{conversation_id}/{stamp}-{uuid.uuid4().hex[:8]}.{extension.lstrip('.')}"


class ReportPublisher:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    async def publish(
        self,
        rendered: RenderedReport,
        conversation_id: str,
        generated_at: Optional[datetime] = None,
    ) -> PublishedReport:
        generated_at = generated_at or datetime.now(timezone.utc)
        key = build_report_key(conversation_id, generated_at, rendered.extension)

        await self.storage.put(key, rendered.content, rendered.media_type)
        url = await self.storage.get_url(key)

        logger.info(
            "Report published: %s (%.1f KB)", key, len(rendered.content) / 1024,
        )
        return PublishedReport(storage_key=key, url=url)
