"""
Text extraction from uploaded files.
- Vision model (via the completion service) for images
- pdfplumber for PDFs (free, local); scanned PDFs fall back to the vision model
- python-docx for Word documents
- UTF-8 decode for plain text

The vision adapter does not look at MIME types; callers pick the extractor
with `extraction_method()` and skip files that carry no text.
"""

import base64
import logging
from io import BytesIO
from typing import Optional

from ..core.errors import ValidationError
from .llm import CompletionService

logger = logging.getLogger(__name__)

NO_TEXT_SENTINEL = "No text detected"

OCR_PROMPT = (
    "Extract all text from this image. Provide the text in a structured format, "
    "including any labels, values, and relevant information you can identify. "
    f"If there's no text, say '{NO_TEXT_SENTINEL}'."
)

METHOD_VISION = "vision"
METHOD_PDF = "pdfplumber"
METHOD_PLAINTEXT = "plaintext"
METHOD_DOCX = "python-docx"
METHOD_PDF_VISION = "pdfplumber+vision"

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Less pdfplumber text than this and the PDF is treated as scanned
LOW_TEXT_THRESHOLD = 100
SCAN_MAX_PAGES = 5
SCAN_RESOLUTION = 150

PLAINTEXT_MIME_TYPES = {"application/json", "application/xml", "application/csv"}


def extraction_method(mime_type: str) -> Optional[str]:
    """Which extractor applies to a MIME type. None → file is not text-bearing."""
    mime_type = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime_type.startswith("image/"):
        return METHOD_VISION
    if mime_type == "application/pdf":
        return METHOD_PDF
    if mime_type == DOCX_MIME_TYPE:
        return METHOD_DOCX
    if mime_type.startswith("text/") or mime_type in PLAINTEXT_MIME_TYPES:
        return METHOD_PLAINTEXT
    return None


def to_data_url(file_bytes: bytes, mime_type: str) -> str:
    """Inline the bytes for models that cannot reach a private storage URL."""
    encoded = base64.b64encode(file_bytes).decode("utf-8")
    return f"data:{mime_type or 'application/octet-stream'};base64,{encoded}"


def is_no_text(text: Optional[str]) -> bool:
    return (text or "").strip().rstrip(".").lower() == NO_TEXT_SENTINEL.lower()


class VisionTextExtractor:
    """OCR-style extraction: sends the file URL to a vision-capable model."""

    def __init__(self, completion: CompletionService, model: Optional[str] = None):
        self.completion = completion
        self.model = model

    def build_messages(self, *file_urls: str) -> list[dict]:
        content = [{"type": "text", "text": OCR_PROMPT}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in file_urls)
        return [{"role": "user", "content": content}]

    async def extract(self, file_url: str, mime_type: str = "") -> str:
        """
        Returns the extracted text, or NO_TEXT_SENTINEL when the image has none.
        ExternalServiceError from the completion service propagates unchanged.
        """
        if not file_url:
            raise ValidationError("file_url is required for text extraction")
        return await self._complete(file_url)

    async def extract_pages(self, page_urls: list[str]) -> str:
        """All pages of a scanned document in one request."""
        if not page_urls:
            raise ValidationError("At least one page image is required for text extraction")
        return await self._complete(*page_urls)

    async def _complete(self, *file_urls: str) -> str:
        text = await self.completion.complete(self.build_messages(*file_urls), model=self.model)
        text = (text or "").strip()
        if not text:
            logger.info("Vision model returned empty text, using sentinel")
            return NO_TEXT_SENTINEL
        return text


def extract_pdf_text(file_bytes: bytes) -> str:
    """Extract text from PDF using pdfplumber (local, free)."""
    import pdfplumber

    pages_text = []
    with pdfplumber.open(BytesIO(file_bytes)) as pdf:
        for page in pdf.pages:
            text = page.extract_text() or ""
            # Also try table extraction
            tables = page.extract_tables()
            if tables:
                for table in tables:
                    for row in table:
                        if row:
                            text += "\n" + " | ".join(
                                str(cell) if cell else "" for cell in row
                            )
            pages_text.append(text)
    text = "\n\n".join(pages_text).strip()
    return text or NO_TEXT_SENTINEL


def decode_text(file_bytes: bytes) -> str:
    text = file_bytes.decode("utf-8", errors="replace").strip()
    return text or NO_TEXT_SENTINEL


def is_low_text(text: Optional[str]) -> bool:
    return is_no_text(text) or len((text or "").strip()) < LOW_TEXT_THRESHOLD


def render_pdf_pages(
    file_bytes: bytes, max_pages: int = SCAN_MAX_PAGES, resolution: int = SCAN_RESOLUTION
) -> list[bytes]:
    """Rasterize the first pages of a PDF to PNG for the vision model."""
    import pdfplumber

    images = []
    with pdfplumber.open(BytesIO(file_bytes)) as pdf:
        for page in pdf.pages[:max_pages]:
            buffer = BytesIO()
            page.to_image(resolution=resolution).save(buffer, format="PNG")
            images.append(buffer.getvalue())
    return images


def extract_docx_text(file_bytes: bytes) -> str:
    """Paragraphs, then table rows as ` | `-joined cells."""
    import docx

    document = docx.Document(BytesIO(file_bytes))
    parts = [para.text for para in document.paragraphs if para.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))
    text = "\n\n".join(parts).strip()
    return text or NO_TEXT_SENTINEL
