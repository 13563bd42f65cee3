"""
Report compositor — merges summary, transcript and file verification data
into one document, rendered as flowing HTML or a paginated PDF.

Section order (both formats):
  1. Title, then metadata (generated at, message count, file count)
  2. Executive Summary (always)
  3. Conversation Transcript (one block per message, input order)
  4. Attached Files (only when there are files): name + size, verified badge
     with fingerprint and timestamp, OCR sub-block
"""

import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from ..core.errors import ValidationError
from .chain import format_timestamp

FORMAT_HTML = "html"
FORMAT_PDF = "pdf"
SUPPORTED_FORMATS = (FORMAT_HTML, FORMAT_PDF)

SECTION_SUMMARY = "Executive Summary"
SECTION_TRANSCRIPT = "Conversation Transcript"
SECTION_FILES = "Attached Files"
SECTION_INFO = "Report Information"
VERIFIED_BADGE = "Verified"
OCR_LABEL = "Extracted Text (OCR)"


@dataclass(frozen=True)
class ReportMessage:
    role: str
    content: str
    created_at: Optional[datetime] = None

    @property
    def role_label(self) -> str:
        return (self.role or "unknown").capitalize()


@dataclass(frozen=True)
class ReportFile:
    filename: str
    size_bytes: int
    ocr_text: Optional[str] = None
    content_fingerprint: Optional[str] = None
    verified_at: Optional[datetime] = None

    @property
    def size_label(self) -> str:
        return f"{self.size_bytes / 1024:.2f} KB"

    @property
    def heading(self) -> str:
        return f"{self.filename} ({self.size_label})"

    @property
    def is_verified(self) -> bool:
        return bool(self.content_fingerprint)

    @property
    def has_ocr(self) -> bool:
        return bool(self.ocr_text and self.ocr_text.strip())

    @property
    def verified_at_label(self) -> Optional[str]:
        return format_timestamp(self.verified_at) if self.verified_at else None


@dataclass
class ReportDocument:
    title: str
    generated_at: datetime
    summary: str
    messages: list[ReportMessage] = field(default_factory=list)
    files: list[ReportFile] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def generated_label(self) -> str:
        return self.generated_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    def metadata_lines(self) -> list[tuple[str, str]]:
        return [
            ("Generated", self.generated_label),
            ("Messages", str(self.message_count)),
            ("Files", str(self.file_count)),
        ]


@dataclass(frozen=True)
class RenderedReport:
    content: bytes
    media_type: str
    extension: str


def compose_report(
    summary: str,
    messages: Iterable[ReportMessage],
    files: Iterable[ReportFile] = (),
    generated_at: Optional[datetime] = None,
    title: str = "AI Report",
) -> ReportDocument:
    """Pure transform. Message and file order are kept exactly as given."""
    if summary is None:
        raise ValidationError("A summary or explicit placeholder is required")
    generated_at = generated_at or datetime.now(timezone.utc)
    if generated_at.tzinfo is None:
        generated_at = generated_at.replace(tzinfo=timezone.utc)
    return ReportDocument(
        title=title,
        generated_at=generated_at,
        summary=summary,
        messages=list(messages),
        files=list(files),
    )


# ── HTML ─────────────────────────────────────────────────────────────

HTML_STYLE = """
    body {
      font-family: system-ui, -apple-system, sans-serif;
      max-width: 800px;
      margin: 0 auto;
      padding: 40px 20px;
      line-height: 1.6;
      color: #1a1a1a;
    }
    h1 { color: #3b82f6; border-bottom: 3px solid #3b82f6; padding-bottom: 10px; margin-bottom: 30px; }
    h2 { color: #6366f1; margin-top: 30px; }
    .metadata { background: #f3f4f6; padding: 20px; border-radius: 8px; margin-bottom: 30px; }
    .summary, .message-content, .ocr-text pre {
      white-space: pre-wrap;
      overflow-wrap: anywhere;
    }
    .message { margin: 20px 0; padding: 15px; border-left: 4px solid #e5e7eb; }
    .message.user { border-left-color: #3b82f6; background: #eff6ff; }
    .message.assistant { border-left-color: #6366f1; background: #eef2ff; }
    .message-role { font-weight: 600; margin-bottom: 5px; text-transform: uppercase; font-size: 0.875rem; }
    .files { background: #f9fafb; padding: 20px; border-radius: 8px; margin-top: 30px; }
    .file-item { padding: 10px; margin: 5px 0; background: white; border-radius: 4px; border: 1px solid #e5e7eb; }
    .badge.verified {
      display: inline-block; margin-left: 8px; padding: 2px 8px; border-radius: 9999px;
      background: #16a34a; color: white; font-size: 0.75rem; font-weight: 600;
    }
    .fingerprint code { font-size: 0.8rem; overflow-wrap: anywhere; }
    .ocr-text { margin-top: 8px; padding: 10px; background: #f3f4f6; border-radius: 4px; }
    .ocr-label { font-weight: 600; font-size: 0.875rem; }
    .ocr-text pre { font-family: inherit; margin: 4px 0 0; }
"""


def _e(value) -> str:
    return html.escape(str(value), quote=True)


def _render_html_file(f: ReportFile) -> str:
    parts = ['    <div class="file-item">', f"      <strong>{_e(f.filename)}</strong> ({_e(f.size_label)})"]
    if f.is_verified:
        parts.append(f'      <span class="badge verified">{VERIFIED_BADGE}</span>')
        parts.append(
            f'      <div class="fingerprint">SHA-256: <code>{_e(f.content_fingerprint)}</code></div>'
        )
        if f.verified_at_label:
            parts.append(f'      <div class="verified-at">Verified at: {_e(f.verified_at_label)}</div>')
    if f.has_ocr:
        parts.append('      <div class="ocr-text">')
        parts.append(f'        <div class="ocr-label">{OCR_LABEL}</div>')
        parts.append(f"        <pre>{_e(f.ocr_text)}</pre>")
        parts.append("      </div>")
    parts.append("    </div>")
    return "\n".join(parts)


def render_html(doc: ReportDocument) -> str:
    metadata = "\n".join(
        f"    <p><strong>{_e(label)}:</strong> {_e(value)}</p>" for label, value in doc.metadata_lines()
    )
    messages = "\n".join(
        f'  <div class="message {_e(m.role)}">\n'
        f'    <div class="message-role">{_e(m.role)}</div>\n'
        f'    <div class="message-content">{_e(m.content)}</div>\n'
        f"  </div>"
        for m in doc.messages
    )

    files_section = ""
    if doc.files:
        items = "\n".join(_render_html_file(f) for f in doc.files)
        files_section = (
            f'  <div class="files">\n'
            f"    <h2>{SECTION_FILES}</h2>\n"
            f"{items}\n"
            f"  </div>\n"
        )

    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '  <meta charset="UTF-8">\n'
        f"  <title>{_e(doc.title)}</title>\n"
        f"  <style>{HTML_STYLE}  </style>\n"
        "</head>\n"
        "<body>\n"
        f"  <h1>{_e(doc.title)}</h1>\n"
        '  <div class="metadata">\n'
        f"    <h2>{SECTION_INFO}</h2>\n"
        f"{metadata}\n"
        "  </div>\n"
        f"  <h2>{SECTION_SUMMARY}</h2>\n"
        f'  <div class="summary">{_e(doc.summary)}</div>\n'
        f"  <h2>{SECTION_TRANSCRIPT}</h2>\n"
        f"{messages}\n"
        f"{files_section}"
        "</body>\n"
        "</html>\n"
    )


def render_report(doc: ReportDocument, fmt: str = FORMAT_HTML) -> RenderedReport:
    fmt = (fmt or FORMAT_HTML).lower()
    if fmt == FORMAT_HTML:
        return RenderedReport(
            content=render_html(doc).encode("utf-8"),
            media_type="text/html; charset=utf-8",
            extension="html",
        )
    if fmt == FORMAT_PDF:
        from .pdf_render import render_pdf

        return RenderedReport(content=render_pdf(doc), media_type="application/pdf", extension="pdf")
    raise ValidationError(
        f"Unsupported report format '{fmt}'", {"supported": list(SUPPORTED_FORMATS)}
    )
