"""
Fixed-layout PDF rendering for reports (reportlab).

Rendering is split in two steps so pagination can be checked without parsing
PDF output:
  1. layout_document() turns a ReportDocument into pages of positioned items
  2. render_pdf() paints those pages onto a reportlab canvas

Wrapping measures rendered width with pdfmetrics.stringWidth for the font and
size of each line. A block moves to a new page when it does not fit in the
remaining space; a block taller than a whole page is split line by line.
"""

import io
import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Optional, Union

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

from ..core.errors import ConfigurationError
from .compositor import (
    OCR_LABEL,
    SECTION_FILES,
    SECTION_SUMMARY,
    SECTION_TRANSCRIPT,
    VERIFIED_BADGE,
    ReportDocument,
    ReportFile,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = A4
MARGIN = 20 * mm
OCR_INDENT = 10.0
BADGE_PADDING = 6.0
BADGE_COLOR = "#16a34a"


@dataclass(frozen=True)
class TextStyle:
    base_font: str
    font_size: float
    leading: float
    color: str = "#1a1a1a"

    @property
    def font_name(self) -> str:
        return _font_overrides.get(self.base_font, self.base_font)


# Standard Type 1 font name → registered TrueType font name
_font_overrides: dict[str, str] = {}

UNICODE_FONT = "ReportSans"
UNICODE_FONT_BOLD = "ReportSans-Bold"


def register_unicode_font(regular_path: str, bold_path: Optional[str] = None) -> None:
    """
    Draw body and heading text with a TrueType font instead of Helvetica.

    Without one, text is limited to what the standard fonts encode (cp1252);
    with one, text is passed through and the font's own coverage applies.
    """
    try:
        pdfmetrics.registerFont(TTFont(UNICODE_FONT, regular_path))
        pdfmetrics.registerFont(TTFont(UNICODE_FONT_BOLD, bold_path or regular_path))
    except (OSError, TTFError) as e:
        raise ConfigurationError(
            f"Cannot load PDF font: {e}", {"regular_path": regular_path, "bold_path": bold_path}
        )
    _font_overrides.update({"Helvetica": UNICODE_FONT, "Helvetica-Bold": UNICODE_FONT_BOLD})
    logger.info("PDF text font: %s", regular_path)


def is_unicode_font(font_name: str) -> bool:
    return font_name in _font_overrides.values()


TITLE = TextStyle("Helvetica-Bold", 20, 26, "#3b82f6")
HEADING = TextStyle("Helvetica-Bold", 14, 20, "#6366f1")
LABEL = TextStyle("Helvetica-Bold", 12, 16)
BODY = TextStyle("Helvetica", 10, 14)
SMALL_LABEL = TextStyle("Helvetica-Bold", 10, 14, "#374151")
MUTED = TextStyle("Helvetica", 9, 12, "#4b5563")
MONO = TextStyle("Courier", 8, 11)
BADGE = TextStyle("Helvetica-Bold", 8, 16, "#ffffff")
FOOTER = TextStyle("Helvetica", 8, 10, "#6b7280")


@dataclass(frozen=True)
class Line:
    text: str
    style: TextStyle
    indent: float = 0.0
    tag: str = "text"

    @property
    def height(self) -> float:
        return self.style.leading


@dataclass(frozen=True)
class Badge:
    text: str
    style: TextStyle = BADGE
    indent: float = 0.0
    tag: str = "badge"

    @property
    def height(self) -> float:
        return self.style.leading

    @property
    def width(self) -> float:
        return stringWidth(self.text, self.style.font_name, self.style.font_size) + 2 * BADGE_PADDING


Item = Union[Line, Badge]


@dataclass
class Block:
    items: list[Item]
    space_after: float = 0.0
    keep_with_next: bool = False

    @property
    def height(self) -> float:
        return sum(item.height for item in self.items)


@dataclass(frozen=True)
class PlacedItem:
    item: Item
    x: float
    y: float  # baseline


@dataclass
class Page:
    number: int
    items: list[PlacedItem] = field(default_factory=list)

    def texts(self, tag: Optional[str] = None) -> list[str]:
        return [p.item.text for p in self.items if tag is None or p.item.tag == tag]


# ── Text wrapping ────────────────────────────────────────────────────

def pdf_safe(text: str, font_name: Optional[str] = None) -> str:
    """Normalize whitespace and, for the standard fonts, map onto WinAnsi (cp1252)."""
    text = (text or "").replace("\r\n", "\n").replace("\r", "\n").replace("\t", "    ")
    chars = []
    for ch in text:
        if ch == "\n":
            chars.append(ch)
        elif unicodedata.category(ch) == "Zs" or ch == "\u200b":
            chars.append(" ")
        elif ch.isprintable():
            chars.append(ch)
    text = "".join(chars)
    if font_name and is_unicode_font(font_name):
        return text
    return text.encode("cp1252", errors="replace").decode("cp1252")


def _split_long_word(word: str, font_name: str, font_size: float, max_width: float) -> list[str]:
    pieces = []
    while word and stringWidth(word, font_name, font_size) > max_width:
        cut = 1
        while cut < len(word) and stringWidth(word[: cut + 1], font_name, font_size) <= max_width:
            cut += 1
        pieces.append(word[:cut])
        word = word[cut:]
    if word:
        pieces.append(word)
    return pieces


def wrap_text(text: str, font_name: str, font_size: float, max_width: float) -> list[str]:
    """
    Greedy word wrap by measured width. Newlines start new lines, blank
    lines are kept, and words wider than max_width are broken by character.
    Nothing is dropped.
    """
    lines: list[str] = []
    for paragraph in pdf_safe(text, font_name).split("\n"):
        words = paragraph.split()
        if not words:
            lines.append("")
            continue
        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if stringWidth(candidate, font_name, font_size) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            pieces = _split_long_word(word, font_name, font_size, max_width)
            lines.extend(pieces[:-1])
            current = pieces[-1]
        lines.append(current)
    return lines


def _text_lines(text: str, style: TextStyle, width: float, indent: float = 0.0, tag: str = "text") -> list[Line]:
    return [
        Line(line, style, indent, tag)
        for line in wrap_text(text, style.font_name, style.font_size, width - indent)
    ]


# ── Block construction ───────────────────────────────────────────────

def _file_blocks(f: ReportFile, width: float) -> list[Block]:
    items: list[Item] = _text_lines(f.heading, LABEL, width, tag="file")
    if f.is_verified:
        items.append(Badge(VERIFIED_BADGE.upper()))
        items.extend(_text_lines(f"SHA-256: {f.content_fingerprint}", MONO, width, tag="fingerprint"))
        if f.verified_at_label:
            items.extend(_text_lines(f"Verified at: {f.verified_at_label}", MUTED, width, tag="verified-at"))

    if not f.has_ocr:
        return [Block(items, space_after=10)]

    ocr_items: list[Item] = [Line(OCR_LABEL, SMALL_LABEL, OCR_INDENT, "ocr-label")]
    ocr_items.extend(_text_lines(f.ocr_text, BODY, width, indent=OCR_INDENT, tag="ocr-text"))
    return [
        Block(items, space_after=4, keep_with_next=True),
        Block(ocr_items, space_after=10),
    ]


def build_blocks(doc: ReportDocument, width: float) -> list[Block]:
    blocks = [
        Block(_text_lines(doc.title, TITLE, width, tag="title"), space_after=6),
        Block(
            [Line(pdf_safe(f"{label}: {value}", BODY.font_name), BODY, tag="metadata") for label, value in doc.metadata_lines()],
            space_after=14,
        ),
        Block([Line(SECTION_SUMMARY, HEADING, tag="heading")], space_after=4, keep_with_next=True),
        Block(_text_lines(doc.summary, BODY, width, tag="summary"), space_after=14),
        Block([Line(SECTION_TRANSCRIPT, HEADING, tag="heading")], space_after=4, keep_with_next=True),
    ]

    for message in doc.messages:
        items: list[Item] = [Line(f"{message.role_label}:", LABEL, tag="message-label")]
        items.extend(_text_lines(message.content, BODY, width, tag="message"))
        blocks.append(Block(items, space_after=8))

    if doc.files:
        blocks.append(Block([Line(SECTION_FILES, HEADING, tag="heading")], space_after=4, keep_with_next=True))
        for f in doc.files:
            blocks.extend(_file_blocks(f, width))

    return blocks


# ── Pagination ───────────────────────────────────────────────────────

def paginate(blocks: list[Block], page_size=PAGE_SIZE, margin: float = MARGIN) -> list[Page]:
    _, page_height = page_size
    top = page_height - margin
    bottom = margin
    usable = top - bottom

    pages = [Page(1)]
    cursor = top

    def new_page():
        nonlocal cursor
        pages.append(Page(len(pages) + 1))
        cursor = top

    for index, block in enumerate(blocks):
        needed = block.height
        if block.keep_with_next and index + 1 < len(blocks) and blocks[index + 1].items:
            needed += block.space_after + blocks[index + 1].items[0].height

        # Move the whole block when it would fit on a fresh page
        if needed > cursor - bottom and pages[-1].items and needed <= usable:
            new_page()

        for item in block.items:
            if item.height > cursor - bottom and pages[-1].items:
                new_page()
            baseline = cursor - item.height + (item.height - item.style.font_size) / 2
            pages[-1].items.append(PlacedItem(item, margin + item.indent, baseline))
            cursor -= item.height

        cursor = max(bottom, cursor - block.space_after)

    return pages


def layout_document(doc: ReportDocument, page_size=PAGE_SIZE, margin: float = MARGIN) -> list[Page]:
    page_width, _ = page_size
    return paginate(build_blocks(doc, page_width - 2 * margin), page_size, margin)


# ── Painting ─────────────────────────────────────────────────────────

def _draw_item(c: canvas.Canvas, placed: PlacedItem) -> None:
    item = placed.item
    style = item.style
    if isinstance(item, Badge):
        c.setFillColor(HexColor(BADGE_COLOR))
        c.roundRect(placed.x, placed.y - 3, item.width, style.font_size + 6, 3, stroke=0, fill=1)
        c.setFillColor(HexColor(style.color))
        c.setFont(style.font_name, style.font_size)
        c.drawString(placed.x + BADGE_PADDING, placed.y, item.text)
        return
    c.setFillColor(HexColor(style.color))
    c.setFont(style.font_name, style.font_size)
    c.drawString(placed.x, placed.y, item.text)


def _draw_footer(c: canvas.Canvas, number: int, total: int, page_size, margin: float) -> None:
    page_width, _ = page_size
    label = f"Page {number} of {total}"
    c.setFillColor(HexColor(FOOTER.color))
    c.setFont(FOOTER.font_name, FOOTER.font_size)
    label_width = stringWidth(label, FOOTER.font_name, FOOTER.font_size)
    c.drawString(page_width - margin - label_width, margin / 2, label)


def render_pdf(doc: ReportDocument, page_size=PAGE_SIZE, margin: float = MARGIN) -> bytes:
    pages = layout_document(doc, page_size, margin)

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=page_size)
    c.setTitle(doc.title)
    c.setCreator("verireport")

    for page in pages:
        for placed in page.items:
            _draw_item(c, placed)
        _draw_footer(c, page.number, len(pages), page_size, margin)
        c.showPage()
    c.save()

    pdf_bytes = buffer.getvalue()
    logger.info("PDF rendered: %d pages, %.1f KB", len(pages), len(pdf_bytes) / 1024)
    return pdf_bytes
