from datetime import datetime, timezone

import pytest

from verireport.core.errors import ValidationError
from verireport.services.compositor import (
    OCR_LABEL,
    SECTION_FILES,
    SECTION_SUMMARY,
    SECTION_TRANSCRIPT,
    ReportFile,
    ReportMessage,
    compose_report,
    render_html,
    render_report,
)
from verireport.services.fingerprint import fingerprint_bytes

GENERATED_AT = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
SALES_FP = fingerprint_bytes(b"sales.png")


def sales_report(files=None):
    messages = [
        ReportMessage("user", "Here is the Q3 sales sheet."),
        ReportMessage("assistant", "Total sales were $1,234."),
    ]
    if files is None:
        files = [
            ReportFile(
                filename="sales.png",
                size_bytes=2048,
                ocr_text="Total: $1,234",
                content_fingerprint=SALES_FP,
                verified_at=datetime(2024, 5, 1, 11, 59, 0, 250000, tzinfo=timezone.utc),
            )
        ]
    return compose_report("Sales discussion summary.", messages, files, GENERATED_AT, "AI Report")


def test_document_counts_and_metadata():
    doc = sales_report()
    assert doc.message_count == 2
    assert doc.file_count == 1
    assert ("Generated", "2024-05-01 12:00:00 UTC") in doc.metadata_lines()


def test_file_labels():
    f = sales_report().files[0]
    assert f.size_label == "2.00 KB"
    assert f.heading == "sales.png (2.00 KB)"
    assert f.verified_at_label == "2024-05-01T11:59:00.250Z"


def test_html_sections_appear_in_order():
    html = render_html(sales_report())

    positions = [
        html.index("<h1>AI Report</h1>"),
        html.index(SECTION_SUMMARY),
        html.index("Sales discussion summary."),
        html.index(SECTION_TRANSCRIPT),
        html.index("Here is the Q3 sales sheet."),
        html.index("Total sales were $1,234."),
        html.index(SECTION_FILES),
        html.index("sales.png"),
        html.index('<span class="badge verified">Verified</span>'),
        html.index(SALES_FP),
        html.index(OCR_LABEL),
        html.index("Total: $1,234"),
    ]
    assert positions == sorted(positions)


def test_html_renders_every_message_with_its_role():
    html = render_html(sales_report())
    assert html.count('<div class="message user">') == 1
    assert html.count('<div class="message assistant">') == 1
    assert "2.00 KB" in html
    assert "Verified at: 2024-05-01T11:59:00.250Z" in html


def test_html_without_files_omits_the_files_section():
    html = render_html(sales_report(files=[]))
    assert SECTION_FILES not in html
    assert 'class="files"' not in html
    assert SECTION_SUMMARY in html
    assert SECTION_TRANSCRIPT in html


def test_unverified_file_has_no_badge_or_ocr_block():
    html = render_html(sales_report(files=[ReportFile("notes.txt", 512)]))
    assert "notes.txt" in html
    assert "0.50 KB" in html
    assert 'class="badge verified"' not in html
    assert "SHA-256" not in html
    assert OCR_LABEL not in html


def test_html_escapes_user_content():
    doc = compose_report(
        "<b>summary</b>",
        [ReportMessage("user", "<script>alert(1)</script>")],
        [],
        GENERATED_AT,
    )
    html = render_html(doc)
    assert "<script>" not in html
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in html
    assert "&lt;b&gt;summary&lt;/b&gt;" in html


def test_long_content_is_kept_whole():
    content = "word " * 5000
    doc = compose_report("s", [ReportMessage("assistant", content)], [], GENERATED_AT)
    assert content.strip() in render_html(doc)


def test_compose_keeps_input_order():
    messages = [ReportMessage("user", f"message {i}") for i in range(10)]
    doc = compose_report("s", messages, [], GENERATED_AT)
    assert [m.content for m in doc.messages] == [f"message {i}" for i in range(10)]


def test_compose_requires_a_summary():
    with pytest.raises(ValidationError):
        compose_report(None, [], [], GENERATED_AT)


def test_render_report_html():
    rendered = render_report(sales_report(), "HTML")
    assert rendered.extension == "html"
    assert rendered.media_type.startswith("text/html")
    assert rendered.content.startswith(b"<!DOCTYPE html>")


def test_render_report_pdf():
    rendered = render_report(sales_report(), "pdf")
    assert rendered.extension == "pdf"
    assert rendered.media_type == "application/pdf"
    assert rendered.content.startswith(b"%PDF")


def test_render_report_rejects_unknown_format():
    with pytest.raises(ValidationError):
        render_report(sales_report(), "docx")


def test_q3_sales_report_contents():
    fp = "ab12" + "0" * 60
    doc = compose_report(
        "Q3 sales grew.",
        [ReportMessage("user", "Summarize Q3 sales"), ReportMessage("assistant", "Q3 sales rose 12%.")],
        [ReportFile("sales.png", 204800, "Q3: $1.2M", fp, GENERATED_AT)],
        GENERATED_AT,
    )
    html = render_html(doc)

    assert SECTION_SUMMARY in html
    assert html.index("Summarize Q3 sales") < html.index("Q3 sales rose 12%.")
    assert "sales.png</strong> (200.00 KB)" in html
    assert html.count('class="badge verified"') == 1
    assert fp in html
    assert html.count('<div class="ocr-text">') == 1
    assert "Q3: $1.2M" in html
