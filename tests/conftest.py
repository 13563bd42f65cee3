import io
from contextlib import asynccontextmanager

import docx
import pytest
from reportlab.pdfgen import canvas

from verireport.core import database
from verireport.core.config import get_settings
from verireport.core.database import create_engine_for_url, create_tables, make_session_factory
from verireport.core.flags import get_flags
from verireport.core.storage import LocalStorage, build_upload_key
from verireport.models.conversation import Conversation
from verireport.models.file import FileRecord

# Smallest valid PNG header; the vision model never decodes it in tests
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2040


class StubCompletion:
    """Records every call; replies in order, or raises `error`."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.calls = []

    async def complete(self, messages, model=None):
        self.calls.append((messages, model))
        if self.error is not None:
            raise self.error
        return self.replies.pop(0) if self.replies else ""


def pdf_bytes(text=None):
    """One-page PDF; without text it has no text layer, like a scan."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer)
    if text:
        for i, line in enumerate(text.split("\n")):
            c.drawString(72, 720 - 14 * i, line)
    else:
        c.circle(200, 600, 50, fill=1)
    c.showPage()
    c.save()
    return buffer.getvalue()


def docx_bytes(paragraphs=(), rows=()):
    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    if rows:
        table = document.add_table(rows=len(rows), cols=len(rows[0]))
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                table.cell(r, c).text = value
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def test_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    monkeypatch.setenv("LOCAL_STORAGE_PATH", str(tmp_path / "storage"))
    monkeypatch.setenv("PUBLIC_BASE_URL", "")
    monkeypatch.setenv("FF_USE_S3", "false")
    monkeypatch.setenv("FF_USE_OCR", "true")
    monkeypatch.setenv("FF_REQUIRE_USER_HEADER", "true")
    monkeypatch.setenv("FF_CHAIN_PRIOR_RECORDS", "false")
    monkeypatch.setenv("FF_LLM_PROVIDER", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    get_settings.cache_clear()
    get_flags.cache_clear()
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_session_factory", None)
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(base_path=str(tmp_path / "storage"))


@pytest.fixture
def open_db(tmp_path):
    """Async context manager yielding a session factory on a fresh SQLite file."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}"

    @asynccontextmanager
    async def _open():
        engine = create_engine_for_url(url)
        await create_tables(engine)
        try:
            yield make_session_factory(engine)
        finally:
            await engine.dispose()

    return _open


@pytest.fixture
def seed_file():
    """Creates a conversation plus a stored, unverified file. Returns the FileRecord."""

    async def _seed(factory, storage, data, filename="sales.png", mime_type="image/png", user_id="u1"):
        key = build_upload_key(user_id, filename)
        await storage.put(key, data, mime_type)
        async with factory() as session:
            async with session.begin():
                convo = Conversation(user_id=user_id, title="Quarterly numbers")
                session.add(convo)
                await session.flush()
                record = FileRecord(
                    user_id=user_id,
                    conversation_id=convo.id,
                    filename=filename,
                    mime_type=mime_type,
                    storage_key=key,
                    size_bytes=len(data),
                )
                session.add(record)
        return record

    return _seed
