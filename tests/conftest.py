"""Pytest configuration and shared fixtures."""

import base64
import os
import tempfile
from types import SimpleNamespace

# Settings are read at import time; point them at throwaway locations first.
_TMP = tempfile.mkdtemp(prefix="signflow-tests-")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP}/app.db")
os.environ.setdefault("STORAGE_DIR", os.path.join(_TMP, "storage"))
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

import fitz  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import signflow.domain  # noqa: E402,F401
from signflow.core.exceptions import NotificationDispatchError  # noqa: E402
from signflow.db.base import Base, build_engine, build_session_factory  # noqa: E402
from signflow.services.storage import DocumentStore  # noqa: E402
from signflow.services.workflow import WorkflowService  # noqa: E402

CLIENT_ID = "test-client"

SIGNATURE_RECT = (72, 600, 272, 640)


# ---------------------------------------------------------------------------
# Notification gateway double
# ---------------------------------------------------------------------------

class RecordingGateway:
    """Collects dispatched messages; channels in ``fail_channels`` raise."""

    def __init__(self):
        self.sent: list[SimpleNamespace] = []
        self.fail_channels: set[str] = set()

    async def dispatch(self, channel, address, subject, body, correlation_id):
        if channel in self.fail_channels:
            raise NotificationDispatchError(f"{channel} gateway down")
        self.sent.append(
            SimpleNamespace(channel=channel, address=address, subject=subject, body=body)
        )
        return f"msg-{len(self.sent)}"

    def to(self, address: str) -> list[SimpleNamespace]:
        return [m for m in self.sent if m.address == address]


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def db_url(tmp_path) -> str:
    """File-backed SQLite so separate sessions really are separate connections."""
    return f"sqlite+aiosqlite:///{tmp_path}/test.db"


@pytest.fixture
async def engine(db_url):
    engine = build_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(tmp_path) -> DocumentStore:
    return DocumentStore(
        tmp_path / "storage", public_base_url="http://testserver", source_root=tmp_path,
    )


@pytest.fixture
def make_service(gateway, store):
    """Build a WorkflowService bound to the given session."""

    def _make(session: AsyncSession, **kwargs) -> WorkflowService:
        kwargs.setdefault("gateway", gateway)
        kwargs.setdefault("store", store)
        return WorkflowService(session, CLIENT_ID, **kwargs)

    return _make


@pytest.fixture
def service(session, make_service) -> WorkflowService:
    return make_service(session)


@pytest.fixture
def api_session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    """Schema via a sync engine; NullPool so connections never outlive the client's loop."""
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        poolclass=NullPool,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    return build_session_factory(engine)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def _add_widget(page, name, field_type, rect, value=None, choices=None):
    widget = fitz.Widget()
    widget.field_name = name
    widget.field_type = field_type
    widget.rect = fitz.Rect(rect)
    if choices:
        widget.choice_values = choices
    if value is not None:
        widget.field_value = value
    page.add_widget(widget)


@pytest.fixture
def make_form_pdf():
    """Build a fillable PDF: text, checkbox, combobox, signature and reserved fields."""

    def _make(pages: int = 1) -> bytes:
        doc = fitz.open()
        page = doc.new_page(width=612, height=792)
        _add_widget(page, "patient_name", fitz.PDF_WIDGET_TYPE_TEXT, (72, 72, 300, 92), "")
        _add_widget(page, "notes", fitz.PDF_WIDGET_TYPE_TEXT, (72, 100, 300, 120), "")
        _add_widget(page, "consent", fitz.PDF_WIDGET_TYPE_CHECKBOX, (72, 130, 86, 144), False)
        _add_widget(
            page, "pharmacy", fitz.PDF_WIDGET_TYPE_COMBOBOX, (72, 150, 250, 170),
            choices=["CVS", "Walgreens", "Rite Aid"],
        )
        _add_widget(page, "prescriber_signature", fitz.PDF_WIDGET_TYPE_TEXT, SIGNATURE_RECT, "")
        _add_widget(page, "kbup", fitz.PDF_WIDGET_TYPE_TEXT, (72, 700, 200, 720), "internal-code")
        for _ in range(pages - 1):
            doc.new_page(width=612, height=792)
        data = doc.tobytes()
        doc.close()
        return data

    return _make


@pytest.fixture
def form_pdf(make_form_pdf) -> bytes:
    return make_form_pdf()


@pytest.fixture
def source_ref(tmp_path, form_pdf) -> str:
    """Absolute filesystem path of the source form, usable as a document ref."""
    path = tmp_path / "source.pdf"
    path.write_bytes(form_pdf)
    return str(path)


@pytest.fixture
def signature_png() -> bytes:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 120, 40), False)
    pix.set_rect(pix.irect, (20, 20, 120))
    return pix.tobytes("png")


@pytest.fixture
def signature_payload(signature_png) -> str:
    return "data:image/png;base64," + base64.b64encode(signature_png).decode()


@pytest.fixture
def broken_image_payload() -> str:
    return "data:image/png;base64," + base64.b64encode(b"not an image at all").decode()
