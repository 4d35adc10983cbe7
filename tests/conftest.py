"""
Pytest configuration and fixtures.
"""
import base64
import io
import os
import sys
import tempfile
from typing import Dict, List, Optional
from unittest.mock import MagicMock, AsyncMock

import fitz  # PyMuPDF
import pytest
from PIL import Image, ImageDraw

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import Settings
from app.email import EmailDeliveryStatus, EmailResult
from app.models import Document, Notification, SignatureData
from app.store.documents import DocumentStore
from app.supabase_client import DatabaseError
from app.utils.datetime_utils import utc_now


# Standard A4 page dimensions in points
A4_WIDTH = 595.0
A4_HEIGHT = 842.0


def make_pdf_bytes(pages: int = 2, width: float = A4_WIDTH, height: float = A4_HEIGHT) -> bytes:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((72, 72), f"Page {i + 1}", fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_signature_png(width: int = 300, height: int = 150) -> bytes:
    image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.line([(10, height - 20), (width // 2, 20), (width - 10, height - 30)], fill="#000000", width=2)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_document(**overrides) -> Document:
    data = {
        "id": "doc-456",
        "name": "Test Document.pdf",
        "type": "application/pdf",
        "size": 10240,
        "created_at": utc_now(),
        "preview_url": "https://storage.example.com/bucket/documents/doc-456/Test_Document.pdf",
    }
    data.update(overrides)
    return Document(**data)


class FakeRepository:
    """In-memory stand-in for SupabaseClient; every method is an AsyncMock."""

    def __init__(
        self,
        documents: Optional[List[Document]] = None,
        notifications: Optional[List[Notification]] = None,
    ):
        self.documents: Dict[str, Document] = {d.id: d for d in documents or []}
        self.notifications: Dict[str, Notification] = {n.id: n for n in notifications or []}
        self.list_documents = AsyncMock(side_effect=self._list_documents)
        self.list_notifications = AsyncMock(side_effect=self._list_notifications)
        self.insert_document = AsyncMock(side_effect=self._insert_document)
        self.update_document = AsyncMock(side_effect=self._update_document)
        self.insert_notification = AsyncMock(side_effect=self._insert_notification)
        self.update_notification = AsyncMock(side_effect=self._update_notification)
        self.subscribe = AsyncMock(return_value=None)
        self.unsubscribe = AsyncMock(return_value=None)
        self.close = AsyncMock(return_value=None)

    async def _list_documents(self):
        return list(self.documents.values())

    async def _list_notifications(self):
        return list(self.notifications.values())

    async def _insert_document(self, document):
        self.documents[document.id] = document
        return document

    async def _update_document(self, document_id, updates):
        if document_id not in self.documents:
            raise DatabaseError(f"documents row not found: {document_id}", status_code=404)
        data = self.documents[document_id].model_dump()
        data.update(updates)
        updated = Document(**data)
        self.documents[document_id] = updated
        return updated

    async def _insert_notification(self, notification):
        self.notifications[notification.id] = notification
        return notification

    async def _update_notification(self, notification_id, updates):
        data = self.notifications[notification_id].model_dump()
        data.update(updates)
        updated = Notification(**data)
        self.notifications[notification_id] = updated
        return updated


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sample_pdf_bytes():
    """Two-page A4 PDF."""
    return make_pdf_bytes()


@pytest.fixture
def sample_png_bytes():
    """300x150 transparent PNG with a black stroke."""
    return make_signature_png()


@pytest.fixture
def sample_png_base64(sample_png_bytes):
    return base64.b64encode(sample_png_bytes).decode()


@pytest.fixture
def blank_png_base64():
    """A PNG with nothing drawn on it."""
    buffer = io.BytesIO()
    Image.new("RGBA", (300, 150), (0, 0, 0, 0)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode()


@pytest.fixture
def sample_signature(sample_png_bytes):
    return SignatureData(image=sample_png_bytes, width=300, height=150, signer_name="Jane Doe")


@pytest.fixture
def test_settings():
    """Real settings, isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        supabase_url="https://test.supabase.co",
        supabase_anon_key="test-anon-key",
        storage_bucket="test-bucket",
        app_base_url="https://sign.example.com",
        resend_api_key="",
        realtime_enabled=False,
        environment="test",
        retry_delays_seconds="0,0,0",
    )


@pytest.fixture
def mock_settings():
    """Create mock settings."""
    settings = MagicMock()
    settings.supabase_url = "https://test.supabase.co"
    settings.supabase_anon_key = "test-anon-key"
    settings.storage_bucket = "test-bucket"
    settings.storage_public_base_url = "https://storage.example.com/bucket"
    settings.max_upload_bytes = 1024 * 1024
    settings.http_timeout_seconds = 5.0
    settings.retry_attempts = 3
    settings.retry_delay.return_value = 0
    settings.environment = "test"
    settings.debug = True
    return settings


@pytest.fixture
def sample_document():
    return make_document()


@pytest.fixture
def fake_repository():
    return FakeRepository()


@pytest.fixture
def mock_storage(sample_pdf_bytes):
    """Create mock GCS client."""
    storage = MagicMock()
    storage.put = AsyncMock(side_effect=lambda path, data, content_type: path)
    storage.get_public_url.side_effect = lambda path: f"https://storage.example.com/bucket/{path}"
    storage.verify_public_url = AsyncMock(return_value=True)
    storage.delete = AsyncMock(return_value=True)
    storage.fetch = AsyncMock(return_value=sample_pdf_bytes)
    return storage


@pytest.fixture
def mock_email_service():
    service = MagicMock()
    sent = EmailResult(success=True, message_id="msg_123", delivery_status=EmailDeliveryStatus.SENT)
    service.send_signing_invitation = AsyncMock(return_value=sent)
    service.send_signed_notification = AsyncMock(return_value=sent)
    return service


@pytest.fixture
def store(fake_repository, mock_storage, mock_email_service, test_settings):
    return DocumentStore(fake_repository, mock_storage, mock_email_service, test_settings)
