"""
HTTP-level tests for the API routers.
"""
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.config import get_settings
from app.main import app, SERVICE_COMPONENTS
from app.pdf.compose import PDFCompositor
from app.pdf.viewer import PDFViewer


@pytest.fixture
def client(store, mock_storage, mock_email_service, test_settings):
    """Client with the collaborators pre-set on app.state; the lifespan is not run."""
    app.state.store = store
    app.state.storage = mock_storage
    app.state.compositor = PDFCompositor()
    app.state.viewer = PDFViewer(test_settings)
    app.state.email_service = mock_email_service
    app.dependency_overrides[get_settings] = lambda: test_settings

    yield TestClient(app)

    app.state.viewer.close()
    app.dependency_overrides.clear()
    for name in SERVICE_COMPONENTS:
        delattr(app.state, name)


def upload(client, data: bytes, filename="contract.pdf", content_type="application/pdf"):
    return client.post("/v1/documents", files={"file": (filename, data, content_type)})


def sign_body(signature_b64: str) -> dict:
    return {
        "signature_png_base64": signature_b64,
        "signer_name": "Jane Doe",
        "canvas_width": 300,
        "canvas_height": 150,
    }


class TestHealth:
    """Test health endpoints."""

    def test_health(self, client):
        """Liveness answers with the version."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}
        assert response.headers["X-Request-ID"]

    def test_store_health(self, client, sample_pdf_bytes):
        """Store health reports counts and integrations."""
        upload(client, sample_pdf_bytes)
        body = client.get("/health/store").json()
        assert body["documents"] == 1
        assert body["realtime_enabled"] is False
        assert body["email_configured"] is False


class TestDocumentRoutes:
    """Test /v1/documents."""

    def test_upload_pdf(self, client, sample_pdf_bytes):
        """Upload answers 201 and the document becomes current."""
        response = upload(client, sample_pdf_bytes)
        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "contract.pdf"
        assert body["size"] == len(sample_pdf_bytes)
        assert body["signature_status"] == "unsigned"

        listing = client.get("/v1/documents").json()
        assert listing["total"] == 1
        assert listing["current_document_id"] == body["id"]

    def test_upload_unsupported_type(self, client):
        """Plain text is rejected."""
        response = upload(client, b"hello", "notes.txt", "text/plain")
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_upload_empty_file(self, client):
        """Empty uploads are rejected before storage is touched."""
        response = upload(client, b"")
        assert response.status_code == 400

    def test_upload_too_large(self, client, test_settings):
        """Files over the limit answer 413."""
        app.dependency_overrides[get_settings] = lambda: test_settings.model_copy(update={"max_upload_bytes": 10})
        response = upload(client, b"%PDF" + b"0" * 100)
        assert response.status_code == 413
        assert response.json()["details"] == {"reason": "size_limit"}

    def test_upload_unreachable(self, client, mock_storage, sample_pdf_bytes):
        """An upload whose public URL does not answer is a 502."""
        mock_storage.verify_public_url.return_value = False
        response = upload(client, sample_pdf_bytes)
        assert response.status_code == 502
        assert response.json()["code"] == "VERIFICATION_FAILED"

    def test_unknown_document(self, client):
        """Unknown ids are 404 with redirect_to."""
        response = client.get("/v1/documents/missing")
        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["details"] == {"redirect_to": "/"}

    def test_select_document(self, client, sample_pdf_bytes):
        """Selecting switches the current document."""
        first = upload(client, sample_pdf_bytes).json()
        upload(client, sample_pdf_bytes, "second.pdf")
        response = client.post(f"/v1/documents/{first['id']}/select")
        assert response.status_code == 200
        assert client.get("/v1/documents").json()["current_document_id"] == first["id"]

    def test_share_sends_link(self, client, sample_pdf_bytes, mock_email_service):
        """Sharing returns the signing link and emails it."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.post(f"/v1/documents/{doc['id']}/share", json={"email": "bob@example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["signing_link"] == f"https://sign.example.com/sign/{doc['id']}"
        assert body["email_sent"] is True
        mock_email_service.send_signing_invitation.assert_awaited_once()

    def test_share_without_email(self, client, sample_pdf_bytes, mock_email_service):
        """send_email false only records the recipient."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.post(
            f"/v1/documents/{doc['id']}/share",
            json={"email": "bob@example.com", "send_email": False},
        )
        assert response.json()["email_sent"] is False
        mock_email_service.send_signing_invitation.assert_not_awaited()

    @pytest.mark.parametrize("email", ["bob", "bob @example.com", "bob@example"])
    def test_share_invalid_email(self, client, sample_pdf_bytes, email):
        """Malformed addresses fail request validation."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.post(f"/v1/documents/{doc['id']}/share", json={"email": email})
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_sign_and_download(self, client, sample_pdf_bytes, sample_png_base64):
        """Signing redirects downloads to the signed file."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.post(f"/v1/documents/{doc['id']}/sign", json=sign_body(sample_png_base64))
        assert response.status_code == 200
        signed_url = response.json()["signed_pdf_url"]

        download = client.get(f"/v1/documents/{doc['id']}/download", follow_redirects=False)
        assert download.status_code == 307
        assert download.headers["location"] == signed_url

    def test_sign_twice_conflict(self, client, sample_pdf_bytes, sample_png_base64):
        """A second signature is a 409."""
        doc = upload(client, sample_pdf_bytes).json()
        client.post(f"/v1/documents/{doc['id']}/sign", json=sign_body(sample_png_base64))
        response = client.post(f"/v1/documents/{doc['id']}/sign", json=sign_body(sample_png_base64))
        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_SIGNED"

    def test_render_page(self, client, sample_pdf_bytes):
        """Pages render as PNG with viewer headers."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.get(f"/v1/documents/{doc['id']}/pages/2", params={"scale": 1.0})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["X-Page-Count"] == "2"
        assert response.headers["X-Zoom-Percent"] == "100"
        with Image.open(io.BytesIO(response.content)) as img:
            assert img.size == (595, 842)

    def test_render_page_past_end(self, client, sample_pdf_bytes):
        """A page past the count is 404."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.get(f"/v1/documents/{doc['id']}/pages/5")
        assert response.status_code == 404


class TestSigningRoutes:
    """Test the screens reached from the shared link."""

    def test_signing_screen(self, client, sample_pdf_bytes):
        """The screen carries the page count and canvas height."""
        doc = upload(client, sample_pdf_bytes).json()
        body = client.get(f"/sign/{doc['id']}").json()
        assert body["document_name"] == "contract.pdf"
        assert body["kind"] == "pdf"
        assert body["page_count"] == 2
        assert body["canvas_height"] == 150

    def test_signing_screen_unknown(self, client):
        """An unknown link sends the user back to the list."""
        response = client.get("/sign/missing")
        assert response.status_code == 404
        assert response.json()["details"]["redirect_to"] == "/"

    def test_blank_signature_rejected(self, client, sample_pdf_bytes, blank_png_base64):
        """Submitting an empty canvas is a 400."""
        doc = upload(client, sample_pdf_bytes).json()
        response = client.post(f"/sign/{doc['id']}", json=sign_body(blank_png_base64))
        assert response.status_code == 400
        assert response.json()["message"] == "Please provide your signature"

    def test_submit_then_confirmation(self, client, sample_pdf_bytes, sample_png_base64):
        """After signing the confirmation screen shows the signer."""
        doc = upload(client, sample_pdf_bytes).json()
        signed = client.post(f"/sign/{doc['id']}", json=sign_body(sample_png_base64)).json()
        assert signed["confirmation_url"].endswith(f"/documents/{doc['id']}/confirmation")

        body = client.get(f"/documents/{doc['id']}/confirmation").json()
        assert body["signature_status"] == "signed"
        assert body["signed_by"] == "Jane Doe"
        assert body["download_url"] == signed["signed_pdf_url"]


class TestNotificationRoutes:
    """Test /v1/notifications."""

    def test_share_creates_unread_notification(self, client, sample_pdf_bytes):
        """Sharing adds an unread notification with an age label."""
        doc = upload(client, sample_pdf_bytes).json()
        client.post(
            f"/v1/documents/{doc['id']}/share",
            json={"email": "bob@example.com", "send_email": False},
        )

        body = client.get("/v1/notifications").json()
        assert body["unread_count"] == 1
        item = body["notifications"][0]
        assert item["message"] == "Document shared with bob@example.com"
        assert item["time_ago"].endswith("ago")

    def test_mark_read(self, client, sample_pdf_bytes):
        """Marking read drops the unread count."""
        doc = upload(client, sample_pdf_bytes).json()
        client.post(
            f"/v1/documents/{doc['id']}/share",
            json={"email": "bob@example.com", "send_email": False},
        )
        notification_id = client.get("/v1/notifications").json()["notifications"][0]["id"]

        response = client.post(f"/v1/notifications/{notification_id}/read")
        assert response.json() == {"notification_id": notification_id, "read": True, "unread_count": 0}

    def test_mark_unknown_read(self, client):
        """Unknown ids change nothing."""
        response = client.post("/v1/notifications/missing/read")
        assert response.status_code == 200
        assert response.json()["read"] is False
