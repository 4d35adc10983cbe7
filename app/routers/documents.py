"""
Document API Router.
Paths: /v1/documents
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Path, Query, UploadFile
from fastapi.responses import RedirectResponse, Response

from app.config import get_settings, Settings
from app.dependencies import get_compositor, get_email_service, get_storage, get_store, get_viewer
from app.email import EmailService
from app.exceptions import (
    NotFoundError,
    PersistenceException,
    RenderSupersededException,
    SigningException,
    UploadException,
    ValidationException,
    VerificationException,
)
from app.gcs import GCSClient, StorageError
from app.models import (
    Document,
    DocumentKind,
    DocumentListResponse,
    ShareDocumentRequest,
    ShareDocumentResponse,
    SignDocumentRequest,
    SignDocumentResponse,
)
from app.pdf.compose import DocumentFormatError, PDFCompositor, to_pdf_bytes
from app.pdf.viewer import PDFViewer, StaleRenderError, ViewerError
from app.services.signing_processor import process_signature
from app.store.documents import (
    DocumentNotFoundError,
    DocumentStore,
    InvalidEmailError,
    UnsupportedDocumentError,
    VerificationError,
)
from app.supabase_client import DatabaseError
from app.utils.logging import mask_email, set_context

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/v1/documents",
    tags=["documents"],
)


def require_document(store: DocumentStore, document_id: str) -> Document:
    document = store.get_document_by_id(document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    return document


@router.post(
    "",
    response_model=Document,
    status_code=201,
    summary="Upload Document",
)
async def upload_document(
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """
    Upload a PDF or image. On success the document is first in the list
    and becomes the current document.
    """
    data = await file.read()
    if not data:
        raise ValidationException("Uploaded file is empty")
    if len(data) > settings.max_upload_bytes:
        raise UploadException(
            f"File exceeds the {settings.max_upload_bytes} byte upload limit",
            reason=StorageError.SIZE_LIMIT,
        )

    name = file.filename or "document"
    try:
        return await store.add_document(data, name, file.content_type)
    except UnsupportedDocumentError as e:
        raise ValidationException(str(e), details={"content_type": e.content_type})
    except StorageError as e:
        raise UploadException(f"Upload failed: {e.message}", reason=e.reason)
    except VerificationError as e:
        raise VerificationException(str(e))
    except DatabaseError as e:
        raise PersistenceException(f"Could not save the document: {e.message}")


@router.get("", response_model=DocumentListResponse)
async def list_documents(store: DocumentStore = Depends(get_store)):
    """Documents newest first."""
    documents = store.documents
    current = store.current_document
    return DocumentListResponse(
        documents=documents,
        total=len(documents),
        current_document_id=current.id if current else None,
    )


@router.get("/{document_id}", response_model=Document)
async def get_document(
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
):
    set_context(document_id=document_id)
    return require_document(store, document_id)


@router.post("/{document_id}/select", response_model=Document)
async def select_document(
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
):
    """Make a document the current one."""
    try:
        return store.set_current_document(document_id)
    except DocumentNotFoundError:
        raise NotFoundError("Document", document_id)


@router.post("/{document_id}/share", response_model=ShareDocumentResponse)
async def share_document(
    request_body: ShareDocumentRequest,
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
):
    """
    Record the recipient and return the signing link.
    The link is also emailed unless send_email is false; a failed email
    does not undo the share.
    """
    try:
        link = await store.share_document(document_id, request_body.email)
    except InvalidEmailError as e:
        raise ValidationException(str(e), details={"field": "email"})
    except DocumentNotFoundError:
        raise NotFoundError("Document", document_id)
    except DatabaseError as e:
        raise PersistenceException(f"Could not share the document: {e.message}")

    response = ShareDocumentResponse(
        document_id=document_id,
        signing_link=link,
        recipient_email=request_body.email,
    )

    if request_body.send_email:
        result = await store.send_signing_invitation(document_id, request_body.email, link)
        if result is not None:
            response.email_sent = result.success
            response.email_error = result.error
            if not result.success:
                logger.warning(f"Invitation to {mask_email(request_body.email)} not delivered: {result.error}")

    return response


@router.post("/{document_id}/sign", response_model=SignDocumentResponse)
async def sign_document(
    request_body: SignDocumentRequest,
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
    storage: GCSClient = Depends(get_storage),
    compositor: PDFCompositor = Depends(get_compositor),
    email_service: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_settings),
):
    return await process_signature(
        store,
        storage,
        compositor,
        document_id,
        request_body,
        settings=settings,
        email_service=email_service,
    )


@router.get("/{document_id}/download")
async def download_document(
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
):
    """Redirect to the signed file when there is one, otherwise the original."""
    document = require_document(store, document_id)
    return RedirectResponse(document.download_url, status_code=307)


@router.get(
    "/{document_id}/pages/{page_number}",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def render_page(
    document_id: str = Path(...),
    page_number: int = Path(..., ge=1),
    scale: Optional[float] = Query(None, gt=0),
    store: DocumentStore = Depends(get_store),
    storage: GCSClient = Depends(get_storage),
    viewer: PDFViewer = Depends(get_viewer),
):
    """Render one page as PNG. Scale is clamped to the viewer zoom range."""
    set_context(document_id=document_id)
    document = require_document(store, document_id)
    if document.kind == DocumentKind.UNSUPPORTED:
        raise ValidationException(f"Documents of type '{document.type}' cannot be previewed")

    source = document.download_url
    if viewer.document_id != document_id or viewer.source != source:
        try:
            data = await storage.fetch(source)
        except StorageError as e:
            raise SigningException(f"Could not load the document: {e.message}", details={"reason": e.reason})
        kind = DocumentKind.PDF if document.signed_url else document.kind
        try:
            pdf_bytes = await asyncio.to_thread(to_pdf_bytes, data, kind)
            viewer.load(document_id, pdf_bytes, source=source)
        except (DocumentFormatError, ViewerError) as e:
            raise SigningException(str(e))

    if page_number > viewer.state.num_pages:
        raise NotFoundError("Page", str(page_number))

    try:
        rendered = await viewer.render(page=page_number, scale=scale)
    except StaleRenderError as e:
        raise RenderSupersededException(str(e))

    return Response(
        content=rendered.png,
        media_type="image/png",
        headers={
            "X-Page-Count": str(viewer.state.num_pages),
            "X-Zoom-Percent": str(viewer.state.zoom_percent),
        },
    )
