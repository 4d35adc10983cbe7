"""
Public Signing Router - the screens a recipient reaches from the shared link.
Paths: /sign/{document_id}, /documents/{document_id}/confirmation
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Path

from app.config import get_settings, Settings
from app.dependencies import get_compositor, get_email_service, get_storage, get_store
from app.email import EmailService
from app.gcs import GCSClient, StorageError
from app.models import (
    ConfirmationResponse,
    DocumentKind,
    SignDocumentRequest,
    SignDocumentResponse,
    SigningScreenResponse,
)
from app.pdf.compose import DocumentFormatError, PDFCompositor
from app.routers.documents import require_document
from app.services.signing_processor import process_signature
from app.store.documents import DocumentStore
from app.utils.logging import set_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["signing"])


@router.get("/sign/{document_id}", response_model=SigningScreenResponse)
async def get_signing_screen(
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
    storage: GCSClient = Depends(get_storage),
    compositor: PDFCompositor = Depends(get_compositor),
    settings: Settings = Depends(get_settings),
):
    """
    Data for the signing screen. An unknown id answers 404 with
    redirect_to "/" so the UI can send the user back to the list.
    """
    set_context(document_id=document_id)
    document = require_document(store, document_id)

    page_count = None
    if document.kind != DocumentKind.UNSUPPORTED:
        try:
            data = await storage.fetch(document.download_url)
            kind = DocumentKind.PDF if document.signed_url else document.kind
            page_count = await asyncio.to_thread(compositor.get_page_count, data, kind)
        except (StorageError, DocumentFormatError) as e:
            # Screen still works, the viewer reports the failure itself
            logger.warning(f"Page count unavailable for {document_id[:8]}: {e}")

    return SigningScreenResponse(
        document_id=document.id,
        document_name=document.name,
        kind=document.kind,
        preview_url=document.preview_url,
        signature_status=document.signature_status,
        page_count=page_count,
        canvas_height=settings.signature_canvas_height,
    )


@router.post("/sign/{document_id}", response_model=SignDocumentResponse)
async def submit_signature(
    request_body: SignDocumentRequest,
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
    storage: GCSClient = Depends(get_storage),
    compositor: PDFCompositor = Depends(get_compositor),
    email_service: EmailService = Depends(get_email_service),
    settings: Settings = Depends(get_settings),
):
    """Submit the drawn signature; on success the client goes to the confirmation screen."""
    return await process_signature(
        store,
        storage,
        compositor,
        document_id,
        request_body,
        settings=settings,
        email_service=email_service,
    )


@router.get("/documents/{document_id}/confirmation", response_model=ConfirmationResponse)
async def get_confirmation(
    document_id: str = Path(...),
    store: DocumentStore = Depends(get_store),
):
    set_context(document_id=document_id)
    document = require_document(store, document_id)
    return ConfirmationResponse(
        document_id=document.id,
        document_name=document.name,
        signature_status=document.signature_status,
        signed_by=document.signed_by,
        signed_at=document.signed_at,
        download_url=document.download_url,
    )
