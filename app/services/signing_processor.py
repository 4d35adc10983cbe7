import asyncio
import logging
from typing import Optional

from app.config import get_settings, Settings
from app.email import EmailService
from app.exceptions import (
    AlreadySignedException,
    CompositingException,
    NotFoundError,
    PersistenceException,
    SigningException,
    UploadException,
    ValidationException,
    VerificationException,
)
from app.gcs import GCSClient, StorageError, signed_object_path
from app.models import Document, DocumentKind, SignatureData, SignDocumentRequest, SignDocumentResponse
from app.pdf.compose import CompositingError, DocumentFormatError, PDFCompositor, SigningError
from app.pdf.placement import PlacementDeferred, PlacementValidationError
from app.signature.capture import EmptySignatureError, decode_signature_image, is_blank_signature
from app.supabase_client import DatabaseError
from app.store.documents import AlreadySignedError, DocumentNotFoundError, DocumentStore
from app.utils.datetime_utils import utc_now
from app.utils.logging import set_context

logger = logging.getLogger(__name__)


def build_signature(request: SignDocumentRequest) -> SignatureData:
    """
    Turn the submitted payload into SignatureData.

    Raises:
        EmptySignatureError: Nothing was drawn
        ValueError: Payload is not a base64 PNG
        OSError: PNG data is corrupt
    """
    image = decode_signature_image(request.signature_png_base64)
    if is_blank_signature(image):
        raise EmptySignatureError()
    return SignatureData(
        image=image,
        width=request.canvas_width,
        height=request.canvas_height,
        signer_name=request.signer_name or "",
        signer_email=request.signer_email or "",
        signed_at=utc_now(),
    )


async def discard_signed_upload(storage: GCSClient, path: str) -> None:
    """Remove an upload that will never be referenced. Failures are only logged."""
    try:
        await storage.delete(path)
    except StorageError as e:
        logger.warning(f"Could not remove orphaned signed upload {path}: {e.message}")


async def process_signature(
    store: DocumentStore,
    storage: GCSClient,
    compositor: PDFCompositor,
    document_id: str,
    request: SignDocumentRequest,
    settings: Optional[Settings] = None,
    email_service: Optional[EmailService] = None,
) -> SignDocumentResponse:
    """
    Capture -> placement -> compositing -> upload -> store update -> notify.

    Unknown and already signed documents are rejected before any work is
    done. The document only becomes signed once the signed file is stored,
    reachable and the status write is confirmed.
    """
    settings = settings or get_settings()
    set_context(document_id=document_id)

    document: Optional[Document] = store.get_document_by_id(document_id)
    if document is None:
        raise NotFoundError("Document", document_id)
    if document.is_signed:
        raise AlreadySignedException(document_id)
    if document.kind == DocumentKind.UNSUPPORTED:
        raise SigningException(
            f"Documents of type '{document.type}' cannot be signed",
            details={"kind": document.kind.value},
        )

    try:
        signature = build_signature(request)
    except EmptySignatureError as e:
        raise ValidationException(str(e), details={"field": "signature_png_base64"})
    except (ValueError, OSError) as e:
        raise CompositingException(str(e))

    # Fetch the original bytes
    try:
        original = await storage.fetch(document.preview_url)
    except StorageError as e:
        raise SigningException(f"Could not load the document: {e.message}", details={"reason": e.reason})

    click = (request.click_x, request.click_y) if request.has_click else None
    rendered = None
    if request.rendered_width is not None and request.rendered_height is not None:
        rendered = (request.rendered_width, request.rendered_height)

    # PyMuPDF work is CPU bound
    try:
        signed_pdf, placement = await asyncio.to_thread(
            compositor.sign_document_bytes,
            original,
            document.kind,
            signature,
            request.page,
            click,
            rendered,
        )
    except CompositingError as e:
        logger.warning(f"Signature image rejected for {document_id[:8]}: {e}")
        raise CompositingException(str(e))
    except PlacementDeferred as e:
        raise ValidationException(str(e), details={"code": "PLACEMENT_DEFERRED"})
    except PlacementValidationError as e:
        raise ValidationException(e.message, details={"code": e.code})
    except (DocumentFormatError, SigningError) as e:
        logger.error(f"Signing failed for {document_id[:8]}: {e}")
        raise SigningException(str(e))

    logger.info(f"Composited signature for {document_id[:8]} at {placement.to_dict()}")

    # Upload the signed PDF
    signed_path = signed_object_path(document_id)
    try:
        await storage.put(signed_path, signed_pdf, "application/pdf")
    except StorageError as e:
        raise UploadException(f"Could not store the signed document: {e.message}", reason=e.reason)

    signed_url = storage.get_public_url(signed_path)
    if not await storage.verify_public_url(signed_url):
        await discard_signed_upload(storage, signed_path)
        raise VerificationException("Signed document is not reachable at its public URL")

    try:
        signed_doc = await store.sign_document(document_id, signature, signed_url=signed_url)
    except DocumentNotFoundError:
        raise NotFoundError("Document", document_id)
    except AlreadySignedError:
        # Signed by someone else while we were compositing
        await discard_signed_upload(storage, signed_path)
        raise AlreadySignedException(document_id)
    except DatabaseError as e:
        await discard_signed_upload(storage, signed_path)
        raise PersistenceException(f"Could not record the signature: {e.message}")

    # Best-effort notice, never fails the signing
    if email_service is not None and signed_doc.recipient_email:
        result = await email_service.send_signed_notification(
            to_email=signed_doc.recipient_email,
            document_name=signed_doc.name,
            signer_name=signature.display_name,
            download_link=signed_doc.download_url,
        )
        if not result.success:
            logger.warning(f"Signed notice for {document_id[:8]} not delivered: {result.error}")

    return SignDocumentResponse(
        success=True,
        document=signed_doc,
        signed_pdf_url=signed_url,
        confirmation_url=f"{settings.get_app_url()}/documents/{document_id}/confirmation",
        message=f'Document "{signed_doc.name}" has been signed and is ready to download',
    )
