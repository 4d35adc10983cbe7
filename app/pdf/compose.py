"""
PDF compositing using PyMuPDF (fitz).
Overlays a captured signature image on a page of an in-memory PDF and
serialises the mutated document back to bytes.
"""
import io
import logging
from datetime import datetime
from typing import Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from app.models import DocumentKind, SignatureData
from app.pdf.placement import (
    DEFAULT_MARGIN_PERCENT,
    DEFAULT_REDUCTION,
    SignaturePlacement,
    default_corner_position,
    fit_within_page,
    placement_from_click,
    scaled_signature_size,
    validate_placement,
)

logger = logging.getLogger(__name__)

# Formats PyMuPDF embeds directly; anything else Pillow can read is re-encoded as PNG
NATIVE_IMAGE_FORMATS = {"PNG", "JPEG"}

CAPTION_FONT_SIZE = 6


class SigningError(Exception):
    """PDF signing error."""
    pass


class DocumentFormatError(SigningError):
    """The document bytes are not a readable PDF or image."""


class CompositingError(SigningError):
    """The signature image could not be embedded."""


def normalize_raster(data: bytes) -> Tuple[bytes, int, int]:
    """
    Check that bytes are a raster image PyMuPDF can embed.

    Returns:
        (image bytes, width px, height px); non PNG/JPEG input is re-encoded as PNG

    Raises:
        CompositingError: If Pillow cannot identify the image
    """
    if not data:
        raise CompositingError("Signature image is empty")
    try:
        with Image.open(io.BytesIO(data)) as probe:
            probe.verify()
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            if img.format in NATIVE_IMAGE_FORMATS:
                return data, width, height
            buffer = io.BytesIO()
            img.convert("RGBA").save(buffer, format="PNG")
            return buffer.getvalue(), width, height
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise CompositingError(f"Signature image is not a supported raster format: {e}")


def open_document(data: bytes, kind: DocumentKind) -> fitz.Document:
    """
    Open document bytes as an in-memory PDF.

    Image documents are wrapped into a single page the size of the image
    (1 px = 1 pt) so they can be signed like a PDF.

    Raises:
        DocumentFormatError: If the bytes cannot be opened
    """
    if kind == DocumentKind.PDF:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (fitz.FileDataError, RuntimeError, ValueError) as e:
            raise DocumentFormatError(f"Invalid PDF file: {e}")
        if doc.page_count < 1:
            doc.close()
            raise DocumentFormatError("PDF has no pages")
        return doc

    if kind == DocumentKind.IMAGE:
        try:
            image_bytes, width, height = normalize_raster(data)
        except CompositingError as e:
            raise DocumentFormatError(f"Invalid image document: {e}")
        doc = fitz.open()
        page = doc.new_page(width=width, height=height)
        page.insert_image(page.rect, stream=image_bytes)
        return doc

    raise DocumentFormatError(f"Cannot sign documents of kind '{kind.value}'")


def to_pdf_bytes(data: bytes, kind: DocumentKind) -> bytes:
    """PDF bytes for any signable document; images are wrapped first."""
    if kind == DocumentKind.PDF:
        return data
    doc = open_document(data, kind)
    try:
        return doc.tobytes(garbage=4, deflate=True)
    finally:
        doc.close()


def page_size(doc: fitz.Document, page_number: int) -> Tuple[float, float]:
    """Width and height in points of a 1-indexed page."""
    page = doc[page_number - 1]
    return page.rect.width, page.rect.height


def format_caption(signer_name: str, signed_at: datetime) -> str:
    return f"Signed by {signer_name} | {signed_at.strftime('%Y-%m-%d %H:%M UTC')}"


class PDFCompositor:
    """Signature image overlay using PyMuPDF."""

    def __init__(
        self,
        reduction: float = DEFAULT_REDUCTION,
        margin_percent: float = DEFAULT_MARGIN_PERCENT,
    ):
        self.reduction = reduction
        self.margin_percent = margin_percent

    def composite(
        self,
        doc: fitz.Document,
        page_number: int,
        image: bytes,
        x: float,
        y: float,
        width: float,
        height: float,
        caption: Optional[str] = None,
    ) -> bytes:
        """
        Embed a signature image and return the re-serialised document.

        The document object is mutated in place; keep a copy of the
        original bytes if the unsigned version is still needed.

        Args:
            doc: Open PyMuPDF document
            page_number: 1-indexed page
            image: Encoded raster image
            x, y: Bottom-left corner in PDF coordinates (points)
            width, height: Size on the page in points
            caption: Optional text line written under the signature

        Raises:
            PlacementValidationError: If the box does not fit the page
            CompositingError: If the image cannot be embedded
        """
        image_bytes, _, _ = normalize_raster(image)

        placement = SignaturePlacement(page=page_number, x=x, y=y, w=width, h=height)
        if 1 <= page_number <= doc.page_count:
            page_width, page_height = page_size(doc, page_number)
        else:
            page_width = page_height = 0.0
        validate_placement(placement, doc.page_count, page_width, page_height)

        page = doc[page_number - 1]

        # PyMuPDF rects use a top-left origin
        y_top = page_height - y - height
        sig_rect = fitz.Rect(x, y_top, x + width, y_top + height)
        if page.rotation:
            sig_rect = sig_rect * page.derotation_matrix

        try:
            page.insert_image(sig_rect, stream=image_bytes, keep_proportion=True)
        except (RuntimeError, ValueError) as e:
            raise CompositingError(f"Failed to embed signature image: {e}")

        if caption:
            self._add_caption(page, caption, x, y_top, height, page_height)

        data = doc.tobytes(garbage=4, deflate=True)

        logger.info(
            f"Added signature to page {page_number} at "
            f"({x:.1f}, {y:.1f}) size ({width:.1f}x{height:.1f})"
        )
        return data

    def _add_caption(
        self,
        page: fitz.Page,
        caption: str,
        x: float,
        y_top: float,
        height: float,
        page_height: float,
    ) -> None:
        baseline = y_top + height + CAPTION_FONT_SIZE + 2
        if baseline > page_height:
            baseline = max(y_top - 2, CAPTION_FONT_SIZE)
        page.insert_text(
            (x, baseline),
            caption,
            fontsize=CAPTION_FONT_SIZE,
            color=(0.35, 0.35, 0.35),
        )

    def plan_placement(
        self,
        doc: fitz.Document,
        signature: SignatureData,
        page: Optional[int] = None,
        click: Optional[Tuple[float, float]] = None,
        rendered_size: Optional[Tuple[float, float]] = None,
    ) -> SignaturePlacement:
        """
        Decide where the signature goes.

        Defaults to the last page. With a click and the rendered size of
        the page the click is mapped to page coordinates; otherwise the
        signature is anchored in the bottom-right corner.

        Raises:
            PlacementDeferred: If a click was given against a zero-size surface
        """
        page_number = page or doc.page_count
        if page_number < 1 or page_number > doc.page_count:
            # Let validate_placement produce the error code
            return SignaturePlacement(page=page_number, x=0, y=0, w=1, h=1)

        page_width, page_height = page_size(doc, page_number)
        w, h = scaled_signature_size(signature.width, signature.height, self.reduction)
        w, h = fit_within_page(w, h, page_width, page_height)

        if click is not None and rendered_size is not None:
            return placement_from_click(
                page_number,
                click[0],
                click[1],
                rendered_size[0],
                rendered_size[1],
                page_width,
                page_height,
                w,
                h,
            )

        corner = default_corner_position(page_width, page_height, w, h, self.margin_percent)
        return SignaturePlacement(page=page_number, x=corner.x, y=corner.y, w=w, h=h)

    def sign_document_bytes(
        self,
        data: bytes,
        kind: DocumentKind,
        signature: SignatureData,
        page: Optional[int] = None,
        click: Optional[Tuple[float, float]] = None,
        rendered_size: Optional[Tuple[float, float]] = None,
        with_caption: bool = True,
    ) -> Tuple[bytes, SignaturePlacement]:
        """
        Open, place, composite and serialise in one step.

        Returns:
            (signed PDF bytes, placement used)
        """
        doc = open_document(data, kind)
        try:
            placement = self.plan_placement(doc, signature, page, click, rendered_size)
            caption = format_caption(signature.display_name, signature.signed_at) if with_caption else None
            signed = self.composite(
                doc,
                placement.page,
                signature.image,
                placement.x,
                placement.y,
                placement.w,
                placement.h,
                caption=caption,
            )
        finally:
            doc.close()
        return signed, placement

    def get_page_count(self, data: bytes, kind: DocumentKind) -> int:
        doc = open_document(data, kind)
        try:
            return doc.page_count
        finally:
            doc.close()
