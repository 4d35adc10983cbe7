import base64
import re
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.utils.datetime_utils import utc_now


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

PNG_MAGIC = b'\x89PNG\r\n\x1a\n'


def is_valid_email(email: Optional[str]) -> bool:
    """Same rule as the share dialog: something@something.tld, no spaces."""
    return bool(email) and bool(EMAIL_PATTERN.match(email))


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore")


# Enums
class DocumentKind(str, Enum):
    PDF = "pdf"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_media_type(cls, media_type: Optional[str]) -> "DocumentKind":
        """Decide the kind once, at ingestion."""
        v = (media_type or "").lower().strip()
        if v == "application/pdf" or v.endswith("/pdf"):
            return cls.PDF
        if v.startswith("image/"):
            return cls.IMAGE
        return cls.UNSUPPORTED


class SignatureStatus(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ChangeEventType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Table(str, Enum):
    DOCUMENTS = "documents"
    NOTIFICATIONS = "notifications"


# Entities (persisted record shapes)
class Document(BaseModel):
    """Row of the documents table."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    type: str
    size: int = Field(..., ge=0)
    created_at: datetime
    preview_url: str
    signature_status: SignatureStatus = SignatureStatus.UNSIGNED
    recipient_email: Optional[str] = None
    signed_by: Optional[str] = None
    signed_at: Optional[datetime] = None
    kind: DocumentKind = DocumentKind.UNSUPPORTED
    storage_path: Optional[str] = None
    signed_url: Optional[str] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_kind(cls, data: Any) -> Any:
        # Rows written before the kind column existed only carry the media type
        if isinstance(data, dict) and not data.get("kind"):
            data = dict(data)
            data["kind"] = DocumentKind.from_media_type(data.get("type")).value
        return data

    @property
    def is_signed(self) -> bool:
        return self.signature_status == SignatureStatus.SIGNED

    @property
    def download_url(self) -> str:
        """Signed file when available, otherwise the original."""
        return self.signed_url or self.preview_url

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class Notification(BaseModel):
    """Row of the notifications table."""
    model_config = ConfigDict(extra="ignore")

    id: str
    type: NotificationType = NotificationType.INFO
    message: str
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    read: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class SignatureData(BaseModel):
    """
    A captured signature. Immutable; a redraw produces a new instance.

    width/height are the capture canvas dimensions in pixels, not the
    size the signature ends up with on the page.
    """
    model_config = ConfigDict(frozen=True)

    image: bytes
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    signer_name: str = ""
    signer_email: str = ""
    signed_at: datetime = Field(default_factory=utc_now)

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.image).decode()

    @property
    def display_name(self) -> str:
        return self.signer_name.strip() or "Anonymous"


class ChangeEvent(BaseModel):
    """Normalised change-feed event."""
    event_type: ChangeEventType
    table: Table
    record: Dict[str, Any]


# Request Models
class ShareDocumentRequest(BaseRequest):
    email: str = Field(..., min_length=3, max_length=254)
    send_email: bool = Field(default=True, description="Deliver the signing link by email")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip()
        if not is_valid_email(v):
            raise ValueError("Please enter a valid email address")
        return v


class SignDocumentRequest(BaseRequest):
    signature_png_base64: str = Field(..., min_length=16)
    signer_name: str = Field(default="", max_length=200)
    signer_email: Optional[str] = Field(None, max_length=254)
    canvas_width: int = Field(..., gt=0, description="Capture canvas width in pixels")
    canvas_height: int = Field(..., gt=0, description="Capture canvas height in pixels")
    page: Optional[int] = Field(None, ge=1, description="1-indexed page; defaults to the last page")
    click_x: Optional[float] = Field(None, ge=0, description="Click X on the rendered page, top-left origin")
    click_y: Optional[float] = Field(None, ge=0, description="Click Y on the rendered page, top-left origin")
    rendered_width: Optional[float] = Field(None, ge=0)
    rendered_height: Optional[float] = Field(None, ge=0)

    @field_validator("signature_png_base64")
    @classmethod
    def strip_data_url(cls, v: str) -> str:
        if v.startswith("data:") and "," in v:
            v = v.split(",", 1)[1]
        return v.strip()

    @property
    def has_click(self) -> bool:
        return self.click_x is not None and self.click_y is not None


# Response Models
class DocumentListResponse(BaseModel):
    documents: List[Document]
    total: int
    current_document_id: Optional[str] = None


class MarkReadResponse(BaseModel):
    notification_id: str
    read: bool
    unread_count: int


class ShareDocumentResponse(BaseModel):
    document_id: str
    signing_link: str
    recipient_email: str
    email_sent: bool = False
    email_error: Optional[str] = None


class SignDocumentResponse(BaseModel):
    success: bool
    document: Document
    signed_pdf_url: Optional[str] = None
    confirmation_url: str
    message: str


class NotificationItem(Notification):
    """Notification as listed, with a relative age label."""
    time_ago: str = ""


class NotificationListResponse(BaseModel):
    notifications: List[NotificationItem]
    unread_count: int


class SigningScreenResponse(BaseModel):
    """Data the /sign/{document_id} screen needs."""
    document_id: str
    document_name: str
    kind: DocumentKind
    preview_url: str
    signature_status: SignatureStatus
    page_count: Optional[int] = None
    canvas_height: int = 150


class ConfirmationResponse(BaseModel):
    document_id: str
    document_name: str
    signature_status: SignatureStatus
    signed_by: Optional[str] = None
    signed_at: Optional[datetime] = None
    download_url: str


# Error Response
class ErrorResponse(BaseModel):
    error: bool = True
    code: str
    message: str
    request_id: Optional[str] = None
    details: Optional[dict] = None
