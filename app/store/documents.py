"""
Document lifecycle store.

Holds the documents and notifications the service knows about, the
currently selected document, and the unread count. Every mutation, whether
it comes from an API call or from the change feed, is serialised through a
single lock and applied with the merge helpers below. Local state only
changes after the backend has confirmed the write.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence, TypeVar, Union

from pydantic import ValidationError

from app.config import get_settings, Settings
from app.email import EmailResult, EmailService
from app.gcs import GCSClient, StorageError, document_object_path
from app.models import (
    ChangeEvent,
    ChangeEventType,
    Document,
    DocumentKind,
    Notification,
    NotificationType,
    SignatureData,
    SignatureStatus,
    Table,
    is_valid_email,
)
from app.supabase_client import DatabaseError, SupabaseClient
from app.utils.datetime_utils import is_older, parse_db_timestamp, utc_now
from app.utils.logging import fingerprint, set_context

logger = logging.getLogger(__name__)

Record = TypeVar("Record", Document, Notification)


class StoreError(Exception):
    """Base class for document store errors."""


class DocumentNotFoundError(StoreError):
    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class AlreadySignedError(StoreError):
    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} is already signed")
        self.document_id = document_id


class UnsupportedDocumentError(StoreError):
    def __init__(self, content_type: Optional[str]):
        super().__init__(f"Unsupported document type: {content_type or 'unknown'}")
        self.content_type = content_type


class InvalidEmailError(StoreError):
    def __init__(self, email: Optional[str]):
        super().__init__("Please enter a valid email address")
        self.email = email


class VerificationError(StoreError):
    """The public URL of an uploaded object could not be fetched."""

    def __init__(self, url: str):
        super().__init__("Uploaded file is not reachable at its public URL")
        self.url = url


# Pure merge helpers

def sort_newest_first(records: Sequence[Record]) -> List[Record]:
    return sorted(
        records,
        key=lambda r: parse_db_timestamp(r.created_at) or utc_now(),
        reverse=True,
    )


def _keep_signature(existing: Document, incoming: Document) -> Document:
    """A signed document never goes back to unsigned."""
    if not existing.is_signed or incoming.is_signed:
        return incoming
    return incoming.model_copy(update={
        "signature_status": SignatureStatus.SIGNED,
        "signed_by": existing.signed_by,
        "signed_at": existing.signed_at,
        "signed_url": existing.signed_url or incoming.signed_url,
    })


def merge_record(records: Sequence[Record], record: Record) -> List[Record]:
    """
    Merge one record into a list keyed by id.

    An existing record is replaced in place; a new one is prepended.
    When both sides carry updated_at and the incoming one is older, the
    list is returned unchanged. Otherwise the last writer wins.
    """
    merged = list(records)
    for index, existing in enumerate(merged):
        if existing.id != record.id:
            continue
        if is_older(record.updated_at, existing.updated_at):
            logger.debug(f"Ignoring stale revision of {record.id[:8]}")
            return merged
        if isinstance(existing, Document) and isinstance(record, Document):
            record = _keep_signature(existing, record)
        merged[index] = record
        return merged
    return [record] + merged


def remove_record(records: Sequence[Record], record_id: str) -> List[Record]:
    return [r for r in records if r.id != record_id]


class DocumentStore:
    """
    Document and notification state for the whole process.

    Built once at startup with its collaborators and closed on shutdown.
    """

    def __init__(
        self,
        repository: SupabaseClient,
        storage: GCSClient,
        email_service: Optional[EmailService] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.email_service = email_service
        self.settings = settings or get_settings()
        self._lock = asyncio.Lock()
        self._documents: List[Document] = []
        self._notifications: List[Notification] = []
        self._current_document_id: Optional[str] = None
        self._subscribed = False

    # Lifecycle

    async def start(self) -> None:
        await self.load_data()
        if self.settings.realtime_enabled:
            try:
                await self.repository.subscribe(self.apply_change_event)
                self._subscribed = True
            except Exception as e:
                # Store still works without live updates
                logger.error(f"Change feed subscription failed: {e}")

    async def close(self) -> None:
        if self._subscribed:
            await self.repository.unsubscribe()
            self._subscribed = False

    async def load_data(self) -> None:
        """Replace local state with what the backend holds, newest first."""
        documents = await self.repository.list_documents()
        notifications = await self.repository.list_notifications()
        async with self._lock:
            self._documents = sort_newest_first(documents)
            self._notifications = sort_newest_first(notifications)
            if self._current_document_id and self._find(self._current_document_id) is None:
                self._current_document_id = None
        logger.info(f"Loaded {len(documents)} documents and {len(notifications)} notifications")

    # Read side

    @property
    def documents(self) -> List[Document]:
        return list(self._documents)

    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    @property
    def current_document(self) -> Optional[Document]:
        if self._current_document_id is None:
            return None
        return self._find(self._current_document_id)

    def get_document_by_id(self, document_id: str) -> Optional[Document]:
        return self._find(document_id)

    def get_unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def set_current_document(self, document_id: Optional[str]) -> Optional[Document]:
        """Select a document, or clear the selection with None."""
        if document_id is None:
            self._current_document_id = None
            return None
        document = self._find(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        self._current_document_id = document_id
        return document

    def _find(self, document_id: str) -> Optional[Document]:
        for document in self._documents:
            if document.id == document_id:
                return document
        return None

    # Documents

    async def add_document(self, data: bytes, name: str, content_type: Optional[str]) -> Document:
        """
        Ingest an uploaded file.

        Uploads the bytes, checks that the public URL answers, persists the
        record and only then makes it the first and current document.

        Raises:
            UnsupportedDocumentError: Not a PDF or image
            StorageError: Upload rejected or failed after retries
            VerificationError: Public URL not reachable after upload
            DatabaseError: Record could not be persisted
        """
        kind = DocumentKind.from_media_type(content_type)
        if kind == DocumentKind.UNSUPPORTED:
            raise UnsupportedDocumentError(content_type)

        document_id = str(uuid.uuid4())
        set_context(document_id=document_id)
        path = document_object_path(document_id, name)

        await self.storage.put(path, data, content_type)
        url = self.storage.get_public_url(path)

        if not await self.storage.verify_public_url(url):
            await self._discard_object(path)
            raise VerificationError(url)

        document = Document(
            id=document_id,
            name=name,
            type=content_type,
            size=len(data),
            created_at=utc_now(),
            preview_url=url,
            kind=kind,
            storage_path=path,
        )

        try:
            saved = await self.repository.insert_document(document)
        except Exception:
            await self._discard_object(path)
            raise

        async with self._lock:
            self._documents = merge_record(self._documents, saved)
            self._current_document_id = saved.id

        logger.info(f"Added {kind.value} document {saved.id[:8]} ({saved.size} bytes)")
        return saved

    async def _discard_object(self, path: str) -> None:
        try:
            await self.storage.delete(path)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned upload {path}: {e}")

    async def share_document(self, document_id: str, email: str) -> str:
        """
        Record a recipient and return the signing link.

        Sharing again with the same address returns the same link without
        emitting another notification.

        Raises:
            InvalidEmailError: Malformed address
            DocumentNotFoundError: Unknown document
        """
        email = (email or "").strip()
        if not is_valid_email(email):
            raise InvalidEmailError(email)

        set_context(document_id=document_id)
        link = f"{self.settings.get_app_url()}/sign/{document_id}"

        # Lookup and compare under the lock so concurrent retries dedupe
        async with self._lock:
            document = self._find(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)

            if document.recipient_email == email:
                logger.info(f"Document {document_id[:8]} already shared with {fingerprint(email, 'email_')}")
                return link

            saved = await self.repository.update_document(document_id, {"recipient_email": email})
            self._documents = merge_record(self._documents, saved)
            await self._notify_locked(
                NotificationType.INFO,
                f"Document shared with {email}",
                document_id=document_id,
                document_name=document.name,
            )

        logger.info(f"Shared document {document_id[:8]} with {fingerprint(email, 'email_')}")
        return link

    async def send_signing_invitation(self, document_id: str, email: str, link: str) -> Optional[EmailResult]:
        """Email the signing link. Returns None when no email service is wired."""
        if self.email_service is None:
            return None
        document = self._find(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return await self.email_service.send_signing_invitation(
            to_email=email,
            document_name=document.name,
            signing_link=link,
        )

    async def sign_document(
        self,
        document_id: str,
        signature: SignatureData,
        signed_url: Optional[str] = None,
    ) -> Document:
        """
        Mark a document signed once the backend accepts the write.

        Raises:
            DocumentNotFoundError: Unknown document
            AlreadySignedError: Document is already signed
        """
        set_context(document_id=document_id)
        async with self._lock:
            document = self._find(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)
            if document.is_signed:
                raise AlreadySignedError(document_id)

            updates: Dict[str, Any] = {
                "signature_status": SignatureStatus.SIGNED.value,
                "signed_by": signature.display_name,
                "signed_at": signature.signed_at.isoformat(),
            }
            if signed_url:
                updates["signed_url"] = signed_url

            saved = await self.repository.update_document(document_id, updates)
            self._documents = merge_record(self._documents, saved)
            await self._notify_locked(
                NotificationType.SUCCESS,
                f'Document "{document.name}" has been signed and is ready to download',
                document_id=document_id,
                document_name=document.name,
            )

        logger.info(f"Document {document_id[:8]} signed by {fingerprint(signature.display_name, 'signer_')}")
        return self._find(document_id) or saved

    # Notifications

    async def add_notification(
        self,
        type: Union[NotificationType, str],
        message: str,
        document_id: Optional[str] = None,
        document_name: Optional[str] = None,
    ) -> Notification:
        async with self._lock:
            return await self._add_notification_locked(type, message, document_id, document_name)

    async def _add_notification_locked(
        self,
        type: Union[NotificationType, str],
        message: str,
        document_id: Optional[str] = None,
        document_name: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            type=NotificationType(type),
            message=message,
            document_id=document_id,
            document_name=document_name,
            read=False,
            created_at=utc_now(),
        )
        saved = await self.repository.insert_notification(notification)
        self._notifications = merge_record(self._notifications, saved)
        return saved

    async def _notify_locked(
        self,
        type: NotificationType,
        message: str,
        document_id: str,
        document_name: str,
    ) -> Optional[Notification]:
        """Notification following a confirmed write; failure never undoes that write."""
        try:
            return await self._add_notification_locked(type, message, document_id, document_name)
        except DatabaseError as e:
            logger.warning(f"Notification for {document_id[:8]} not stored: {e.message}")
            return None

    async def mark_notification_as_read(self, notification_id: str) -> Optional[Notification]:
        """No-op for unknown or already read notifications."""
        set_context(notification_id=notification_id)
        async with self._lock:
            notification = next((n for n in self._notifications if n.id == notification_id), None)
            if notification is None:
                logger.info(f"Notification {notification_id[:8]} not found, nothing to mark")
                return None
            if notification.read:
                return notification
            saved = await self.repository.update_notification(notification_id, {"read": True})
            self._notifications = merge_record(self._notifications, saved)
            return saved

    # Change feed

    async def apply_change_event(self, event: ChangeEvent) -> None:
        """Merge an insert/update/delete coming from another client."""
        try:
            await self._apply_change_event(event)
        except ValidationError as e:
            logger.warning(f"Dropping malformed {event.table.value} change event: {e.error_count()} errors")
            return
        logger.debug(f"Applied {event.event_type.value} on {event.table.value} {str(event.record.get('id'))[:8]}")

    async def _apply_change_event(self, event: ChangeEvent) -> None:
        async with self._lock:
            if event.table == Table.DOCUMENTS:
                if event.event_type == ChangeEventType.DELETE:
                    record_id = event.record["id"]
                    self._documents = remove_record(self._documents, record_id)
                    if self._current_document_id == record_id:
                        self._current_document_id = None
                else:
                    self._documents = merge_record(self._documents, Document(**event.record))
            elif event.table == Table.NOTIFICATIONS:
                if event.event_type == ChangeEventType.DELETE:
                    self._notifications = remove_record(self._notifications, event.record["id"])
                else:
                    self._notifications = merge_record(self._notifications, Notification(**event.record))
