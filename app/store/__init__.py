"""Document lifecycle store."""
from app.store.documents import (
    AlreadySignedError,
    DocumentNotFoundError,
    DocumentStore,
    InvalidEmailError,
    StoreError,
    UnsupportedDocumentError,
    VerificationError,
    merge_record,
    remove_record,
    sort_newest_first,
)

__all__ = [
    "DocumentStore",
    "StoreError",
    "DocumentNotFoundError",
    "AlreadySignedError",
    "UnsupportedDocumentError",
    "InvalidEmailError",
    "VerificationError",
    "merge_record",
    "remove_record",
    "sort_newest_first",
]
