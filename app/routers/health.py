"""
Health check endpoints for diagnosing service dependencies.
"""
from fastapi import APIRouter, Depends

from app.config import get_settings, Settings
from app.dependencies import get_store
from app.store.documents import DocumentStore

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("")
async def health_check():
    """Health check endpoint for Cloud Run."""
    return {"status": "healthy", "version": "1.0.0"}


@router.get("/store")
async def health_check_store(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """
    Reports what the in-process store holds and which integrations are configured.
    Useful for diagnosing empty lists and missing emails.
    """
    return {
        "documents": len(store.documents),
        "notifications": len(store.notifications),
        "unread": store.get_unread_count(),
        "realtime_enabled": settings.realtime_enabled,
        "storage_bucket_configured": bool(settings.storage_bucket),
        "email_configured": bool(settings.resend_api_key),
    }
