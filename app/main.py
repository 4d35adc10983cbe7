"""
Document Signing Service - Main FastAPI Application
Upload, share, sign and download documents.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings, get_cors_origins, Settings
from app.email import EmailService
from app.exceptions import register_exception_handlers
from app.gcs import GCSClient
from app.pdf.compose import PDFCompositor
from app.pdf.viewer import PDFViewer
from app.store.documents import DocumentStore
from app.supabase_client import SupabaseClient
from app.utils.logging import setup_logging, RequestIdMiddleware

logger = logging.getLogger(__name__)

SERVICE_COMPONENTS = ("store", "storage", "compositor", "viewer", "email_service")


def build_services(app: FastAPI, settings: Settings) -> SupabaseClient:
    """Construct the collaborators once and hang them on app.state."""
    repository = SupabaseClient(settings)
    storage = GCSClient(settings)
    email_service = EmailService(settings)

    app.state.storage = storage
    app.state.email_service = email_service
    app.state.compositor = PDFCompositor(
        reduction=settings.signature_reduction,
        margin_percent=settings.signature_margin_percent,
    )
    app.state.viewer = PDFViewer(settings)
    app.state.store = DocumentStore(repository, storage, email_service, settings)
    return repository


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    setup_logging(
        environment=settings.environment,
        level=logging.DEBUG if settings.debug else logging.INFO,
    )
    logger.info(f"Starting Document Signing Service v1.0.0 ({settings.environment})")

    # Components already on app.state (tests) are left alone
    repository = None
    if not all(hasattr(app.state, name) for name in SERVICE_COMPONENTS):
        repository = build_services(app, settings)
        await app.state.store.start()

    yield

    logger.info("Shutting down Document Signing Service")
    if repository is not None:
        await app.state.store.close()
        app.state.viewer.close()
        await repository.close()


app = FastAPI(
    title="Document Signing Service",
    description="""Backend service for uploading, sharing and signing documents.

A document is uploaded (PDF or image), shared with a recipient by email,
signed with a drawn signature that is embedded into the PDF, and
downloaded in its signed form.
""",
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "documents", "description": "Document upload, sharing and download"},
        {"name": "notifications", "description": "Activity notifications"},
        {"name": "signing", "description": "Signing screens reached from the shared link"},
        {"name": "health", "description": "Health check endpoints"},
    ],
)


from app.routers import documents, health, notifications, signing

# Middleware
app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Exception handlers
register_exception_handlers(app)

# Routers
app.include_router(health.router)
app.include_router(documents.router)
app.include_router(notifications.router)
app.include_router(signing.router)
