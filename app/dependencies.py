"""
FastAPI dependencies resolving the collaborators built in the lifespan.
"""
from fastapi import Request

from app.email import EmailService
from app.gcs import GCSClient
from app.pdf.compose import PDFCompositor
from app.pdf.viewer import PDFViewer
from app.store.documents import DocumentStore


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_storage(request: Request) -> GCSClient:
    return request.app.state.storage


def get_compositor(request: Request) -> PDFCompositor:
    return request.app.state.compositor


def get_viewer(request: Request) -> PDFViewer:
    return request.app.state.viewer


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service
