"""
Configuration module - loads secrets from Google Secret Manager.
Falls back to environment variables for local development.
"""
import json
import os
import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator, field_validator
from typing import List, Any

logger = logging.getLogger(__name__)


def get_secret_from_gcp(secret_id: str, project_id: Optional[str] = None) -> Optional[str]:
    """
    Fetch secret from Google Secret Manager.
    Returns None if not available (fallback to env vars).
    """
    try:
        from google.cloud import secretmanager

        project = project_id or os.environ.get("GCP_PROJECT_ID") or os.environ.get("GOOGLE_CLOUD_PROJECT")
        if not project:
            return None

        client = secretmanager.SecretManagerServiceClient()
        name = f"projects/{project}/secrets/{secret_id}/versions/latest"
        response = client.access_secret_version(request={"name": name})
        return response.payload.data.decode("UTF-8")
    except Exception as e:
        logger.debug(f"Could not fetch secret {secret_id} from Secret Manager: {e}")
        return None


class Settings(BaseSettings):
    """Application settings with Secret Manager integration."""

    # GCP
    gcp_project_id: str = Field(default="", alias="GCP_PROJECT_ID")

    # Supabase (documents / notifications tables + realtime)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_anon_key: str = Field(default="", alias="SUPABASE_ANON_KEY")
    realtime_enabled: bool = Field(default=True, alias="REALTIME_ENABLED")

    # Object storage
    storage_bucket: str = Field(default="", alias="STORAGE_BUCKET")
    storage_public_base_url: str = Field(
        default="https://storage.googleapis.com",
        alias="STORAGE_PUBLIC_BASE_URL",
    )
    max_upload_bytes: int = Field(default=20 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    # Network behaviour
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")
    retry_attempts: int = Field(default=3, alias="RETRY_ATTEMPTS")
    retry_delays_seconds: str = Field(
        default="0,2,4",
        alias="RETRY_DELAYS_SECONDS",
        description="Comma-separated backoff delays before each attempt",
    )

    # Resend (Email)
    resend_api_key: str = Field(default="", alias="RESEND_API_KEY")
    resend_from_email: str = Field(default="onboarding@resend.dev", alias="RESEND_FROM_EMAIL")

    # App
    app_base_url: str = Field(default="http://localhost:8080", alias="APP_BASE_URL")

    # Signature placement
    signature_reduction: float = Field(
        default=0.5,
        alias="SIGNATURE_REDUCTION",
        description="Factor applied to the capture canvas size when embedding the signature",
    )
    signature_margin_percent: float = Field(
        default=5.0,
        alias="SIGNATURE_MARGIN_PERCENT",
        description="Margin from the bottom-right corner, as percent of page size",
    )
    signature_canvas_height: int = Field(default=150, alias="SIGNATURE_CANVAS_HEIGHT")

    # Viewer
    viewer_default_scale: float = Field(default=1.2, alias="VIEWER_DEFAULT_SCALE")
    viewer_min_scale: float = Field(default=0.6, alias="VIEWER_MIN_SCALE")
    viewer_max_scale: float = Field(default=3.0, alias="VIEWER_MAX_SCALE")
    viewer_scale_step: float = Field(default=0.2, alias="VIEWER_SCALE_STEP")

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # CORS
    allowed_origins: List[str] = Field(default=[], alias="ALLOWED_ORIGINS")

    @field_validator("allowed_origins", mode='before')
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse ALLOWED_ORIGINS from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._load_secrets_from_gcp()

    def _load_secrets_from_gcp(self):
        """Override settings with values from Secret Manager if available."""
        if not self.gcp_project_id:
            return

        secret_mappings = {
            "supabase_url": "SUPABASE_URL",
            "supabase_anon_key": "SUPABASE_ANON_KEY",
            "storage_bucket": "STORAGE_BUCKET",
            "resend_api_key": "RESEND_API_KEY",
        }

        for attr, secret_id in secret_mappings.items():
            secret_value = get_secret_from_gcp(secret_id, self.gcp_project_id)
            if secret_value:
                setattr(self, attr, secret_value)
                logger.info(f"Loaded {secret_id} from Secret Manager")

    @model_validator(mode='after')
    def validate_ranges(self) -> 'Settings':
        """Validate URL configuration and numeric ranges."""
        if self.environment == "production":
            if not self.app_base_url.startswith("https://"):
                logger.warning(
                    f"Configuration Warning: APP_BASE_URL ('{self.app_base_url}') "
                    f"does not start with 'https://' in a '{self.environment}' environment."
                )
            if "localhost" in self.app_base_url:
                logger.error(
                    f"CRITICAL: APP_BASE_URL ('{self.app_base_url}') contains localhost in production! "
                    "Signing links sent by email will not work."
                )

        if not 0 < self.signature_reduction <= 1:
            raise ValueError("SIGNATURE_REDUCTION must be in (0, 1]")
        if self.viewer_min_scale <= 0 or self.viewer_min_scale > self.viewer_max_scale:
            raise ValueError("VIEWER_MIN_SCALE must be positive and not exceed VIEWER_MAX_SCALE")
        if self.retry_attempts < 1:
            raise ValueError("RETRY_ATTEMPTS must be at least 1")

        return self

    def get_app_url(self) -> str:
        """Public base URL used for signing links."""
        return self.app_base_url.rstrip("/")

    def retry_delay(self, attempt_num: int) -> float:
        """Backoff delay before the given 1-indexed attempt."""
        delays = [float(p) for p in self.retry_delays_seconds.split(",") if p.strip()]
        if not delays:
            return 0.0
        return delays[min(attempt_num - 1, len(delays) - 1)]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Development origins (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://localhost:8080",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8080",
]


def get_cors_origins(settings: Optional[Settings] = None) -> List[str]:
    """
    Get list of allowed CORS origins.

    Combines origins from ALLOWED_ORIGINS with the development origins
    when not running in production.
    """
    settings = settings or get_settings()
    origins = set(settings.allowed_origins)

    if settings.environment != "production":
        origins.update(DEV_CORS_ORIGINS)

    return sorted(origins)
