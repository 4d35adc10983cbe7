"""
Email module using Resend for sending emails.

Includes reliable delivery with retry logic and attempt tracking.
"""
import asyncio
import html as html_lib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Tuple

import httpx

from app.config import get_settings, Settings
from app.utils.logging import fingerprint

logger = logging.getLogger(__name__)


# Retry configuration
MAX_RETRY_ATTEMPTS = 3
RETRY_DELAYS_SECONDS = [0, 2, 4]  # Exponential backoff: immediate, 2s, 4s
REQUEST_TIMEOUT_SECONDS = 30.0


class EmailDeliveryStatus(str, Enum):
    """Email delivery status for tracking."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # Email not configured


@dataclass
class EmailAttempt:
    """Record of a single email send attempt."""
    attempt_number: int
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class EmailResult:
    """Result of email send operation with delivery tracking."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    delivery_status: EmailDeliveryStatus = EmailDeliveryStatus.PENDING
    attempts: List[EmailAttempt] = field(default_factory=list)
    total_attempts: int = 0

    @property
    def is_delivered(self) -> bool:
        return self.delivery_status == EmailDeliveryStatus.SENT

    @property
    def is_failed(self) -> bool:
        return self.delivery_status == EmailDeliveryStatus.FAILED


@dataclass
class RenderedEmail:
    """Rendered email ready to send."""
    subject: str
    html: str
    text: Optional[str] = None


def render_signing_invitation(document_name: str, signing_link: str) -> RenderedEmail:
    name = html_lib.escape(document_name)
    link = html_lib.escape(signing_link, quote=True)
    body = f"""
<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Document Ready for Signature</h2>
  <p>You have been asked to sign <strong>{name}</strong>.</p>
  <p>
    <a href="{link}" style="display: inline-block; padding: 12px 24px; background: #111827;
       color: #ffffff; text-decoration: none; border-radius: 6px;">View and Sign Document</a>
  </p>
  <p style="color: #6b7280; font-size: 12px;">If the button does not work, open this link: {link}</p>
</div>
""".strip()
    return RenderedEmail(
        subject=f"Document Ready for Signature: {document_name}",
        html=body,
        text=f"You have been asked to sign {document_name}. Open {signing_link} to sign it.",
    )


def render_signed_notice(document_name: str, signer_name: str, download_link: str) -> RenderedEmail:
    name = html_lib.escape(document_name)
    signer = html_lib.escape(signer_name)
    link = html_lib.escape(download_link, quote=True)
    body = f"""
<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Document Signed</h2>
  <p><strong>{name}</strong> has been signed by {signer}.</p>
  <p><a href="{link}">Download the signed document</a></p>
</div>
""".strip()
    return RenderedEmail(
        subject=f"Document Signed: {document_name}",
        html=body,
        text=f"{document_name} has been signed by {signer_name}. Download: {download_link}",
    )


class EmailService:
    """Email service using Resend HTTP API."""

    RESEND_API_URL = "https://api.resend.com/emails"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def is_configured(self) -> bool:
        """Check if email service is properly configured."""
        return bool(self.settings.resend_api_key)

    def _build_request(self, to_email: str, subject: str, html: str, text: Optional[str]) -> Tuple[dict, dict]:
        payload = {
            "from": self.settings.resend_from_email,
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        headers = {
            "Authorization": f"Bearer {self.settings.resend_api_key}",
            "Content-Type": "application/json",
        }
        return payload, headers

    async def _attempt(self, attempt_number: int, payload: dict, headers: dict) -> EmailAttempt:
        """One POST to Resend. Transport failures become a failed attempt."""
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.RESEND_API_URL,
                    json=payload,
                    headers=headers,
                    timeout=REQUEST_TIMEOUT_SECONDS,
                )
        except httpx.TimeoutException as e:
            return EmailAttempt(attempt_number, success=False, error=f"Timeout: {e}")
        except httpx.HTTPError as e:
            return EmailAttempt(attempt_number, success=False, error=str(e))

        if response.status_code in (200, 201):
            return EmailAttempt(attempt_number, success=True, message_id=response.json().get("id"))
        return EmailAttempt(
            attempt_number,
            success=False,
            error=f"API error {response.status_code}: {response.text[:200]}",
        )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> EmailResult:
        """
        Send email via Resend with up to MAX_RETRY_ATTEMPTS attempts,
        waiting RETRY_DELAYS_SECONDS between them.

        Never raises; delivery problems are reported in the EmailResult.
        """
        email_fp = fingerprint(to_email, "email_")

        if not self.is_configured():
            logger.warning(f"Resend API key not configured, skipping email to {email_fp}")
            return EmailResult(
                success=False,
                error="Email service not configured",
                delivery_status=EmailDeliveryStatus.SKIPPED,
            )

        payload, headers = self._build_request(to_email, subject, html, text)
        attempts: List[EmailAttempt] = []

        for attempt_num in range(1, MAX_RETRY_ATTEMPTS + 1):
            if attempt_num > 1:
                delay = RETRY_DELAYS_SECONDS[min(attempt_num - 1, len(RETRY_DELAYS_SECONDS) - 1)]
                logger.info(f"Email retry {attempt_num}/{MAX_RETRY_ATTEMPTS} to {email_fp}, waiting {delay}s")
                await asyncio.sleep(delay)

            attempt = await self._attempt(attempt_num, payload, headers)
            attempts.append(attempt)

            if attempt.success:
                logger.info(f"Email sent to {email_fp} on attempt {attempt_num}, message_id: {attempt.message_id}")
                return EmailResult(
                    success=True,
                    message_id=attempt.message_id,
                    delivery_status=EmailDeliveryStatus.SENT,
                    attempts=attempts,
                    total_attempts=attempt_num,
                )
            logger.warning(f"Email attempt {attempt_num}/{MAX_RETRY_ATTEMPTS} to {email_fp} failed: {attempt.error}")

        last_error = attempts[-1].error
        logger.error(f"Email to {email_fp} failed after {MAX_RETRY_ATTEMPTS} attempts. Last error: {last_error}")
        return EmailResult(
            success=False,
            error=last_error,
            delivery_status=EmailDeliveryStatus.FAILED,
            attempts=attempts,
            total_attempts=len(attempts),
        )

    async def send_signing_invitation(
        self,
        to_email: str,
        document_name: str,
        signing_link: str,
    ) -> EmailResult:
        """Send the signing link to the recipient."""
        rendered = render_signing_invitation(document_name, signing_link)
        return await self.send_email(to_email, rendered.subject, rendered.html, rendered.text)

    async def send_signed_notification(
        self,
        to_email: str,
        document_name: str,
        signer_name: str,
        download_link: str,
    ) -> EmailResult:
        """Tell the recipient the document is signed and where to download it."""
        rendered = render_signed_notice(document_name, signer_name, download_link)
        return await self.send_email(to_email, rendered.subject, rendered.html, rendered.text)


__all__ = [
    "EmailService",
    "EmailResult",
    "EmailDeliveryStatus",
    "EmailAttempt",
    "RenderedEmail",
    "render_signing_invitation",
    "render_signed_notice",
    "MAX_RETRY_ATTEMPTS",
    "RETRY_DELAYS_SECONDS",
]
