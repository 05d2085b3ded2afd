"""
Transactional e-mail through the Brevo REST API.

One message per recipient: a bad address or a rejected message for one
admin never affects delivery to the others.
"""

import logging
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from renewdesk.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

# Shared client, reuses TLS connections across calls
_http_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, connect=5.0),
        )
    return _http_client


class _BrevoRetryableError(Exception):
    """Raised for 5xx or network errors that warrant a retry."""


@retry(
    retry=retry_if_exception_type(_BrevoRetryableError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _post_to_brevo(payload: dict, recipient: str) -> bool:
    client = get_http_client()
    headers = {
        "accept": "application/json",
        "api-key": settings.BREVO_API_KEY,
        "content-type": "application/json",
    }
    try:
        response = await client.post(BREVO_API_URL, headers=headers, json=payload)
    except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
        logger.warning("email_network_error_retrying", error=str(exc), to=recipient)
        raise _BrevoRetryableError(str(exc)) from exc

    if response.status_code in (201, 202):
        logger.info(
            "email_sent_brevo",
            to=recipient,
            subject=payload["subject"],
            message_id=response.json().get("messageId"),
        )
        return True

    if response.status_code >= 500:
        logger.warning("email_brevo_5xx_retrying", status_code=response.status_code, to=recipient)
        raise _BrevoRetryableError(f"Brevo returned {response.status_code}")

    # 4xx: rejected, retrying will not help
    logger.error(
        "email_failed_brevo",
        status_code=response.status_code,
        response=response.text[:500],
        to=recipient,
    )
    return False


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: Optional[str] = None,
) -> bool:
    """
    Send one e-mail. Returns True if Brevo accepted it.

    Retries up to 3 times with exponential back-off on 5xx and network
    errors; returns False once retries are exhausted.
    """
    if not settings.BREVO_API_KEY:
        logger.warning("brevo_api_key_missing", message="Email sending skipped", to=to_email)
        return False

    payload = {
        "sender": {"name": settings.APP_NAME, "email": settings.EMAIL_FROM_ADDRESS},
        "to": [{"email": to_email}],
        "subject": subject,
        "htmlContent": html_content,
    }
    if text_content:
        payload["textContent"] = text_content

    try:
        return await _post_to_brevo(payload, to_email)
    except _BrevoRetryableError as exc:
        logger.error("email_all_retries_exhausted", error=str(exc), to=to_email, subject=subject)
        return False
