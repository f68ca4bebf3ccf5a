"""
Request authentication helpers: API key check and webhook signatures
"""

import base64
import hashlib
import hmac
import logging
from typing import Optional

from core.config import settings

logger = logging.getLogger(__name__)


def verify_api_key(provided: Optional[str], expected: Optional[str] = None) -> bool:
    """Constant-time API key comparison. No configured key means open access."""
    expected = expected if expected is not None else settings.API_KEY
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def compute_webhook_signature(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 digest, as sent in X-Shopify-Hmac-Sha256"""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str] = None
) -> bool:
    """
    Verify a webhook body against its HMAC header.

    Without a configured secret, unsigned requests are accepted only in
    development; any other environment rejects them.
    """
    secret = secret if secret is not None else settings.SHOPIFY_WEBHOOK_SECRET

    if not secret:
        if settings.is_development:
            logger.warning("SHOPIFY_WEBHOOK_SECRET not configured - accepting unsigned webhook in development")
            return True
        logger.error(f"SHOPIFY_WEBHOOK_SECRET not configured - rejecting webhook ({settings.ENVIRONMENT})")
        return False

    if not signature:
        logger.warning("Webhook verification failed: missing signature")
        return False

    expected = compute_webhook_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
