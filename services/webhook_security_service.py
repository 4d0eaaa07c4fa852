"""
Webhook Security Service - HMAC-SHA256 signature validation for carrier webhooks
Signatures are always computed over the raw request bytes
"""

import hashlib
import hmac
import logging
from typing import Mapping, Optional

from utils.exceptions import AuthzError

logger = logging.getLogger(__name__)

# Yalidine has used all of these header spellings; first present wins
YALIDINE_SIGNATURE_HEADERS = ("x-yalidine-signature", "x_yalidine_signature", "yalidine-signature")


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def validate_webhook_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """
    Constant-time check of a hex HMAC-SHA256 signature

    Args:
        raw_body: Request body exactly as received
        signature: Header value, optionally prefixed with "sha256="
        secret: Shared webhook secret

    Returns:
        True if signature is valid, False otherwise
    """
    provided = (signature or "").strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(expected.encode("utf-8"), provided.lower().encode("utf-8"))


def extract_signature(headers: Mapping[str, str], header_names=YALIDINE_SIGNATURE_HEADERS) -> Optional[str]:
    for name in header_names:
        value = headers.get(name)
        if value:
            return value
    return None


class WebhookSecurityService:
    """Centralized webhook security validation"""

    @classmethod
    def authenticate_yalidine(cls, headers: Mapping[str, str], raw_body: bytes, secret: Optional[str]) -> None:
        """
        Raise AuthzError unless the request carries a valid signature.
        Without a configured secret every request is accepted.
        """
        if not secret:
            logger.warning("⚠️ YALIDINE_SIGNATURE_SKIPPED: no webhook secret configured")
            return

        signature = extract_signature(headers)
        if not signature:
            logger.warning("🚫 YALIDINE_SIGNATURE_MISSING")
            raise AuthzError("Missing webhook signature")

        if not validate_webhook_signature(raw_body, signature, secret):
            logger.error("🚫 YALIDINE_SIGNATURE_INVALID")
            raise AuthzError("Invalid webhook signature")
