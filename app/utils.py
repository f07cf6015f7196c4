"""
Utility functions for the webhook API.
"""

import hmac
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def verify_hmac_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify an HMAC-SHA256 webhook signature.

    Evolution API does not sign deliveries by default, so verification only
    applies when a secret is configured.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from the X-Signature header
        secret: WEBHOOK_SECRET; empty disables the check

    Returns:
        True if no secret is configured or the signature matches
    """
    if not secret:
        return True
    if not signature:
        logger.warning("Missing webhook signature")
        return False

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.debug(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")
    return is_valid
