"""
GitHub webhook signature validation utilities
"""

import hashlib
import hmac
from typing import Mapping, Optional

import structlog

logger = structlog.get_logger()


def validate_github_webhook(payload: bytes, signature: str, secret: str) -> bool:
    """
    Validate GitHub webhook signature

    Args:
        payload: Raw request body as bytes
        signature: X-Hub-Signature-256 header value
        secret: Webhook secret configured in GitHub

    Returns:
        bool: True if signature is valid, False otherwise
    """
    if not signature or not signature.startswith("sha256="):
        logger.warning("Invalid signature format", signature=signature)
        return False

    signature_hash = signature[7:]

    expected_signature = hmac.new(
        secret.encode("utf-8"), payload, hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(signature_hash, expected_signature)

    if not is_valid:
        logger.warning(
            "Invalid webhook signature",
            expected_prefix=expected_signature[:8],
            received_prefix=signature_hash[:8],
        )

    return is_valid


def extract_github_event_type(headers: Mapping[str, str]) -> Optional[str]:
    """
    Extract GitHub event type from webhook headers

    Args:
        headers: Request headers (case-insensitive mapping)

    Returns:
        Event type (e.g. 'pull_request'), or None when the header is absent
    """
    return headers.get("X-GitHub-Event") or None
