"""Webhook signature verification (``X-Hub-Signature-256``)."""

import hashlib
import hmac

from feedbacker.exceptions import WebhookSignatureError

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload_body: bytes, secret: str) -> str:
    """Return the ``sha256=<hexdigest>`` signature for a payload."""
    digest = hmac.new(secret.encode("utf-8"), msg=payload_body, digestmod=hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(payload_body: bytes, secret: str, signature_header: str | None) -> None:
    """Verify that the payload was signed with the deployment's shared secret.

    Args:
        payload_body: Raw request body bytes
        secret: The webhook secret
        signature_header: The ``X-Hub-Signature-256`` header value

    Raises:
        WebhookSignatureError: If the secret is unset, the header is missing,
            malformed, or does not match
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")
    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise WebhookSignatureError("Unsupported signature format")

    expected = compute_signature(payload_body, secret)
    if not hmac.compare_digest(expected, signature_header):
        raise WebhookSignatureError("Signature mismatch")
