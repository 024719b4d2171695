"""Tests for feedbacker/utils/signatures.py."""

import hashlib
import hmac

import pytest

from feedbacker.exceptions import WebhookSignatureError
from feedbacker.utils.signatures import compute_signature, verify_signature

BODY = b'{"action": "opened"}'


class TestVerifySignature:
    """Tests for verify_signature."""

    def test_valid(self):
        """Should accept a matching HMAC-SHA256 signature."""
        digest = hmac.new(b"s3cret", BODY, hashlib.sha256).hexdigest()

        verify_signature(BODY, "s3cret", f"sha256={digest}")

    def test_compute_matches_header_format(self):
        assert compute_signature(BODY, "s3cret").startswith("sha256=")

    @pytest.mark.parametrize(
        ("secret", "header", "message"),
        [
            ("", "sha256=abc", "not configured"),
            ("s3cret", None, "Missing"),
            ("s3cret", "", "Missing"),
            ("s3cret", "sha1=abc", "Unsupported"),
            ("s3cret", "sha256=" + "0" * 64, "mismatch"),
        ],
    )
    def test_rejected(self, secret, header, message):
        """Should reject unset secrets and missing, malformed or wrong signatures."""
        with pytest.raises(WebhookSignatureError, match=message):
            verify_signature(BODY, secret, header)

    def test_tampered_body(self):
        """Should reject a signature computed over a different body."""
        header = compute_signature(BODY, "s3cret")

        with pytest.raises(WebhookSignatureError):
            verify_signature(BODY + b" ", "s3cret", header)
