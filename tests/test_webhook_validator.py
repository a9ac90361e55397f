"""
Tests for webhook signature validation
"""

import hashlib
import hmac

from src.utils.webhook_validator import extract_github_event_type, validate_github_webhook


class TestWebhookValidator:
    """Test cases for webhook validation helpers"""

    def test_valid_signature(self):
        payload = b'{"action": "opened"}'
        digest = hmac.new(b"secret", payload, hashlib.sha256).hexdigest()

        assert validate_github_webhook(payload, f"sha256={digest}", "secret") is True

    def test_signature_for_other_payload(self):
        digest = hmac.new(b"secret", b"original", hashlib.sha256).hexdigest()

        assert validate_github_webhook(b"tampered", f"sha256={digest}", "secret") is False

    def test_signature_with_wrong_secret(self):
        payload = b"{}"
        digest = hmac.new(b"other", payload, hashlib.sha256).hexdigest()

        assert validate_github_webhook(payload, f"sha256={digest}", "secret") is False

    def test_malformed_signature(self):
        assert validate_github_webhook(b"{}", "sha1=abcdef", "secret") is False
        assert validate_github_webhook(b"{}", "", "secret") is False

    def test_extract_event_type(self):
        assert extract_github_event_type({"X-GitHub-Event": "pull_request"}) == "pull_request"
        assert extract_github_event_type({"X-GitHub-Event": ""}) is None
        assert extract_github_event_type({}) is None
