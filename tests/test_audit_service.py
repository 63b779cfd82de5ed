"""
Audit sink tests: identifier masking, message redaction and the
never-raise guarantee.
"""

import logging
from unittest.mock import MagicMock

import pytest

from gallery_backend.models import AuditLog
from gallery_backend.services.audit_service import (
    AuditSink,
    sanitize_identifier,
    sanitize_message,
    PAYMENT_VERIFICATION_FAILURE,
)


class TestSanitizeIdentifier:

    @pytest.mark.parametrize("value,expected", [
        (None, "N/A"),
        ("", "N/A"),
        ("AAAA11112222BBBB3333", "AAAA****3333"),
        ("abcdefgh", "ab****"),
        ("x", "x****"),
        (123456789, "1234****6789"),
    ])
    def test_masking(self, value, expected):
        assert sanitize_identifier(value) == expected


class TestSanitizeMessage:

    def test_empty(self):
        assert sanitize_message(None) == "N/A"
        assert sanitize_message("") == "N/A"

    def test_long_tokens_redacted(self):
        token = "a1" * 20
        assert sanitize_message(f"bearer {token} rejected") == "bearer [TOKEN_REDACTED] rejected"

    def test_card_numbers_redacted(self):
        assert sanitize_message("card 4111111111111111 declined") == "card [CARD_REDACTED] declined"

    def test_secrets_in_query_strings_redacted(self):
        cleaned = sanitize_message("retry with password=hunter2&api_key=abc123 PWD=x")
        assert cleaned == "retry with password=[REDACTED]&api_key=[REDACTED] PWD=[REDACTED]"

    def test_truncated_to_500(self):
        cleaned = sanitize_message("word " * 200)
        assert len(cleaned) == 500
        assert cleaned.endswith("...")

    def test_short_messages_untouched(self):
        assert sanitize_message("payment declined by platform") == "payment declined by platform"


class TestAuditSink:

    def test_logs_to_audit_logger(self, caplog):
        sink = AuditSink(persist=False)
        with caplog.at_level(logging.INFO, logger="gallery_backend.audit"):
            sink.payment_verification_failure(5, "AAAA11112222BBBB3333", "apple_iap", "status 21002")

        text = caplog.text
        assert PAYMENT_VERIFICATION_FAILURE in text
        assert "AAAA****3333" in text
        assert "AAAA11112222BBBB3333" not in text

    def test_persists_when_enabled(self, session_factory):
        sink = AuditSink(session_factory=session_factory, persist=True)
        sink.account_deletion(9)

        session = session_factory()
        try:
            row = session.query(AuditLog).one()
            assert row.event_type == "ACCOUNT_DELETION"
            assert row.user_id == 9
        finally:
            session.close()

    def test_never_raises(self):
        broken = MagicMock(side_effect=RuntimeError("db down"))
        sink = AuditSink(session_factory=broken, persist=True)
        sink.subscription_cancellation(1, 2, "pro")
