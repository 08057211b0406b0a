"""Tests for structured audit logging of billing and account events."""

from __future__ import annotations

import uuid
from unittest.mock import patch

from bergvlei.services.audit_logger import AuditLogger

FAKE_USER = uuid.UUID("00000000-0000-0000-0000-000000000001")


def test_log_subscription_transition():
    logger = AuditLogger()

    with patch("bergvlei.services.audit_logger.log") as mock_log:
        logger.log_subscription_transition(
            FAKE_USER, "FREE", "ACTIVE", "activate", "stripe", "evt_1"
        )

        mock_log.info.assert_called_once()
        call_kwargs = mock_log.info.call_args[1]

        assert call_kwargs["event_type"] == "subscription_transition"
        assert call_kwargs["audit"] is True
        assert call_kwargs["user_id"] == str(FAKE_USER)
        assert call_kwargs["from_state"] == "FREE"
        assert call_kwargs["to_state"] == "ACTIVE"
        assert call_kwargs["billing_event"] == "activate"
        assert call_kwargs["provider_event_id"] == "evt_1"
        assert "timestamp" in call_kwargs


def test_rejected_transition_is_a_warning():
    logger = AuditLogger()

    with patch("bergvlei.services.audit_logger.log") as mock_log:
        logger.log_rejected_transition(FAKE_USER, "FREE", "cancel", "revenuecat")

        mock_log.info.assert_not_called()
        call_kwargs = mock_log.warning.call_args[1]
        assert call_kwargs["event_type"] == "subscription_transition_rejected"
        assert call_kwargs["billing_event"] == "cancel"
        assert call_kwargs["provider_event_id"] is None


def test_log_one_time_purchase():
    logger = AuditLogger()

    with patch("bergvlei.services.audit_logger.log") as mock_log:
        logger.log_one_time_purchase(FAKE_USER, "hint_pack_10", "revenuecat")

        call_kwargs = mock_log.info.call_args[1]
        assert call_kwargs["event_type"] == "one_time_purchase"
        assert call_kwargs["product_id"] == "hint_pack_10"


def test_password_reset_token_only_on_request():
    logger = AuditLogger()

    with patch("bergvlei.services.audit_logger.log") as mock_log:
        logger.log_password_reset(FAKE_USER, "requested", token="abc123")
        logger.log_password_reset(FAKE_USER, "completed")

        first, second = mock_log.info.call_args_list
        assert first[1]["reset_token"] == "abc123"
        assert second[1]["stage"] == "completed"
        assert second[1]["reset_token"] is None
