"""Structured audit logger for billing and account-security events.

Emits structured log entries via structlog for subscription transitions,
one-time purchases, and password resets.  Every entry carries an
``audit: true`` flag so production log pipelines can filter on it easily.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog


log = structlog.get_logger()


class AuditLogger:
    """Structured audit logger for account events.

    All methods are synchronous -- they only emit log lines and perform
    no I/O beyond writing to the configured structlog sink.
    """

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    def log_subscription_transition(
        self,
        user_id,
        from_state: str,
        to_state: str,
        event_type: str,
        provider: str,
        event_id: str | None = None,
    ) -> None:
        """Record an applied state change of a user's subscription."""
        log.info(
            "audit_event",
            event_type="subscription_transition",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            from_state=from_state,
            to_state=to_state,
            billing_event=event_type,
            provider=provider,
            provider_event_id=event_id,
            audit=True,
        )

    def log_rejected_transition(
        self,
        user_id,
        from_state: str,
        event_type: str,
        provider: str,
        event_id: str | None = None,
    ) -> None:
        """Record a billing event that is illegal from the current state."""
        log.warning(
            "audit_event",
            event_type="subscription_transition_rejected",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            from_state=from_state,
            billing_event=event_type,
            provider=provider,
            provider_event_id=event_id,
            audit=True,
        )

    # ------------------------------------------------------------------
    # One-time purchase
    # ------------------------------------------------------------------

    def log_one_time_purchase(self, user_id, product_id: str | None, provider: str) -> None:
        """Log a non-renewing purchase (e.g. a hint pack)."""
        log.info(
            "audit_event",
            event_type="one_time_purchase",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            product_id=product_id,
            provider=provider,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def log_password_reset(self, user_id, stage: str, token: str | None = None) -> None:
        """Log a reset request or completion.

        *token* is only passed on request; with no mail delivery the log is
        how operators hand the reset link over.
        """
        log.info(
            "audit_event",
            event_type="password_reset",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            stage=stage,
            reset_token=token,
            audit=True,
        )
