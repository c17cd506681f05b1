"""Structured JSON audit logger for ledger, settlement, and admin events.

Emits structured log entries via structlog.  Every entry carries an
``audit: true`` flag so production log pipelines can filter on it easily.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog


log = structlog.get_logger()


def _opt(value) -> str | None:
    return str(value) if value is not None else None


class AuditLogger:
    """Structured audit logger for platform events.

    All methods are synchronous -- they only emit log lines and perform
    no I/O beyond writing to the configured structlog sink.
    """

    # ------------------------------------------------------------------
    # Credit event
    # ------------------------------------------------------------------

    def log_credit_event(
        self,
        user_id,
        amount,
        txn_type: str,
        reference_id=None,
    ) -> None:
        """Log one ledger movement (grant or spend)."""
        log.info(
            "audit_event",
            event_type="credit_event",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            amount=amount,
            txn_type=txn_type,
            reference_id=_opt(reference_id),
            audit=True,
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def log_settlement(self, details: dict) -> None:
        """Log a settled order.

        Expected keys in *details*: ``order_id``, ``order_number``,
        ``buyer_id``, ``seller_id``, ``project_id``, ``amount``,
        ``platform_fee``, ``seller_proceeds``.  Any extra keys are passed
        through.
        """
        fields = {k: v for k, v in details.items() if k not in ("event_type", "audit")}
        for key in ("order_id", "buyer_id", "seller_id", "project_id"):
            fields[key] = _opt(details.get(key))
        log.info(
            "audit_event",
            event_type="settlement",
            timestamp=datetime.now(timezone.utc).isoformat(),
            audit=True,
            **fields,
        )

    # ------------------------------------------------------------------
    # Order transition
    # ------------------------------------------------------------------

    def log_order_transition(
        self,
        order_id,
        from_status: str,
        to_status: str,
        actor_id,
        reason: str | None = None,
    ) -> None:
        log.info(
            "audit_event",
            event_type="order_transition",
            timestamp=datetime.now(timezone.utc).isoformat(),
            order_id=str(order_id),
            from_status=from_status,
            to_status=to_status,
            actor_id=_opt(actor_id),
            reason=reason,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    def log_config_change(self, admin_id, config_key: str, old_value, new_value) -> None:
        log.info(
            "audit_event",
            event_type="config_change",
            timestamp=datetime.now(timezone.utc).isoformat(),
            admin_id=str(admin_id),
            config_key=config_key,
            old_value=old_value,
            new_value=new_value,
            audit=True,
        )

    def log_role_review(
        self,
        admin_id,
        request_id,
        user_id,
        to_role: str,
        decision: str,
    ) -> None:
        """Log an admin decision on a role-upgrade request."""
        log.info(
            "audit_event",
            event_type="role_review",
            timestamp=datetime.now(timezone.utc).isoformat(),
            admin_id=str(admin_id),
            request_id=str(request_id),
            user_id=str(user_id),
            to_role=to_role,
            decision=decision,
            audit=True,
        )


audit = AuditLogger()
