from __future__ import annotations

from ..extensions import db
from motopdv.time_utils import to_utc_z


class AccessSession(db.Model):
    """
    Bearer-token session carrying the access mode (GESTOR / OPERACIONAL).

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - Absolute and idle timeouts (see access_service)
    - Mode changes go through access_service.transition, never direct writes
    """
    __tablename__ = "access_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # SHA-256 of the bearer token
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)
    mode = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "mode": self.mode,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }


class PinChallenge(db.Model):
    """
    Manager PIN challenge guarding one privileged action.

    PENDING -> AUTHORIZED (grant issued) -> CONSUMED, or PENDING -> CANCELED.
    The grant is one-shot, bound to `action`, and short-lived.
    """
    __tablename__ = "pin_challenges"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # SALE_DISCOUNT, PRODUCT_PRICE_EDIT, REPORT_EXPORT, MODE_SWITCH
    action = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=True)
    description = db.Column(db.String(512), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    failed_attempts = db.Column(db.Integer, nullable=False, default=0)

    grant_hash = db.Column(db.String(255), nullable=True, unique=True, index=True)
    grant_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    authorized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "failed_attempts": self.failed_attempts,
            "created_at": to_utc_z(self.created_at),
            "authorized_at": to_utc_z(self.authorized_at) if self.authorized_at else None,
            "consumed_at": to_utc_z(self.consumed_at) if self.consumed_at else None,
        }


class SecurityEvent(db.Model):
    """
    Security event audit log.

    WHY: Track PIN failures, authorizations and access-mode changes. The PIN
    lockout is computed from these rows.

    Rows are only ever inserted.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_type_occurred", "event_type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # PIN_FAILED, PIN_VERIFIED, MODE_CHANGED, ...
    action = db.Column(db.String(64), nullable=True)     # e.g., "SALE_DISCOUNT", "LOGIN_GESTOR"

    success = db.Column(db.Boolean, nullable=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    access_session_id = db.Column(db.Integer, nullable=True)
    challenge_id = db.Column(db.Integer, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "action": self.action,
            "success": self.success,
            "reason": self.reason,
            "access_session_id": self.access_session_id,
            "challenge_id": self.challenge_id,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
