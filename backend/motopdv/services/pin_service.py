# Overview: Service-layer operations for the manager PIN; encapsulates hashing, lockout and challenges.

"""
Manager PIN Service

WHY: Operators may only apply large discounts, edit prices, export reports or
lock the dashboard into operator mode after the manager types the PIN. Every
privileged call site goes through the same challenge flow.

SECURITY FEATURES:
- PIN hashed with bcrypt (salted), compared with bcrypt.checkpw
- Lockout after MAX_FAILED_ATTEMPTS failures within LOCKOUT_WINDOW, for
  LOCKOUT_DURATION, shared by every challenge and by manager login
- Failures and successes recorded in security_events
- A successful challenge yields a one-shot grant, hashed with SHA-256,
  bound to the challenge action, valid for GRANT_TTL
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import timedelta

import bcrypt

from ..extensions import db
from ..models import PinChallenge, SecurityEvent, SystemSettings
from motopdv.time_utils import utcnow

logger = logging.getLogger(__name__)


# Configuration constants
PIN_LENGTH = 4
MAX_FAILED_ATTEMPTS = 5  # Lock after 5 failed attempts
LOCKOUT_WINDOW = timedelta(minutes=15)  # Failures counted within 15 minutes
LOCKOUT_DURATION = timedelta(minutes=5)  # Lockout for 5 minutes
GRANT_TTL = timedelta(minutes=2)

PIN_IDENTIFIER = "manager_pin"

ACTION_SALE_DISCOUNT = "SALE_DISCOUNT"
ACTION_PRODUCT_PRICE_EDIT = "PRODUCT_PRICE_EDIT"
ACTION_REPORT_EXPORT = "REPORT_EXPORT"
ACTION_MODE_SWITCH = "MODE_SWITCH"
AUTHORIZATION_ACTIONS = {
    ACTION_SALE_DISCOUNT: ("Desconto Elevado", "Vendas com desconto acima do limite requerem PIN do Gestor."),
    ACTION_PRODUCT_PRICE_EDIT: ("Alteração de Preço", "Alterar preços no modo operacional requer PIN do Gestor."),
    ACTION_REPORT_EXPORT: ("Acesso Restrito", "Digite o PIN para visualizar o relatório."),
    ACTION_MODE_SWITCH: ("Ativar Modo Operacional", "Digite o PIN do Gestor para restringir esta tela."),
}

STATUS_AUTHORIZED = "AUTHORIZED"
STATUS_DENIED = "DENIED"
STATUS_LOCKED = "LOCKED"


class PinValidationError(ValueError):
    """Raised when a PIN doesn't meet format requirements."""


class AuthorizationError(Exception):
    """Raised for invalid, expired or already used challenges and grants."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class AuthorizationRequiredError(AuthorizationError):
    """Raised when a privileged action is attempted without a manager grant."""
    def __init__(self, action: str, message: str | None = None, details: dict | None = None):
        super().__init__(message or "Manager authorization required", details)
        self.action = action


class PinLockedError(AuthorizationError):
    """Raised when PIN entry is locked after too many failures."""
    def __init__(self, seconds_remaining: int):
        super().__init__(
            "PIN entry temporarily locked due to too many failed attempts",
            details={"retry_after_seconds": seconds_remaining},
        )
        self.seconds_remaining = seconds_remaining


@dataclass
class ChallengeResult:
    status: str
    challenge: PinChallenge
    failed_attempts: int
    max_attempts: int = MAX_FAILED_ATTEMPTS
    seconds_until_unlock: int | None = None
    grant: str | None = None

    @property
    def authorized(self) -> bool:
        return self.status == STATUS_AUTHORIZED

    def to_dict(self) -> dict:
        data = {
            "status": self.status,
            "challenge": self.challenge.to_dict(),
            "failed_attempts": self.failed_attempts,
            "max_attempts": self.max_attempts,
            "seconds_until_unlock": self.seconds_until_unlock,
        }
        if self.grant:
            data["grant"] = self.grant
        return data


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def validate_pin_format(pin) -> str:
    """PIN must be exactly PIN_LENGTH digits."""
    if not isinstance(pin, str) or not re.fullmatch(rf"\d{{{PIN_LENGTH}}}", pin):
        raise PinValidationError(f"PIN must be exactly {PIN_LENGTH} digits")
    return pin


def hash_pin(pin: str) -> str:
    validate_pin_format(pin)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(pin.encode("utf-8"), salt).decode("utf-8")


def verify_pin(pin, pin_hash: str | None) -> bool:
    """Constant-time comparison of a candidate PIN against its bcrypt hash."""
    if not pin_hash or not isinstance(pin, str) or not pin:
        return False
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def hash_grant(grant: str) -> str:
    return hashlib.sha256(grant.encode("utf-8")).hexdigest()


def _manager_pin_hash() -> str | None:
    settings = db.session.get(SystemSettings, 1)
    return settings.pin_hash if settings else None


# ---------------------------------------------------------------------------
# Audit + lockout
# ---------------------------------------------------------------------------

def log_security_event(
    event_type: str,
    *,
    success: bool,
    action: str | None = None,
    reason: str | None = None,
    access_session_id: int | None = None,
    challenge_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = False,
) -> SecurityEvent:
    event = SecurityEvent(
        event_type=event_type,
        action=action,
        success=success,
        reason=reason,
        access_session_id=access_session_id,
        challenge_id=challenge_id,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    if commit:
        db.session.commit()
    return event


def get_recent_failed_attempts() -> int:
    """
    Count PIN failures within LOCKOUT_WINDOW since the last successful entry.
    """
    cutoff = utcnow() - LOCKOUT_WINDOW

    last_success = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "PIN_VERIFIED",
        SecurityEvent.occurred_at >= cutoff,
    ).order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).first()

    query = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "PIN_FAILED",
        SecurityEvent.occurred_at >= cutoff,
    )
    if last_success:
        query = query.filter(SecurityEvent.id > last_success.id)

    return query.count()


def is_pin_locked() -> tuple[bool, int | None]:
    """
    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    failed_count = get_recent_failed_attempts()
    if failed_count < MAX_FAILED_ATTEMPTS:
        return False, None

    most_recent = db.session.query(SecurityEvent).filter(
        SecurityEvent.event_type == "PIN_FAILED",
    ).order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).first()

    if most_recent:
        lockout_end = most_recent.occurred_at + LOCKOUT_DURATION
        now = utcnow()
        if now < lockout_end:
            return True, max(1, int((lockout_end - now).total_seconds()))

    return False, None


def get_lockout_status() -> dict:
    failed_count = get_recent_failed_attempts()
    locked, seconds_remaining = is_pin_locked()
    return {
        "locked": locked,
        "failed_attempts": failed_count,
        "max_attempts": MAX_FAILED_ATTEMPTS,
        "seconds_until_unlock": seconds_remaining,
        "lockout_duration_minutes": int(LOCKOUT_DURATION.total_seconds() / 60),
    }


def verify_manager_pin(
    pin,
    *,
    action: str = "LOGIN_GESTOR",
    access_session_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """
    Check a PIN against the configured manager PIN, honouring the lockout.

    Records the attempt and commits it, so a failure is counted even when the
    caller aborts afterwards. Raises PinLockedError while locked.
    """
    locked, seconds_remaining = is_pin_locked()
    if locked:
        raise PinLockedError(seconds_remaining or int(LOCKOUT_DURATION.total_seconds()))

    ok = verify_pin(pin, _manager_pin_hash())
    log_security_event(
        "PIN_VERIFIED" if ok else "PIN_FAILED",
        success=ok,
        action=action,
        reason=None if ok else "Invalid PIN",
        access_session_id=access_session_id,
        ip_address=ip_address,
        user_agent=user_agent,
        commit=True,
    )
    if not ok:
        failed = get_recent_failed_attempts()
        if failed >= MAX_FAILED_ATTEMPTS:
            logger.warning("Manager PIN locked after %s failed attempts", failed)
    return ok


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------

def open_challenge(action: str, title: str | None = None, description: str | None = None) -> PinChallenge:
    """Open a PENDING challenge for one privileged action."""
    if action not in AUTHORIZATION_ACTIONS:
        raise AuthorizationError(f"Unknown authorization action: {action}")
    if _manager_pin_hash() is None:
        raise AuthorizationError("Workshop setup not completed")

    default_title, default_description = AUTHORIZATION_ACTIONS[action]
    challenge = PinChallenge(
        action=action,
        title=title or default_title,
        description=description or default_description,
        status="PENDING",
        failed_attempts=0,
    )
    db.session.add(challenge)
    db.session.commit()
    return challenge


def _get_pending(challenge_id: int) -> PinChallenge:
    challenge = db.session.get(PinChallenge, challenge_id)
    if not challenge:
        raise AuthorizationError("Challenge not found")
    if challenge.status != "PENDING":
        raise AuthorizationError(f"Challenge is {challenge.status}")
    return challenge


def submit_pin(
    challenge_id: int,
    pin,
    *,
    access_session_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> ChallengeResult:
    """
    Verify a PIN for a pending challenge.

    AUTHORIZED -> a grant is issued (returned in plaintext once, stored hashed)
    DENIED     -> failure counted on the challenge and in the lockout log
    LOCKED     -> no verification performed
    """
    challenge = _get_pending(challenge_id)

    locked, seconds_remaining = is_pin_locked()
    if locked:
        return ChallengeResult(
            status=STATUS_LOCKED,
            challenge=challenge,
            failed_attempts=challenge.failed_attempts,
            seconds_until_unlock=seconds_remaining,
        )

    if verify_pin(pin, _manager_pin_hash()):
        grant = secrets.token_urlsafe(32)
        now = utcnow()
        challenge.status = "AUTHORIZED"
        challenge.authorized_at = now
        challenge.grant_hash = hash_grant(grant)
        challenge.grant_expires_at = now + GRANT_TTL
        log_security_event(
            "PIN_VERIFIED",
            success=True,
            action=challenge.action,
            access_session_id=access_session_id,
            challenge_id=challenge.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.session.commit()
        logger.info("Challenge %s authorized for %s", challenge.id, challenge.action)
        return ChallengeResult(
            status=STATUS_AUTHORIZED,
            challenge=challenge,
            failed_attempts=challenge.failed_attempts,
            grant=grant,
        )

    challenge.failed_attempts = (challenge.failed_attempts or 0) + 1
    log_security_event(
        "PIN_FAILED",
        success=False,
        action=challenge.action,
        reason="Invalid PIN",
        access_session_id=access_session_id,
        challenge_id=challenge.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.commit()

    locked, seconds_remaining = is_pin_locked()
    if locked or challenge.failed_attempts >= MAX_FAILED_ATTEMPTS:
        logger.warning("Manager PIN locked on challenge %s", challenge.id)
        return ChallengeResult(
            status=STATUS_LOCKED,
            challenge=challenge,
            failed_attempts=challenge.failed_attempts,
            seconds_until_unlock=seconds_remaining or int(LOCKOUT_DURATION.total_seconds()),
        )

    return ChallengeResult(
        status=STATUS_DENIED,
        challenge=challenge,
        failed_attempts=challenge.failed_attempts,
    )


def cancel_challenge(challenge_id: int) -> PinChallenge:
    """Abandon a pending challenge; nothing else changes."""
    challenge = _get_pending(challenge_id)
    challenge.status = "CANCELED"
    db.session.commit()
    return challenge


def consume_grant(grant: str | None, action: str, *, commit: bool = True) -> PinChallenge:
    """
    Spend a grant on `action`. One-shot: a consumed grant is rejected.

    Pass commit=False to stage the consumption inside the caller's
    transaction, so a failed privileged write leaves the grant unspent.
    """
    if not grant:
        raise AuthorizationRequiredError(action)

    challenge = db.session.query(PinChallenge).filter_by(grant_hash=hash_grant(grant)).first()
    if not challenge:
        raise AuthorizationError("Invalid authorization grant")
    if challenge.action != action:
        raise AuthorizationError(
            "Authorization grant does not cover this action",
            details={"granted_action": challenge.action, "required_action": action},
        )
    if challenge.status != "AUTHORIZED":
        raise AuthorizationError("Authorization grant already used")
    if challenge.grant_expires_at and utcnow() > challenge.grant_expires_at:
        raise AuthorizationError("Authorization grant expired")

    challenge.status = "CONSUMED"
    challenge.consumed_at = utcnow()
    if commit:
        db.session.commit()
    return challenge
