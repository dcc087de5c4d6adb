# Overview: Service-layer operations for access sessions; encapsulates mode transitions and tokens.

"""
Access Mode Sessions

The workshop has no user accounts: a terminal is either in manager mode
(GESTOR, entered with the manager PIN), operator mode (OPERACIONAL, counter
only) or logged out. The current mode travels as an explicit AccessContext;
changes are computed by `transition` and then persisted on the session row.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- Absolute (SESSION_ABSOLUTE_TIMEOUT) and idle (SESSION_IDLE_TIMEOUT) timeouts
- Revocable on logout
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import Enum

from ..extensions import db
from ..models import AccessSession
from .pin_service import log_security_event
from motopdv.time_utils import utcnow

logger = logging.getLogger(__name__)


# Configuration constants
SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=12)  # One working day
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


class AccessMode(str, Enum):
    GESTOR = "GESTOR"
    OPERACIONAL = "OPERACIONAL"
    UNAUTHORIZED = "UNAUTHORIZED"


class AccessEvent(str, Enum):
    ENTER_GESTOR = "ENTER_GESTOR"
    ENTER_OPERACIONAL = "ENTER_OPERACIONAL"
    LOGOUT = "LOGOUT"


class AccessTransitionError(Exception):
    """Raised when an access event is not allowed from the current mode."""


@dataclass(frozen=True)
class AccessContext:
    """Who is at the terminal. Passed explicitly to every service that cares."""
    mode: AccessMode = AccessMode.UNAUTHORIZED
    session_id: int | None = None

    @property
    def is_gestor(self) -> bool:
        return self.mode == AccessMode.GESTOR

    @property
    def is_authenticated(self) -> bool:
        return self.mode != AccessMode.UNAUTHORIZED

    def to_dict(self) -> dict:
        return {"mode": self.mode.value, "session_id": self.session_id}


GESTOR_CONTEXT = AccessContext(mode=AccessMode.GESTOR)
OPERACIONAL_CONTEXT = AccessContext(mode=AccessMode.OPERACIONAL)


def transition(context: AccessContext, event: AccessEvent, *, pin_verified: bool = False) -> AccessContext:
    """
    Pure state transition: (old context, event) -> new context.

    ENTER_GESTOR       requires a verified manager PIN
    ENTER_OPERACIONAL  free from the login screen, PIN-gated when leaving manager mode
    LOGOUT             always allowed
    """
    if event == AccessEvent.LOGOUT:
        return replace(context, mode=AccessMode.UNAUTHORIZED)

    if event == AccessEvent.ENTER_GESTOR:
        if not pin_verified:
            raise AccessTransitionError("Manager mode requires the manager PIN")
        return replace(context, mode=AccessMode.GESTOR)

    if event == AccessEvent.ENTER_OPERACIONAL:
        if context.mode == AccessMode.GESTOR and not pin_verified:
            raise AccessTransitionError("Switching to operator mode requires the manager PIN")
        return replace(context, mode=AccessMode.OPERACIONAL)

    raise AccessTransitionError(f"Unknown access event: {event}")


def generate_token() -> str:
    return secrets.token_hex(32)  # 32 bytes = 64 hex characters


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def open_session(
    context: AccessContext,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[AccessSession, str, AccessContext]:
    """
    Persist a session for an authenticated context.

    Returns (session_record, plaintext_token, context_with_session_id).
    """
    if not context.is_authenticated:
        raise AccessTransitionError("Cannot open a session without an access mode")

    plaintext_token = generate_token()
    now = utcnow()
    session = AccessSession(
        token_hash=hash_token(plaintext_token),
        mode=context.mode.value,
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    db.session.add(session)
    db.session.flush()

    log_security_event(
        "SESSION_OPENED",
        success=True,
        action=context.mode.value,
        access_session_id=session.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.commit()
    return session, plaintext_token, replace(context, session_id=session.id)


def validate_session(token: str) -> AccessContext | None:
    """
    Resolve a bearer token to its AccessContext.

    Returns None when the token is unknown, revoked, expired or idle too long.
    """
    if not token:
        return None

    session = db.session.query(AccessSession).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return None

    now = utcnow()
    if now > session.expires_at:
        return None
    if now > session.last_used_at + SESSION_IDLE_TIMEOUT:
        return None

    session.last_used_at = now
    db.session.commit()

    return AccessContext(mode=AccessMode(session.mode), session_id=session.id)


def apply_event(context: AccessContext, event: AccessEvent, *, pin_verified: bool = False) -> AccessContext:
    """Compute the transition and persist it on the context's session."""
    new_context = transition(context, event, pin_verified=pin_verified)

    session = db.session.get(AccessSession, context.session_id) if context.session_id else None
    if session is not None:
        if new_context.mode == AccessMode.UNAUTHORIZED:
            session.is_revoked = True
            session.revoked_at = utcnow()
        else:
            session.mode = new_context.mode.value

    log_security_event(
        "MODE_CHANGED",
        success=True,
        action=event.value,
        reason=f"{context.mode.value} -> {new_context.mode.value}",
        access_session_id=context.session_id,
    )
    db.session.commit()
    logger.info("Access mode %s -> %s", context.mode.value, new_context.mode.value)
    return new_context
