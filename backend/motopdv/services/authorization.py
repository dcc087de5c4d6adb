"""
In-process authorization gate.

A call site asks the gate for a manager authorization, supplying the action,
an optional title/description and a success callback. The gate opens a PIN
challenge; each `challenge(pin)` verifies one PIN. On success the callback runs
exactly once and receives the plaintext grant. The callback spends the grant
inside its own write, so a write that fails leaves the grant unspent.
Cancelling leaves the caller's state untouched.

The HTTP API uses the same pin_service challenge flow but hands the grant to
the client instead of running a callback.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from . import pin_service
from .pin_service import AuthorizationError, ChallengeResult

logger = logging.getLogger(__name__)


class AuthorizationGate:
    def __init__(self, *, access_session_id: int | None = None):
        self.access_session_id = access_session_id
        self.challenge_id: int | None = None
        self.action: str | None = None
        self.title: str | None = None
        self.description: str | None = None
        self.callback_result: Any = None
        self._on_success: Callable[[str], Any] | None = None

    @property
    def is_open(self) -> bool:
        return self.challenge_id is not None

    def request(
        self,
        action: str,
        on_success: Callable[[str], Any],
        title: str | None = None,
        description: str | None = None,
    ):
        """Open a challenge for `action`; replaces any pending request."""
        if self.is_open:
            self.cancel()
        challenge = pin_service.open_challenge(action, title=title, description=description)
        self.challenge_id = challenge.id
        self.action = challenge.action
        self.title = challenge.title
        self.description = challenge.description
        self.callback_result = None
        self._on_success = on_success
        return challenge

    def challenge(self, pin) -> ChallengeResult:
        """Verify one PIN; on success run the pending callback once and close."""
        if not self.is_open:
            raise AuthorizationError("No pending authorization request")

        result = pin_service.submit_pin(
            self.challenge_id,
            pin,
            access_session_id=self.access_session_id,
        )
        if not result.authorized:
            return result

        callback = self._on_success
        self._close()
        if callback is not None:
            self.callback_result = callback(result.grant)
        return result

    def cancel(self) -> None:
        if not self.is_open:
            return
        try:
            pin_service.cancel_challenge(self.challenge_id)
        except AuthorizationError:
            logger.info("Challenge %s was no longer pending when cancelled", self.challenge_id)
        self._close()

    def _close(self) -> None:
        self.challenge_id = None
        self._on_success = None
