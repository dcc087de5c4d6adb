"""
Manager PIN tests.

Verifies:
- PIN stored as a bcrypt hash, never in plaintext
- Challenge outcomes: AUTHORIZED with a one-shot grant, DENIED with counter, LOCKED
- The lockout is timed and shared by every challenge and by manager login
- The in-process gate runs its callback exactly once; cancel leaves state alone
"""

from datetime import timedelta

import pytest

from motopdv.extensions import db
from motopdv.models import PinChallenge, SecurityEvent
from motopdv.services import pin_service
from motopdv.services.authorization import AuthorizationGate
from motopdv.services.pin_service import (
    ACTION_PRODUCT_PRICE_EDIT,
    ACTION_SALE_DISCOUNT,
    LOCKOUT_DURATION,
    MAX_FAILED_ATTEMPTS,
    STATUS_AUTHORIZED,
    STATUS_DENIED,
    STATUS_LOCKED,
    AuthorizationError,
    AuthorizationRequiredError,
    PinLockedError,
)
from motopdv.time_utils import utcnow

from conftest import MANAGER_PIN, WRONG_PIN


def _fail(times: int) -> None:
    challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
    for _ in range(times):
        pin_service.submit_pin(challenge.id, WRONG_PIN)


def _age_failures(delta: timedelta) -> None:
    for event in db.session.query(SecurityEvent).filter_by(event_type="PIN_FAILED").all():
        event.occurred_at = event.occurred_at - delta
    db.session.commit()


# =============================================================================
# HASHING
# =============================================================================


class TestPinHashing:
    def test_pin_is_stored_hashed(self, workshop):
        assert workshop.pin_hash != MANAGER_PIN
        assert MANAGER_PIN not in workshop.pin_hash
        assert workshop.pin_hash.startswith("$2")

    def test_same_pin_hashes_differently(self):
        assert pin_service.hash_pin("1234") != pin_service.hash_pin("1234")

    def test_verify(self):
        pin_hash = pin_service.hash_pin("1234")
        assert pin_service.verify_pin("1234", pin_hash) is True
        assert pin_service.verify_pin("1235", pin_hash) is False
        assert pin_service.verify_pin(None, pin_hash) is False
        assert pin_service.verify_pin("1234", None) is False
        assert pin_service.verify_pin("1234", "not-a-hash") is False

    @pytest.mark.parametrize("bad", ["123", "12345", "abcd", "", None, 1234])
    def test_format(self, bad):
        with pytest.raises(pin_service.PinValidationError):
            pin_service.validate_pin_format(bad)


# =============================================================================
# CHALLENGES
# =============================================================================


class TestChallenges:
    def test_unknown_action_rejected(self, workshop):
        with pytest.raises(AuthorizationError):
            pin_service.open_challenge("DELETE_EVERYTHING")

    def test_requires_setup(self, db_session):
        with pytest.raises(AuthorizationError):
            pin_service.open_challenge(ACTION_SALE_DISCOUNT)

    def test_default_title_and_description(self, workshop):
        challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
        assert challenge.title == "Desconto Elevado"
        assert challenge.status == "PENDING"

    def test_correct_pin_authorizes_with_grant(self, workshop):
        challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
        result = pin_service.submit_pin(challenge.id, MANAGER_PIN)

        assert result.status == STATUS_AUTHORIZED
        assert result.grant
        assert challenge.status == "AUTHORIZED"
        assert challenge.grant_hash != result.grant

    def test_wrong_pin_denied_with_counter(self, workshop):
        challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)

        first = pin_service.submit_pin(challenge.id, WRONG_PIN)
        second = pin_service.submit_pin(challenge.id, WRONG_PIN)

        assert first.status == STATUS_DENIED
        assert first.failed_attempts == 1
        assert second.failed_attempts == 2
        assert second.grant is None

    def test_fifth_failure_locks(self, workshop):
        challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
        results = [pin_service.submit_pin(challenge.id, WRONG_PIN) for _ in range(MAX_FAILED_ATTEMPTS)]

        assert [r.status for r in results[:-1]] == [STATUS_DENIED] * (MAX_FAILED_ATTEMPTS - 1)
        assert results[-1].status == STATUS_LOCKED
        assert results[-1].seconds_until_unlock > 0

    def test_locked_rejects_correct_pin(self, workshop):
        challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
        for _ in range(MAX_FAILED_ATTEMPTS):
            pin_service.submit_pin(challenge.id, WRONG_PIN)

        result = pin_service.submit_pin(challenge.id, MANAGER_PIN)
        assert result.status == STATUS_LOCKED
        assert result.grant is None

    def test_new_challenge_does_not_reset_lock(self, workshop):
        _fail(MAX_FAILED_ATTEMPTS)

        fresh = pin_service.open_challenge(ACTION_PRODUCT_PRICE_EDIT)
        result = pin_service.submit_pin(fresh.id, MANAGER_PIN)

        assert result.status == STATUS_LOCKED

    def test_lock_blocks_manager_login(self, workshop):
        _fail(MAX_FAILED_ATTEMPTS)

        with pytest.raises(PinLockedError) as exc:
            pin_service.verify_manager_pin(MANAGER_PIN)
        assert exc.value.seconds_remaining > 0

    def test_lock_expires(self, workshop):
        _fail(MAX_FAILED_ATTEMPTS)
        _age_failures(LOCKOUT_DURATION + timedelta(seconds=1))

        assert pin_service.is_pin_locked() == (False, None)
        assert pin_service.verify_manager_pin(MANAGER_PIN) is True

    def test_failures_across_challenges_accumulate(self, workshop):
        _fail(3)
        _fail(2)
        locked, _ = pin_service.is_pin_locked()
        assert locked is True

    def test_success_resets_failure_count(self, workshop):
        _fail(MAX_FAILED_ATTEMPTS - 1)
        assert pin_service.verify_manager_pin(MANAGER_PIN) is True
        assert pin_service.get_recent_failed_attempts() == 0

    def test_cancel(self, workshop):
        challenge = pin_service.open_challenge(ACTION_SALE_DISCOUNT)
        pin_service.cancel_challenge(challenge.id)

        assert challenge.status == "CANCELED"
        with pytest.raises(AuthorizationError):
            pin_service.submit_pin(challenge.id, MANAGER_PIN)


# =============================================================================
# GRANTS
# =============================================================================


class TestGrants:
    def _grant(self, action=ACTION_SALE_DISCOUNT) -> str:
        challenge = pin_service.open_challenge(action)
        return pin_service.submit_pin(challenge.id, MANAGER_PIN).grant

    def test_grant_is_one_shot(self, workshop):
        grant = self._grant()
        challenge = pin_service.consume_grant(grant, ACTION_SALE_DISCOUNT)

        assert challenge.status == "CONSUMED"
        with pytest.raises(AuthorizationError):
            pin_service.consume_grant(grant, ACTION_SALE_DISCOUNT)

    def test_grant_bound_to_action(self, workshop):
        grant = self._grant(ACTION_SALE_DISCOUNT)
        with pytest.raises(AuthorizationError) as exc:
            pin_service.consume_grant(grant, ACTION_PRODUCT_PRICE_EDIT)
        assert exc.value.details["granted_action"] == ACTION_SALE_DISCOUNT

    def test_expired_grant(self, workshop):
        grant = self._grant()
        challenge = db.session.query(PinChallenge).filter_by(status="AUTHORIZED").one()
        challenge.grant_expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()

        with pytest.raises(AuthorizationError):
            pin_service.consume_grant(grant, ACTION_SALE_DISCOUNT)

    def test_missing_grant(self, workshop):
        with pytest.raises(AuthorizationRequiredError):
            pin_service.consume_grant(None, ACTION_SALE_DISCOUNT)

    def test_unknown_grant(self, workshop):
        with pytest.raises(AuthorizationError):
            pin_service.consume_grant("forged", ACTION_SALE_DISCOUNT)


# =============================================================================
# IN-PROCESS GATE
# =============================================================================


class TestAuthorizationGate:
    def test_callback_runs_once_on_success(self, workshop):
        calls = []
        gate = AuthorizationGate()
        gate.request(ACTION_SALE_DISCOUNT, on_success=lambda grant: calls.append(grant) or "done")

        result = gate.challenge(MANAGER_PIN)

        assert result.authorized
        assert calls == [result.grant]
        assert gate.callback_result == "done"
        assert gate.is_open is False
        with pytest.raises(AuthorizationError):
            gate.challenge(MANAGER_PIN)
        assert calls == [result.grant]

    def test_callback_spends_the_grant(self, workshop):
        statuses = []

        def on_success(grant):
            statuses.append(db.session.get(PinChallenge, gate_challenge.id).status)
            pin_service.consume_grant(grant, ACTION_SALE_DISCOUNT)

        gate = AuthorizationGate()
        gate_challenge = gate.request(ACTION_SALE_DISCOUNT, on_success=on_success)

        gate.challenge(MANAGER_PIN)

        assert statuses == [STATUS_AUTHORIZED]
        assert db.session.get(PinChallenge, gate_challenge.id).status == "CONSUMED"

    def test_failing_callback_leaves_grant_unspent(self, workshop):
        def on_success(grant):
            raise RuntimeError("write failed")

        gate = AuthorizationGate()
        challenge = gate.request(ACTION_SALE_DISCOUNT, on_success=on_success)

        with pytest.raises(RuntimeError):
            gate.challenge(MANAGER_PIN)

        assert db.session.get(PinChallenge, challenge.id).status == STATUS_AUTHORIZED

    def test_denied_does_not_run_callback(self, workshop):
        calls = []
        gate = AuthorizationGate()
        gate.request(ACTION_SALE_DISCOUNT, on_success=lambda grant: calls.append(1))

        result = gate.challenge(WRONG_PIN)

        assert result.status == STATUS_DENIED
        assert calls == []
        assert gate.is_open is True

    def test_cancel_drops_callback(self, workshop):
        calls = []
        gate = AuthorizationGate()
        challenge = gate.request(ACTION_SALE_DISCOUNT, on_success=lambda grant: calls.append(1))
        challenge_id = challenge.id

        gate.cancel()

        assert gate.is_open is False
        assert calls == []
        assert db.session.get(PinChallenge, challenge_id).status == "CANCELED"

    def test_custom_title(self, workshop):
        gate = AuthorizationGate()
        gate.request(ACTION_SALE_DISCOUNT, on_success=lambda grant: None, title="Desconto de 20%")
        assert gate.title == "Desconto de 20%"

    def test_new_request_replaces_pending(self, workshop):
        gate = AuthorizationGate()
        first = gate.request(ACTION_SALE_DISCOUNT, on_success=lambda grant: None)
        first_id = first.id
        gate.request(ACTION_PRODUCT_PRICE_EDIT, on_success=lambda grant: None)

        assert db.session.get(PinChallenge, first_id).status == "CANCELED"
        assert gate.action == ACTION_PRODUCT_PRICE_EDIT
