"""
Café Aroma - Lock Engine Tests

Pure tests for state derivation, verdicts and admin lock reasons.

Run with: pytest tests/test_lockout.py -v
"""

from datetime import datetime, timedelta

import pytest

from aroma.auth.errors import AccountLocked, AccountPermanentlyLocked, InvalidInput
from aroma.auth.lockout import (
    LockDecision,
    LockPolicy,
    LockState,
    SYSTEM_LOCK_REASON,
    SecuritySnapshot,
    derive_state,
    evaluate,
    lock_deadline,
    raise_for_verdict,
    remaining_minutes,
    validate_lock_reason,
)


NOW = datetime(2024, 5, 10, 12, 0, 0)


# =============================================================================
# STATE DERIVATION
# =============================================================================

class TestDeriveState:
    """Each combination of stored fields maps to exactly one state."""

    def test_fresh_row_is_open(self):
        assert derive_state(SecuritySnapshot(), NOW) is LockState.OPEN

    def test_attempts_below_threshold_is_open(self):
        assert derive_state(SecuritySnapshot(login_attempts=4), NOW) is LockState.OPEN

    def test_future_deadline_is_temp_locked(self):
        snapshot = SecuritySnapshot(is_locked=True, locked_until=NOW + timedelta(minutes=5))
        assert derive_state(snapshot, NOW) is LockState.TEMP_LOCKED

    def test_flag_without_deadline_is_temp_locked(self):
        assert derive_state(SecuritySnapshot(is_locked=True), NOW) is LockState.TEMP_LOCKED

    def test_deadline_without_flag_is_temp_locked(self):
        snapshot = SecuritySnapshot(locked_until=NOW + timedelta(minutes=1))
        assert derive_state(snapshot, NOW) is LockState.TEMP_LOCKED

    def test_past_deadline_is_expired(self):
        snapshot = SecuritySnapshot(is_locked=True, locked_until=NOW - timedelta(seconds=1))
        assert derive_state(snapshot, NOW) is LockState.TEMP_EXPIRED

    def test_deadline_reached_exactly_is_expired(self):
        snapshot = SecuritySnapshot(is_locked=True, locked_until=NOW)
        assert derive_state(snapshot, NOW) is LockState.TEMP_EXPIRED

    def test_permanent_overrides_everything(self):
        snapshot = SecuritySnapshot(
            is_permanently_locked=True,
            is_locked=True,
            locked_until=NOW - timedelta(minutes=30),
        )
        assert derive_state(snapshot, NOW) is LockState.PERMANENT_LOCKED


# =============================================================================
# VERDICTS
# =============================================================================

class TestEvaluate:
    """Decisions returned to the authenticator and the gate."""

    def test_open_allows(self):
        verdict = evaluate(SecuritySnapshot(login_attempts=2), NOW)
        assert verdict.decision is LockDecision.ALLOW
        assert verdict.allowed is True

    def test_permanent_rejects_with_reason(self):
        snapshot = SecuritySnapshot(is_permanently_locked=True, lock_reason="Fraude confirmado")
        verdict = evaluate(snapshot, NOW)

        assert verdict.decision is LockDecision.REJECT_PERMANENT
        assert verdict.lock_reason == "Fraude confirmado"
        assert verdict.allowed is False

    def test_temporary_rejects_with_remaining_minutes(self):
        deadline = NOW + timedelta(minutes=14, seconds=10)
        snapshot = SecuritySnapshot(is_locked=True, locked_until=deadline, lock_reason=SYSTEM_LOCK_REASON)
        verdict = evaluate(snapshot, NOW)

        assert verdict.decision is LockDecision.REJECT_TEMPORARY
        assert verdict.remaining_minutes == 15
        assert verdict.locked_until == deadline

    def test_expired_clears_and_allows(self):
        snapshot = SecuritySnapshot(is_locked=True, locked_until=NOW - timedelta(minutes=1), login_attempts=5)
        verdict = evaluate(snapshot, NOW)

        assert verdict.decision is LockDecision.EXPIRED_CLEAR_AND_ALLOW
        assert verdict.allowed is True


class TestRemainingMinutes:

    def test_rounds_up(self):
        assert remaining_minutes(NOW + timedelta(minutes=3, seconds=1), NOW) == 4

    def test_exact_minutes(self):
        assert remaining_minutes(NOW + timedelta(minutes=15), NOW) == 15

    def test_never_below_one(self):
        assert remaining_minutes(NOW + timedelta(seconds=5), NOW) == 1
        assert remaining_minutes(NOW - timedelta(minutes=5), NOW) == 1

    def test_missing_deadline_is_one(self):
        assert remaining_minutes(None, NOW) == 1

    def test_lock_deadline(self):
        assert lock_deadline(NOW, 15) == NOW + timedelta(minutes=15)


class TestRaiseForVerdict:

    def test_permanent_raises_permanent(self):
        verdict = evaluate(SecuritySnapshot(is_permanently_locked=True, lock_reason="abuso reiterado"), NOW)

        with pytest.raises(AccountPermanentlyLocked) as exc_info:
            raise_for_verdict(verdict)

        body = exc_info.value.to_body()
        assert body["code"] == "ACCOUNT_PERMANENTLY_LOCKED"
        assert body["lock_reason"] == "abuso reiterado"
        assert body["isPermanent"] is True

    def test_temporary_raises_locked(self):
        verdict = evaluate(SecuritySnapshot(is_locked=True, locked_until=NOW + timedelta(minutes=2)), NOW)

        with pytest.raises(AccountLocked) as exc_info:
            raise_for_verdict(verdict)

        assert exc_info.value.status_code == 423
        assert exc_info.value.to_body()["remainingMin"] == 2

    def test_allow_is_noop(self):
        raise_for_verdict(evaluate(SecuritySnapshot(), NOW))


# =============================================================================
# ADMIN LOCK REASONS
# =============================================================================

class TestLockReason:

    def test_short_reason_rejected(self):
        with pytest.raises(InvalidInput):
            validate_lock_reason("short", LockPolicy())

    def test_blank_padding_does_not_count(self):
        with pytest.raises(InvalidInput):
            validate_lock_reason("   abc      ", LockPolicy())

    def test_missing_reason_rejected(self):
        with pytest.raises(InvalidInput):
            validate_lock_reason(None, LockPolicy())

    def test_reason_is_stripped(self):
        assert validate_lock_reason("  Fraude confirmado  ", LockPolicy()) == "Fraude confirmado"

    def test_exactly_minimum_length_accepted(self):
        assert validate_lock_reason("0123456789", LockPolicy()) == "0123456789"


def test_policy_defaults():
    policy = LockPolicy()
    assert policy.max_attempts == 5
    assert policy.lock_minutes == 15
    assert policy.min_reason_length == 10


def test_snapshot_from_missing_row_is_open():
    assert SecuritySnapshot.from_row(None) == SecuritySnapshot()
