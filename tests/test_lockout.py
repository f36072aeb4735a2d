import threading
from datetime import datetime, timedelta

import pytest

from qrhub import crud, models
from qrhub.lockout import (
    AccountLocked,
    GuardState,
    LockoutPolicy,
    Mismatch,
    Ok,
    check_password,
    expire_lock,
    hash_password,
    on_failure,
    verify_credentials,
)

PASSWORD = "Str0ng!Pass"
T0 = datetime(2026, 1, 1, 12, 0, 0)
POLICY = LockoutPolicy(max_attempts=5, lock_duration=timedelta(minutes=30), hash_rounds=4)


def fail_n(db, account_id, n, start=T0):
    results = []
    for i in range(n):
        results.append(verify_credentials(db, account_id, "wrong-Pass1!", POLICY, now=start + timedelta(seconds=i)))
    return results


def test_hash_is_salted_and_verifies():
    first, second = hash_password("S3cret!pw", rounds=4), hash_password("S3cret!pw", rounds=4)
    assert first != second
    assert "S3cret!pw" not in first
    assert check_password("S3cret!pw", first)
    assert not check_password("S3cret!pw ", first)


def test_malformed_hash_is_a_mismatch_not_a_crash():
    assert check_password("anything", "not-a-bcrypt-hash") is False


def test_on_failure_counts_then_locks():
    state = GuardState()
    for expected in range(1, 5):
        state = on_failure(state, T0, POLICY)
        assert state == GuardState(expected, False, None)
    state = on_failure(state, T0, POLICY)
    assert state.locked
    assert state.lock_expires_at == T0 + timedelta(minutes=30)


def test_expire_lock_only_after_until():
    locked = GuardState(5, True, T0)
    assert expire_lock(locked, T0 - timedelta(seconds=1)) == locked
    assert expire_lock(locked, T0) == GuardState()


def test_success_resets_failures(db, owner):
    fail_n(db, owner.id, 3)
    result = verify_credentials(db, owner.id, PASSWORD, POLICY, now=T0 + timedelta(minutes=1))
    assert isinstance(result, Ok)
    db.refresh(owner)
    assert owner.failed_attempts == 0
    assert owner.last_success_at == T0 + timedelta(minutes=1)


def test_five_failures_lock_the_account(db, owner):
    results = fail_n(db, owner.id, 5)
    assert [r.failed_attempts for r in results] == [1, 2, 3, 4, 5]
    assert all(isinstance(r, Mismatch) for r in results)
    assert results[-1].locked_until is not None

    db.refresh(owner)
    assert owner.locked
    assert owner.lock_expires_at == T0 + timedelta(seconds=4) + timedelta(minutes=30)


def test_correct_password_inside_window_is_still_locked(db, owner):
    fail_n(db, owner.id, 5)
    result = verify_credentials(db, owner.id, PASSWORD, POLICY, now=T0 + timedelta(minutes=10))
    assert isinstance(result, AccountLocked)
    assert 0 < result.retry_after <= 30 * 60

    db.refresh(owner)
    assert owner.locked
    assert owner.failed_attempts == 5
    assert owner.last_success_at is None


def test_locked_response_does_not_depend_on_password(db, owner):
    fail_n(db, owner.id, 5)
    when = T0 + timedelta(minutes=5)
    right = verify_credentials(db, owner.id, PASSWORD, POLICY, now=when)
    wrong = verify_credentials(db, owner.id, "nope", POLICY, now=when)
    assert right == wrong


def test_correct_password_after_window_logs_in_and_resets(db, owner):
    fail_n(db, owner.id, 5)
    result = verify_credentials(db, owner.id, PASSWORD, POLICY, now=T0 + timedelta(minutes=31))
    assert isinstance(result, Ok)

    db.refresh(owner)
    assert not owner.locked
    assert owner.failed_attempts == 0
    assert owner.lock_expires_at is None


def test_wrong_password_after_window_starts_new_count(db, owner):
    fail_n(db, owner.id, 5)
    result = verify_credentials(db, owner.id, "still-wrong", POLICY, now=T0 + timedelta(minutes=31))
    assert isinstance(result, Mismatch)
    assert result.failed_attempts == 1
    assert result.locked_until is None

    db.refresh(owner)
    assert not owner.locked


def test_lock_is_exactly_at_expiry_boundary(db, owner):
    fail_n(db, owner.id, 5)
    db.refresh(owner)
    until = owner.lock_expires_at
    assert isinstance(verify_credentials(db, owner.id, PASSWORD, POLICY, now=until - timedelta(seconds=1)), AccountLocked)
    assert isinstance(verify_credentials(db, owner.id, PASSWORD, POLICY, now=until), Ok)


@pytest.mark.parametrize("account_id", [None, 99999])
def test_unknown_account_is_a_plain_mismatch(db, account_id):
    result = verify_credentials(db, account_id, "whatever", POLICY, now=T0)
    assert result == Mismatch(failed_attempts=0)


def test_policy_thresholds_are_configurable(db, owner):
    policy = LockoutPolicy(max_attempts=2, lock_duration=timedelta(minutes=1), hash_rounds=4)
    verify_credentials(db, owner.id, "x", policy, now=T0)
    second = verify_credentials(db, owner.id, "x", policy, now=T0)
    assert second.locked_until == T0 + timedelta(minutes=1)
    assert isinstance(verify_credentials(db, owner.id, PASSWORD, policy, now=T0 + timedelta(seconds=30)), AccountLocked)


def test_concurrent_failures_are_all_counted(file_session_factory, settings):
    with file_session_factory() as session:
        account_id = crud.register_account(session, settings, "alice", "alice@qrhub.io", PASSWORD).id

    barrier = threading.Barrier(5)
    results = []

    def attempt():
        with file_session_factory() as session:
            barrier.wait()
            results.append(verify_credentials(session, account_id, "wrong-Pass1!", POLICY, now=T0))

    threads = [threading.Thread(target=attempt) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(r.failed_attempts for r in results) == [1, 2, 3, 4, 5]
    with file_session_factory() as session:
        account = session.get(models.Account, account_id)
        assert account.failed_attempts == 5
        assert account.locked
        assert account.lock_expires_at == T0 + timedelta(minutes=30)


def test_stale_session_state_is_reread_before_writing(db, session_factory, owner):
    stale = session_factory()
    try:
        stale.get(models.Account, owner.id)
        fail_n(db, owner.id, 4)
        result = verify_credentials(stale, owner.id, "wrong-Pass1!", POLICY, now=T0 + timedelta(seconds=10))
    finally:
        stale.close()

    assert result.failed_attempts == 5
    assert result.locked_until == T0 + timedelta(seconds=10) + timedelta(minutes=30)
