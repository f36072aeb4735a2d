"""Brute-force lockout around credential checks.

Per account the guard is either ``Unlocked(failed_attempts)`` or
``Locked(until)``. Transitions are computed by the pure helpers below and
written by ``verify_credentials`` as a compare-and-set UPDATE that only
matches the state they were computed from. A writer that loses re-reads the
row and applies its attempt on top, so concurrent failed attempts are all
counted even on stores without row locks (SQLite).

A lock never expires on its own. The first attempt made at or after
``until`` clears it and is then judged like any other attempt.
"""
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from functools import lru_cache

import bcrypt
from sqlalchemy.orm import Session

from qrhub.config import Settings
from qrhub.models import Account, utcnow

logger = logging.getLogger("qrhub.lockout")


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(minutes=30)
    hash_rounds: int = 12

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_attempts=settings.lockout_max_attempts,
            lock_duration=settings.lock_duration,
            hash_rounds=settings.bcrypt_rounds,
        )


# ---- Hashing ----

def hash_password(secret: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def check_password(secret: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        # Over-long input or a malformed stored hash
        return False


@lru_cache
def _dummy_hash(rounds: int) -> str:
    return hash_password("not-a-real-password", rounds)


# ---- State machine ----

@dataclass(frozen=True)
class GuardState:
    failed_attempts: int = 0
    locked: bool = False
    lock_expires_at: datetime | None = None

    @classmethod
    def of(cls, account: Account) -> "GuardState":
        return cls(account.failed_attempts or 0, bool(account.locked), account.lock_expires_at)

    def is_locked(self, now: datetime) -> bool:
        return self.locked and self.lock_expires_at is not None and now < self.lock_expires_at


def expire_lock(state: GuardState, now: datetime) -> GuardState:
    if state.locked and not state.is_locked(now):
        return GuardState()
    return state


def on_failure(state: GuardState, now: datetime, policy: LockoutPolicy) -> GuardState:
    attempts = state.failed_attempts + 1
    if attempts >= policy.max_attempts:
        return GuardState(attempts, True, now + policy.lock_duration)
    return replace(state, failed_attempts=attempts)


def on_success(state: GuardState) -> GuardState:
    return GuardState()


# ---- Results ----

@dataclass(frozen=True)
class Ok:
    account: Account


@dataclass(frozen=True)
class AccountLocked:
    until: datetime
    retry_after: int


@dataclass(frozen=True)
class Mismatch:
    failed_attempts: int
    locked_until: datetime | None = None


VerifyResult = Ok | AccountLocked | Mismatch


def _compare_and_set(db: Session, account_id: int, old: GuardState, new: GuardState, **extra) -> bool:
    """Write ``new`` only if the row still holds ``old``."""
    values = {
        Account.failed_attempts: new.failed_attempts,
        Account.locked: new.locked,
        Account.lock_expires_at: new.lock_expires_at,
    }
    values.update({getattr(Account, name): value for name, value in extra.items()})
    updated = (
        db.query(Account)
        .filter(
            Account.id == account_id,
            Account.failed_attempts == old.failed_attempts,
            Account.locked == old.locked,
            Account.lock_expires_at == old.lock_expires_at,
        )
        .update(values, synchronize_session=False)
    )
    return updated == 1


def _locked(account: Account, state: GuardState, now: datetime) -> AccountLocked:
    retry_after = math.ceil((state.lock_expires_at - now).total_seconds())
    logger.warning("Login refused, account locked: account_id=%s until=%s", account.id, state.lock_expires_at)
    return AccountLocked(until=state.lock_expires_at, retry_after=retry_after)


def verify_credentials(
    db: Session,
    account_id: int | None,
    secret: str,
    policy: LockoutPolicy,
    now: datetime | None = None,
) -> VerifyResult:
    """Check ``secret`` for the account and advance its lockout state."""
    now = now or utcnow()

    account = db.get(Account, account_id) if account_id is not None else None
    if account is None:
        db.rollback()
        # Same bcrypt cost as a real check
        check_password(secret, _dummy_hash(policy.hash_rounds))
        return Mismatch(failed_attempts=0)

    state = GuardState.of(account)
    if state.is_locked(now):
        db.rollback()
        return _locked(account, state, now)

    matched = check_password(secret, account.password_hash)
    while True:
        if matched:
            new, extra = on_success(expire_lock(state, now)), {"last_success_at": now}
        else:
            new, extra = on_failure(expire_lock(state, now), now, policy), {}
        if _compare_and_set(db, account.id, state, new, **extra):
            db.commit()
            break
        # Another attempt changed the row first; judge against what it wrote
        db.rollback()
        state = GuardState.of(account)
        if state.is_locked(now):
            return _locked(account, state, now)

    db.refresh(account)
    if matched:
        return Ok(account)
    if new.locked:
        logger.warning(
            "Account locked after %d failed attempts: account_id=%s until=%s",
            new.failed_attempts, account_id, new.lock_expires_at,
        )
    else:
        logger.info("Failed login %d/%d for account_id=%s", new.failed_attempts, policy.max_attempts, account_id)
    return Mismatch(failed_attempts=new.failed_attempts, locked_until=new.lock_expires_at)
