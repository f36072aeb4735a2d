"""Short code / slug allocation.

The lookup before insert only gives fast feedback. Uniqueness itself comes
from the unique index on the code column: an ``IntegrityError`` at commit is
the authoritative conflict and is reported exactly like a failed pre-check.
"""
import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrhub.errors import AllocatorExhausted, Conflict, InvalidFormat

logger = logging.getLogger("qrhub.allocator")

ALPHABET = string.ascii_letters + string.digits
GENERATED_LENGTH = 8


@dataclass(frozen=True)
class CodeFormat:
    pattern: re.Pattern
    message: str
    taken_message: str
    lowercase: bool = False

    def normalize(self, candidate: str) -> str:
        if self.lowercase:
            return candidate.strip().lower()
        return candidate

    def check(self, candidate) -> str:
        """Normalize and validate ``candidate``; raise ``InvalidFormat`` if bad."""
        if not isinstance(candidate, str):
            raise InvalidFormat(self.message)
        code = self.normalize(candidate)
        if not self.pattern.fullmatch(code):
            raise InvalidFormat(self.message)
        return code


LINK_CODE = CodeFormat(
    pattern=re.compile(r"[A-Za-z0-9_-]{3,20}"),
    message="Short ID must be 3-20 characters and contain only letters, numbers, hyphens, or underscores",
    taken_message="This short ID is already taken. Please choose a different one.",
)

PORTAL_SLUG = CodeFormat(
    pattern=re.compile(r"[a-z0-9-]{3,50}"),
    message="Slug must be 3-50 characters (lowercase letters, numbers, hyphens)",
    taken_message="This slug is already taken",
    lowercase=True,
)


def generate_code(length: int = GENERATED_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def is_available(db: Session, column, code: str) -> bool:
    """Advisory only: a True here can still lose to a concurrent insert."""
    return db.query(column).filter(column == code).first() is None


def _insert(db: Session, record) -> bool:
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    db.refresh(record)
    return True


def allocate(
    db: Session,
    column,
    fmt: CodeFormat,
    build: Callable[[str], object],
    candidate: str | None = None,
    attempts: int = 3,
):
    """Persist ``build(code)`` under a unique code and return the record.

    With a ``candidate`` the code is validated against ``fmt`` and either wins
    or raises ``Conflict``. Without one, random codes are tried up to
    ``attempts`` times before ``AllocatorExhausted``.
    """
    if candidate is not None:
        code = fmt.check(candidate)
        if not is_available(db, column, code):
            raise Conflict(fmt.taken_message)
        record = build(code)
        if not _insert(db, record):
            logger.info("Lost insert race for code=%s", code)
            raise Conflict(fmt.taken_message)
        return record

    for attempt in range(1, attempts + 1):
        code = generate_code()
        if not is_available(db, column, code):
            logger.info("Generated code collided (attempt %d/%d)", attempt, attempts)
            continue
        record = build(code)
        if _insert(db, record):
            return record
        logger.info("Generated code lost insert race (attempt %d/%d)", attempt, attempts)

    logger.error("Code allocation exhausted after %d attempts", attempts)
    raise AllocatorExhausted()
