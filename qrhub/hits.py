"""Click / visit counting.

Counting is analytics, so it must never break the response it rides on:
every failure here is logged and swallowed.

Two modes:

* atomic (default): ``UPDATE ... SET n = n + 1`` in the database, no lost
  updates.
* read-increment-write: read the count, add one, write it back. Concurrent
  hits on the same record can observe the same prior value and drop
  increments. Kept as an explicit opt-in (``HIT_COUNTER_ATOMIC=false``) for
  stores without an atomic update.
"""
import logging

from sqlalchemy.orm import Session

logger = logging.getLogger("qrhub.hits")


def _atomic(db: Session, column, record_id: int) -> int:
    model = column.class_
    db.query(model).filter(model.id == record_id).update(
        {column: column + 1}, synchronize_session=False
    )
    db.commit()
    return db.query(column).filter(model.id == record_id).scalar()


def _read_increment_write(db: Session, column, record_id: int) -> int:
    record = db.get(column.class_, record_id)
    count = (getattr(record, column.key) or 0) + 1
    setattr(record, column.key, count)
    db.commit()
    return count


def record_hit(db: Session, column, record_id: int, atomic: bool = True) -> int | None:
    """Add one to ``column`` for ``record_id``; return the new count or None on failure."""
    try:
        if atomic:
            count = _atomic(db, column, record_id)
        else:
            count = _read_increment_write(db, column, record_id)
    except Exception:
        db.rollback()
        logger.exception("Failed to record hit on %s id=%s", column, record_id)
        return None
    return count
