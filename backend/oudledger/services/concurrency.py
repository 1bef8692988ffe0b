# Overview: Service-layer operations for concurrency; row locks, guarded updates and atomic units of work.

from __future__ import annotations

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id column still catches lost updates there.
    """
    return query.with_for_update()


def guarded_update(model, *criteria, **values) -> int:
    """
    Compare-and-set UPDATE: only rows still matching `criteria` are written.

    Bumps version_id so concurrent ORM writers holding the old version fail
    with StaleDataError. Returns the number of rows updated (0 = lost the race).
    """
    values.setdefault("version_id", model.version_id + 1)
    return db.session.query(model).filter(*criteria).update(values, synchronize_session=False)


def run_atomic(func, *, conflict_error: type[Exception], conflict_message: str):
    """
    Execute func and commit it as one unit of work.

    Any failure rolls the session back. Optimistic locking conflicts
    (StaleDataError) surface as conflict_error; nothing is retried here,
    callers decide retry policy.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except StaleDataError as exc:
        db.session.rollback()
        raise conflict_error(conflict_message) from exc
    except Exception:
        db.session.rollback()
        raise
