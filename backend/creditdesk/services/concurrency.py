# Overview: Service-layer helpers for atomic, race-safe state transitions.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from ..extensions import db
from ..errors import ConflictError


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on transient lock failures.

    Only OperationalError (deadlocks, "database is locked") is retried.
    Domain errors propagate on the first attempt.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work that ends in db.session.commit().

    Any failure rolls the whole unit back so no partial transition is ever
    visible, then re-raises.
    """
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff_base)
    except Exception:
        db.session.rollback()
        raise


def compare_and_set(record, *, expected: dict, values: dict) -> None:
    """
    Optimistic check-and-set on a single row.

    Issues UPDATE ... SET <values>, version_id = version_id + 1
    WHERE id = :id AND <expected columns match>. If another writer changed
    any expected column first, zero rows match and ConflictError is raised.

    The in-session instance is expired so the next attribute access reloads
    the committed-in-this-transaction values.
    """
    model = type(record)
    criteria = [model.id == record.id]
    for column_name, value in expected.items():
        column = getattr(model, column_name)
        criteria.append(column.is_(None) if value is None else column == value)

    stmt = (
        update(model)
        .where(*criteria)
        .values(version_id=model.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConflictError(
            f"{model.__name__} {record.id} was modified concurrently; re-fetch and retry",
            details={"entity": model.__name__, "id": record.id, "expected": _jsonable(expected)},
        )
    db.session.expire(record)


def _jsonable(expected: dict) -> dict:
    return {k: (v.value if hasattr(v, "value") else v) for k, v in expected.items()}


def bump_version(record) -> None:
    """
    Claim `record` for the current unit of work.

    Writers that derive new rows from a parent (returns against a pickup or
    an order) bump the parent first. Of two concurrent writers the second
    matches zero rows and raises ConflictError.
    """
    compare_and_set(record, expected={"version_id": record.version_id}, values={})
