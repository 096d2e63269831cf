# Overview: Transaction runner with bounded retry on store-level write conflicts.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ContentionError


def lock_for_update(query):
    """
    Apply row-level locking and force a fresh read of the locked rows.

    populate_existing() makes the identity map take the values from this read,
    so quantities are never reused from before the transaction started.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Write conflicts there still surface through version_id_col (StaleDataError).
    """
    return query.with_for_update().populate_existing()


def commit_session():
    db.session.commit()


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run func() and commit its work as one atomic unit.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Each attempt starts from a rolled-back
    session, so nothing from an aborted attempt (movements included) survives.
    Any other exception rolls back and propagates untouched.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            result = func()
            commit_session()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error(
                    "Stock transaction aborted after %d attempts: %s", attempts, exc
                )
                raise ContentionError(
                    "Stock records are busy, please retry",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.warning(
                "Stock transaction conflict on attempt %d/%d, retrying: %s",
                attempt + 1, attempts, exc,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
