from contextlib import contextmanager
import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from models import db
from petshop.exceptions import CommerceError, StorageTimeout, TransientStorageError


class Deadline:
    """Wall-clock budget for one unit of work."""

    def __init__(self, timeout=None):
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout if timeout else None

    def check(self, step="commit"):
        if self._expires_at is not None and time.monotonic() > self._expires_at:
            raise StorageTimeout(f"Storage timeout of {self.timeout}s exceeded before {step}")


def _resolve_timeout(timeout):
    if timeout is None:
        timeout = current_app.config.get("STORAGE_TIMEOUT_SECONDS")
    return float(timeout) if timeout else None


def _apply_statement_timeout(timeout):
    # Only PostgreSQL can bound individual statements server-side.
    if timeout and db.engine.dialect.name == "postgresql":
        db.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))


@contextmanager
def transactional(message="DB transaction failed", timeout=None):
    """Context manager to wrap a database transaction.

    Everything executed inside the block is committed together or rolled back
    together. Domain errors propagate unchanged after rollback; storage errors
    are surfaced as ``TransientStorageError``. Yields the ``Deadline`` so long
    running blocks can check it between steps.
    """
    deadline = Deadline(_resolve_timeout(timeout))
    try:
        _apply_statement_timeout(deadline.timeout)
        yield deadline
        deadline.check()
        db.session.commit()
    except CommerceError as e:
        db.session.rollback()
        logging.warning(f"{message}: %s", e.message)
        raise
    except SQLAlchemyError as e:
        logging.error(f"{message}: %s", e, exc_info=True)
        db.session.rollback()
        raise TransientStorageError(message) from e
    except Exception as e:
        logging.error(f"{message}: %s", e, exc_info=True)
        db.session.rollback()
        raise
