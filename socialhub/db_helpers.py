"""Database session helper utilities.

`session_scope(engine)` centralizes creation/cleanup of `sqlmodel.Session`
instances; `commit_or_conflict()` turns unique-constraint violations into
`Conflict` so raw store errors never leave the store layer.
"""
from contextlib import contextmanager
from typing import Iterable, Iterator

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session
import logging

from .errors import Conflict

logger = logging.getLogger(__name__)


@contextmanager
def session_scope(engine) -> Iterator[Session]:
    """Yield a short-lived SQLModel `Session` bound to `engine`.

    Caller is responsible for committing when appropriate. Session is
    always closed on exit.
    """
    sess = Session(engine)
    logger.debug("Opening DB session %s", sess)
    try:
        yield sess
    finally:
        try:
            sess.close()
            logger.debug("Closed DB session %s", sess)
        except Exception as e:
            logger.exception("Failed to close DB session: %s", e)


def conflicting_field(exc: IntegrityError, candidates: Iterable[str]) -> str | None:
    """Best-effort name of the column a unique violation was raised for.

    SQLite reports `UNIQUE constraint failed: users.email`, PostgreSQL
    names the index (`ix_users_email`); both contain the column name.
    """
    msg = str(getattr(exc, "orig", exc)).lower()
    for name in candidates:
        if name.lower() in msg:
            return name
    return None


def commit_or_conflict(session: Session, candidates: Iterable[str], messages: dict | None = None) -> None:
    """Commit, translating a unique violation into `Conflict(field)`.

    The session is rolled back before raising. Integrity errors that do
    not name one of `candidates` are re-raised untouched.
    """
    candidates = list(candidates)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        field = conflicting_field(exc, candidates)
        if field is None:
            logger.error("Integrity error not mapped to a unique field: %s", exc.orig)
            raise
        logger.info("Unique constraint rejected write on %s", field)
        raise Conflict(field, (messages or {}).get(field)) from None
