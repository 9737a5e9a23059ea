"""Credential store: persisted user records.

Uniqueness of username/email is decided by the store's unique indexes at
commit time; there is no "look first, then insert" step.
"""
import datetime
import logging
from typing import List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from .constants import normalize_identifier
from .db_helpers import commit_or_conflict
from .errors import NotFound
from .models import User

logger = logging.getLogger(__name__)

UNIQUE_USER_FIELDS = ("username", "email")
CONFLICT_MESSAGES = {
    "username": "Username already taken",
    "email": "Email already in use",
}
UPDATABLE_FIELDS = {"username", "email", "password_hash", "profile_picture"}


def get_user(session: Session, user_id: int) -> Optional[User]:
    return session.get(User, user_id)


def find_by_identifier(session: Session, identifier: str) -> Optional[User]:
    """Look a user up by username or email, case-insensitively."""
    ident = normalize_identifier(identifier)
    if not ident:
        return None
    stmt = select(User).where(or_(User.username == ident, User.email == ident))
    return session.exec(stmt).first()


def create_user(session: Session, username: str, email: str, password_hash: str) -> User:
    """Insert a user; raises `Conflict` naming the colliding field."""
    user = User(
        username=normalize_identifier(username),
        email=normalize_identifier(email),
        password_hash=password_hash,
    )
    session.add(user)
    commit_or_conflict(session, UNIQUE_USER_FIELDS, CONFLICT_MESSAGES)
    session.refresh(user)
    logger.info("Created user id=%s username=%s", user.id, user.username)
    return user


def update_user_fields(session: Session, user_id: int, **fields) -> User:
    """Apply a partial update to a user.

    `username`/`email` are normalized; collisions with another user raise
    `Conflict`. Unknown field names raise ValueError.
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")

    for name, value in fields.items():
        if value is None:
            continue
        if name in UNIQUE_USER_FIELDS:
            value = normalize_identifier(value)
        setattr(user, name, value)
    user.updated_at = datetime.datetime.now(datetime.timezone.utc)

    session.add(user)
    commit_or_conflict(session, UNIQUE_USER_FIELDS, CONFLICT_MESSAGES)
    session.refresh(user)
    logger.debug("Updated user id=%s fields=%s", user_id, sorted(k for k, v in fields.items() if v is not None))
    return user


def search_users(session: Session, query: str, limit: int = 10) -> List[User]:
    """Case-insensitive substring match on username or email."""
    q = normalize_identifier(query)
    if not q:
        return []
    stmt = (
        select(User)
        .where(or_(
            func.lower(User.username).contains(q, autoescape=True),
            func.lower(User.email).contains(q, autoescape=True),
        ))
        .order_by(User.username)
        .limit(limit)
    )
    return list(session.exec(stmt).all())
