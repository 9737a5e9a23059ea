"""
Registration and login.

Login moves an anonymous client to authenticated by minting a token; any
failure sends it back to anonymous with the same "Invalid credentials"
answer, whether the account is unknown or the password is wrong. Being
authenticated is not remembered here: every later request proves it again
with the token (see security.py).
"""

import logging
from typing import Tuple

from sqlmodel import Session

from .constants import INVALID_CREDENTIALS_MESSAGE
from .credentials import create_user, find_by_identifier, update_user_fields
from .errors import Unauthenticated
from .models import User
from .passwords import PasswordHasher
from .schemas import LoginRequest, RegisterRequest
from .tokens import TokenIssuer

logger = logging.getLogger(__name__)


def register(session: Session, hasher: PasswordHasher, issuer: TokenIssuer,
             request: RegisterRequest) -> Tuple[User, str]:
    """Create the account and log it in. Raises `Conflict` on a taken username/email."""
    logger.info("Registration attempt: username=%s email=%s", request.username, request.email)
    digest = hasher.hash(request.password)
    user = create_user(session, request.username, request.email, digest)
    token = issuer.issue(user.id)
    logger.info("New user registered: id=%s username=%s", user.id, user.username)
    return user, token


def login(session: Session, hasher: PasswordHasher, issuer: TokenIssuer,
          request: LoginRequest) -> Tuple[User, str]:
    identifier = request.identifier
    user = find_by_identifier(session, identifier)
    if user is None:
        hasher.dummy_verify(request.password)
        logger.warning("Login failed - user not found: %s", identifier)
        raise Unauthenticated(INVALID_CREDENTIALS_MESSAGE, reason="bad_credentials")

    if not hasher.verify(request.password, user.password_hash):
        logger.warning("Login failed - invalid password: user id=%s", user.id)
        raise Unauthenticated(INVALID_CREDENTIALS_MESSAGE, reason="bad_credentials")

    if hasher.needs_rehash(user.password_hash):
        try:
            user = update_user_fields(session, user.id, password_hash=hasher.hash(request.password))
            logger.info("Upgraded password digest parameters for user id=%s", user.id)
        except Exception:
            session.rollback()
            logger.exception("Failed to upgrade password digest for user id=%s", user.id)

    token = issuer.issue(user.id)
    logger.info("User logged in: id=%s username=%s", user.id, user.username)
    return user, token
