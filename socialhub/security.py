"""
Request authorization.

Protected routes depend on `require_identity`, which runs three stages in
order and stops at the first failure:

1. extract_bearer    - `Authorization: Bearer <token>` must be present
2. verify_token      - signature, then expiry (see tokens.TokenIssuer)
3. resolve_identity  - the token subject must still be a known user

The resulting `Identity` lives only as long as the request: it is returned
to the handler and mirrored on `request.state.identity`.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from .constants import INVALID_TOKEN_MESSAGE, MISSING_TOKEN_MESSAGE
from .credentials import get_user
from .dependencies import get_session, get_token_issuer
from .errors import Unauthenticated
from .tokens import TokenError, TokenIssuer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    email: str


def extract_bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthenticated(MISSING_TOKEN_MESSAGE, reason="missing")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated(MISSING_TOKEN_MESSAGE, reason="missing")
    return token


def verify_token(issuer: TokenIssuer, token: str) -> int:
    try:
        return issuer.verify(token)
    except TokenError as e:
        raise Unauthenticated(INVALID_TOKEN_MESSAGE, reason=e.reason) from None


def resolve_identity(session: Session, user_id: int) -> Identity:
    user = get_user(session, user_id)
    if user is None:
        raise Unauthenticated(INVALID_TOKEN_MESSAGE, reason="unknown_user")
    return Identity(id=user.id, username=user.username, email=user.email)


def authenticate(authorization: Optional[str], issuer: TokenIssuer, session: Session) -> Identity:
    """Run the authorization stages; raises `Unauthenticated` on the first failure."""
    token = extract_bearer(authorization)
    user_id = verify_token(issuer, token)
    return resolve_identity(session, user_id)


def require_identity(
    request: Request,
    session: Session = Depends(get_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Identity:
    try:
        identity = authenticate(request.headers.get("Authorization"), issuer, session)
    except Unauthenticated as e:
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, e.reason)
        raise
    request.state.identity = identity
    return identity


def optional_identity(
    request: Request,
    session: Session = Depends(get_session),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Optional[Identity]:
    """Like `require_identity`, but anonymous requests get `None`.

    A token that is present but invalid is still rejected.
    """
    if not request.headers.get("Authorization"):
        return None
    return require_identity(request, session, issuer)
