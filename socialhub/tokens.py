"""
Bearer token issuance and verification.

Tokens are compact HMAC-signed JWTs carrying `sub` (user id), `iat` and
`exp`. They are stateless: nothing is stored server side, so a token stays
valid until it expires.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import jws, jwt
from jose.exceptions import JWSError, JWTError
from jose.utils import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Base class for token verification failures."""
    reason = "invalid"


class TokenExpired(TokenError):
    reason = "expired"


class TokenInvalidSignature(TokenError):
    reason = "invalid_signature"


class TokenMalformed(TokenError):
    reason = "malformed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_canonical_b64(segment: str) -> bool:
    """True if `segment` is the one base64url spelling of the bytes it decodes to."""
    raw = segment.encode("ascii")
    return base64url_encode(base64url_decode(raw)) == raw


class TokenIssuer:
    """Issues and verifies signed, time-limited bearer tokens."""

    def __init__(self, secret: str, expiry: timedelta = timedelta(hours=24), algorithm: str = "HS256",
                 clock: Optional[Callable[[], datetime]] = None):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self.expiry = expiry
        self.algorithm = algorithm
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(cls, settings, clock: Optional[Callable[[], datetime]] = None) -> "TokenIssuer":
        return cls(
            settings.jwt_secret,
            expiry=timedelta(hours=settings.jwt_expiry_hours),
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    def issue(self, user_id: int) -> str:
        now = self._clock()
        payload = {
            'sub': str(user_id),
            'iat': int(now.timestamp()),
            'exp': int((now + self.expiry).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> int:
        """Return the user id the token was issued for.

        The signature is checked on its own first; claims are only looked
        at once the token is known to be authentic. A token is valid up to
        and including the second named by `exp`, measured on the issuer's
        clock.
        """
        if not token or token.count('.') != 2:
            raise TokenMalformed("Token is not a compact JWT")

        try:
            jws.verify(token, self._secret, algorithms=[self.algorithm])
        except JWSError as e:
            logger.debug("Token signature check failed: %s", e)
            raise TokenInvalidSignature("Token signature does not verify") from None

        # The last signature character has spare bits the decoder ignores.
        if not _is_canonical_b64(token.rsplit('.', 1)[1]):
            logger.debug("Token signature is not canonically encoded")
            raise TokenInvalidSignature("Token signature does not verify")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={'verify_exp': False, 'require_exp': True, 'require_sub': True},
            )
        except JWTError as e:
            logger.debug("Token claims rejected: %s", e)
            raise TokenMalformed("Token claims are invalid") from None

        exp = claims['exp']
        if isinstance(exp, bool) or not isinstance(exp, int):
            raise TokenMalformed("Token expiry is not a timestamp")
        if int(self._clock().timestamp()) > exp:
            raise TokenExpired("Token has expired")

        try:
            return int(claims['sub'])
        except (KeyError, TypeError, ValueError):
            raise TokenMalformed("Token subject is not a user id") from None
