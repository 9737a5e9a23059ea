from __future__ import annotations

import logging

from argon2 import PasswordHasher as _Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger(__name__)


class PasswordHasher:
    """Argon2id hashing with an explicit, configurable work factor.

    The encoded digest carries its own salt and parameters, so raising the
    cost later still verifies digests produced with the old one;
    `needs_rehash()` tells the login path when to upgrade a stored digest.
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4):
        self._ph = _Argon2Hasher(time_cost=time_cost, memory_cost=memory_cost, parallelism=parallelism)
        # Fixed digest so an unknown user costs the same as a wrong password.
        self._dummy_digest = self._ph.hash("socialhub-dummy-password")

    @classmethod
    def from_settings(cls, settings) -> "PasswordHasher":
        return cls(
            time_cost=settings.password_time_cost,
            memory_cost=settings.password_memory_cost,
            parallelism=settings.password_parallelism,
        )

    def hash(self, plain: str) -> str:
        if not plain:
            raise ValueError("Empty password")
        return self._ph.hash(plain)

    def verify(self, plain: str, digest: str) -> bool:
        if not digest or not plain:
            return False
        try:
            return self._ph.verify(digest, plain)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("Stored password digest could not be verified")
            return False

    def needs_rehash(self, digest: str) -> bool:
        try:
            return self._ph.check_needs_rehash(digest)
        except (InvalidHashError, ValueError):
            return True

    def dummy_verify(self, plain: str) -> None:
        self.verify(plain or "x", self._dummy_digest)
