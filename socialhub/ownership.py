from typing import Optional, Type, TypeVar

from sqlmodel import Session

from .constants import NOT_AUTHORIZED_MESSAGE
from .errors import Forbidden, NotFound
from .security import Identity

T = TypeVar("T")


def ensure_owner(resource: Optional[T], identity: Identity, label: str) -> T:
    """Existence first, then ownership. Existence is not hidden from
    non-owners since every post and comment is publicly readable."""
    if resource is None:
        raise NotFound(f"{label} not found")
    if getattr(resource, "user_id") != identity.id:
        raise Forbidden(NOT_AUTHORIZED_MESSAGE)
    return resource


def load_owned(session: Session, model: Type[T], resource_id: int, identity: Identity, label: str) -> T:
    return ensure_owner(session.get(model, resource_id), identity, label)
