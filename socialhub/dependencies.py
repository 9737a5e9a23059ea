"""Request-scoped accessors for the objects built once in the app lifespan."""
from typing import Iterator

from fastapi import Request
from sqlmodel import Session

from .config import Settings
from .db_helpers import session_scope
from .images import ImageStore
from .passwords import PasswordHasher
from .tokens import TokenIssuer


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_session(request: Request) -> Iterator[Session]:
    with session_scope(request.app.state.engine) as session:
        yield session


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher


def get_image_store(request: Request) -> ImageStore:
    return request.app.state.image_store
