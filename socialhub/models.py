import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from .constants import DEFAULT_PROFILE_PICTURE


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class User(SQLModel, table=True):
    """Account record. `username` and `email` are stored lower-cased and
    the unique indexes on them are what decides registration races."""
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    profile_picture: str = Field(default=DEFAULT_PROFILE_PICTURE)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Post(SQLModel, table=True):
    __tablename__ = "posts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    text: str
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime.datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    text: str
    created_at: datetime.datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)


class PostLike(SQLModel, table=True):
    """One row per (post, user). The composite unique constraint makes the
    like set a real set under concurrent toggles."""
    __tablename__ = "post_likes"
    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_post_likes_post_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class CommentLike(SQLModel, table=True):
    __tablename__ = "comment_likes"
    __table_args__ = (UniqueConstraint("comment_id", "user_id", name="uq_comment_likes_comment_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    comment_id: int = Field(foreign_key="comments.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
