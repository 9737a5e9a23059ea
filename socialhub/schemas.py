"""Request and response bodies of the REST API."""
import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .constants import (
    COMMENT_TEXT_MAX_LENGTH,
    POST_TEXT_MAX_LENGTH,
    PASSWORD_MAX_LENGTH,
    normalize_identifier,
    validate_email,
    validate_password,
    validate_text,
    validate_username,
)


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str

    @field_validator("username")
    @classmethod
    def _username(cls, v):
        return validate_username(v)

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return validate_email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        return validate_password(v)


class LoginRequest(BaseModel):
    """Either `email` or `username` identifies the account."""
    email: Optional[str] = None
    username: Optional[str] = None
    password: str

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        if not v:
            raise ValueError("Password is required")
        if len(v) > PASSWORD_MAX_LENGTH:
            raise ValueError("Password is too long")
        return v

    @model_validator(mode="after")
    def _one_identifier(self):
        if not normalize_identifier(self.email) and not normalize_identifier(self.username):
            raise ValueError("Email or username is required")
        return self

    @property
    def identifier(self) -> str:
        return normalize_identifier(self.email) or normalize_identifier(self.username)


class UpdateProfileRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None

    @field_validator("username")
    @classmethod
    def _username(cls, v):
        return validate_username(v) if v else None

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return validate_email(v) if v else None

    @field_validator("new_password")
    @classmethod
    def _new_password(cls, v):
        return validate_password(v) if v else None

    @model_validator(mode="after")
    def _current_password_for_change(self):
        if self.new_password and not self.current_password:
            raise ValueError("Current password is required")
        return self


class PostTextRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _text(cls, v):
        return validate_text(v, POST_TEXT_MAX_LENGTH, "Text")


class CommentRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def _text(cls, v):
        return validate_text(v, COMMENT_TEXT_MAX_LENGTH, "Comment text")


class PublicUser(BaseModel):
    """Outward view of a user. There is no password field to leak."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    profile_picture: str
    created_at: datetime.datetime
    updated_at: datetime.datetime


class AuthorSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    profile_picture: str


class AuthResponse(BaseModel):
    message: Optional[str] = None
    token: str
    user: PublicUser


class PostView(BaseModel):
    id: int
    author: Optional[AuthorSummary] = None
    text: str
    images: List[str]
    likes: List[int]
    like_count: int
    comment_count: int
    liked: Optional[bool] = None
    created_at: datetime.datetime
    updated_at: datetime.datetime


class CommentView(BaseModel):
    id: int
    post_id: int
    author: Optional[AuthorSummary] = None
    text: str
    likes: List[int]
    like_count: int
    created_at: datetime.datetime
    updated_at: datetime.datetime


class ProfileView(PublicUser):
    posts: List[PostView] = []


class LikeResult(BaseModel):
    message: str
    liked: bool
    likes: int


class MessageResponse(BaseModel):
    message: str


class ProfilePictureResponse(BaseModel):
    message: str
    profile_picture: str
