"""User profiles: self view, public view, updates and search."""
import logging
from typing import List, Optional

from sqlmodel import Session

from .constants import PROFILE_RECENT_POSTS_LIMIT, SEARCH_RESULT_LIMIT, normalize_identifier
from .credentials import get_user, search_users, update_user_fields
from .errors import NotFound, ValidationFailed
from .images import ImageStore, Upload
from .models import User
from .passwords import PasswordHasher
from .posts import list_posts, post_views
from .schemas import ProfileView, PublicUser, UpdateProfileRequest
from .security import Identity

logger = logging.getLogger(__name__)


def load_user(session: Session, user_id: int) -> User:
    user = get_user(session, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def profile_view(session: Session, user: User, viewer_id: Optional[int] = None) -> ProfileView:
    """Public view of `user` with their most recent posts."""
    posts = list_posts(session, user_id=user.id, limit=PROFILE_RECENT_POSTS_LIMIT)
    base = PublicUser.model_validate(user)
    return ProfileView(**base.model_dump(), posts=post_views(session, posts, viewer_id))


def update_profile(session: Session, hasher: PasswordHasher, identity: Identity,
                   request: UpdateProfileRequest) -> User:
    user = load_user(session, identity.id)
    changes = {"username": request.username, "email": request.email}

    if request.new_password:
        if not hasher.verify(request.current_password or "", user.password_hash):
            logger.warning("Password change rejected for user id=%s: wrong current password", user.id)
            raise ValidationFailed("Current password is incorrect")
        changes["password_hash"] = hasher.hash(request.new_password)

    if not any(v is not None for v in changes.values()):
        raise ValidationFailed("Nothing to update")

    user = update_user_fields(session, user.id, **changes)
    logger.info("Profile updated for user id=%s", user.id)
    return user


def replace_profile_picture(session: Session, store: ImageStore, identity: Identity,
                            upload: Optional[Upload]) -> User:
    """Store the new picture, point the user at it and drop the old file.

    If the user update fails the freshly stored file is removed again.
    """
    if upload is None or not upload.data:
        raise ValidationFailed("Profile picture is required")

    user = load_user(session, identity.id)
    previous = user.profile_picture
    reference = store.save(upload)
    try:
        user = update_user_fields(session, user.id, profile_picture=reference)
    except Exception:
        store.delete([reference])
        raise

    if previous and previous != reference:
        store.delete([previous])
    logger.info("Profile picture replaced for user id=%s", user.id)
    return user


def find_users(session: Session, query: Optional[str]) -> List[User]:
    if not normalize_identifier(query):
        raise ValidationFailed("Search query is required")
    return search_users(session, query, limit=SEARCH_RESULT_LIMIT)
