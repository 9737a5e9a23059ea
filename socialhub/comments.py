"""Comments on posts and comment likes."""
import datetime
import logging
from collections import defaultdict
from typing import Dict, List, Sequence

from sqlalchemy import delete, desc, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import NotFound
from .models import Comment, CommentLike
from .ownership import ensure_owner
from .posts import authors_by_id, get_post
from .schemas import CommentView, LikeResult
from .security import Identity

logger = logging.getLogger(__name__)


def get_comment(session: Session, post_id: int, comment_id: int) -> Comment:
    """The comment, provided it exists and belongs to `post_id`."""
    get_post(session, post_id)
    comment = session.get(Comment, comment_id)
    if comment is None or comment.post_id != post_id:
        raise NotFound("Comment not found")
    return comment


def add_comment(session: Session, identity: Identity, post_id: int, text: str) -> Comment:
    get_post(session, post_id)
    comment = Comment(post_id=post_id, user_id=identity.id, text=text)
    session.add(comment)
    session.commit()
    session.refresh(comment)
    logger.info("Comment %s added to post %s by user %s", comment.id, post_id, identity.id)
    return comment


def list_comments(session: Session, post_id: int) -> List[Comment]:
    """Comments of a post, newest first."""
    get_post(session, post_id)
    stmt = select(Comment).where(Comment.post_id == post_id).order_by(desc(Comment.created_at), desc(Comment.id))
    return list(session.exec(stmt).all())


def update_comment(session: Session, identity: Identity, post_id: int, comment_id: int, text: str) -> Comment:
    comment = ensure_owner(get_comment(session, post_id, comment_id), identity, "Comment")
    comment.text = text
    comment.updated_at = datetime.datetime.now(datetime.timezone.utc)
    session.add(comment)
    session.commit()
    session.refresh(comment)
    logger.info("Comment %s updated by user %s", comment_id, identity.id)
    return comment


def delete_comment(session: Session, identity: Identity, post_id: int, comment_id: int) -> None:
    comment = ensure_owner(get_comment(session, post_id, comment_id), identity, "Comment")
    session.connection().execute(delete(CommentLike).where(CommentLike.comment_id == comment_id))
    session.delete(comment)
    session.commit()
    logger.info("Comment %s deleted by user %s", comment_id, identity.id)


def toggle_comment_like(session: Session, identity: Identity, post_id: int, comment_id: int) -> LikeResult:
    get_comment(session, post_id, comment_id)

    removed = session.connection().execute(
        delete(CommentLike).where(CommentLike.comment_id == comment_id, CommentLike.user_id == identity.id)
    ).rowcount
    if removed:
        session.commit()
        liked = False
    else:
        session.add(CommentLike(comment_id=comment_id, user_id=identity.id))
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
        liked = True

    stmt = select(func.count()).select_from(CommentLike).where(CommentLike.comment_id == comment_id)
    likes = int(session.exec(stmt).one())
    return LikeResult(message="Comment liked" if liked else "Comment unliked", liked=liked, likes=likes)


def comment_views(session: Session, comments: Sequence[Comment]) -> List[CommentView]:
    if not comments:
        return []
    ids = [c.id for c in comments]
    likes: Dict[int, List[int]] = defaultdict(list)
    stmt = select(CommentLike).where(CommentLike.comment_id.in_(ids)).order_by(CommentLike.id)
    for like in session.exec(stmt).all():
        likes[like.comment_id].append(like.user_id)

    authors = authors_by_id(session, (c.user_id for c in comments))
    return [
        CommentView(
            id=c.id,
            post_id=c.post_id,
            author=authors.get(c.user_id),
            text=c.text,
            likes=likes.get(c.id, []),
            like_count=len(likes.get(c.id, [])),
            created_at=c.created_at,
            updated_at=c.updated_at,
        )
        for c in comments
    ]
