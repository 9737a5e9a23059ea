"""Posts and post likes.

Likes are rows in `post_likes`; toggling is a single DELETE, and only if
that removed nothing, a single INSERT guarded by the (post, user) unique
constraint. Like counts are never stored, they are counted from the rows.
"""
import datetime
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, desc, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import NotFound
from .models import Comment, CommentLike, Post, PostLike, User
from .ownership import load_owned
from .schemas import AuthorSummary, LikeResult, PostView
from .security import Identity

logger = logging.getLogger(__name__)


def create_post(session: Session, identity: Identity, text: str, images: Sequence[str]) -> Post:
    post = Post(user_id=identity.id, text=text, images=list(images))
    session.add(post)
    session.commit()
    session.refresh(post)
    logger.info("Post %s created by user %s with %d image(s)", post.id, identity.id, len(post.images))
    return post


def get_post(session: Session, post_id: int) -> Post:
    post = session.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found")
    return post


def list_posts(session: Session, user_id: Optional[int] = None, limit: Optional[int] = None) -> List[Post]:
    """Posts newest first, optionally restricted to one author."""
    q = select(Post)
    if user_id is not None:
        q = q.where(Post.user_id == user_id)
    q = q.order_by(desc(Post.created_at), desc(Post.id))
    if limit is not None:
        q = q.limit(limit)
    return list(session.exec(q).all())


def update_post(session: Session, identity: Identity, post_id: int, text: str) -> Post:
    post = load_owned(session, Post, post_id, identity, "Post")
    post.text = text
    post.updated_at = datetime.datetime.now(datetime.timezone.utc)
    session.add(post)
    session.commit()
    session.refresh(post)
    logger.info("Post %s updated by user %s", post_id, identity.id)
    return post


def delete_post(session: Session, identity: Identity, post_id: int) -> List[str]:
    """Delete a post with its comments and likes.

    Returns the image references the post held so the caller can remove
    the stored files once the rows are gone.
    """
    post = load_owned(session, Post, post_id, identity, "Post")
    images = list(post.images or [])

    conn = session.connection()
    comment_ids = select(Comment.id).where(Comment.post_id == post_id)
    conn.execute(delete(CommentLike).where(CommentLike.comment_id.in_(comment_ids)))
    conn.execute(delete(Comment).where(Comment.post_id == post_id))
    conn.execute(delete(PostLike).where(PostLike.post_id == post_id))
    session.delete(post)
    session.commit()
    logger.info("Post %s deleted by user %s", post_id, identity.id)
    return images


def count_post_likes(session: Session, post_id: int) -> int:
    stmt = select(func.count()).select_from(PostLike).where(PostLike.post_id == post_id)
    return int(session.exec(stmt).one())


def toggle_post_like(session: Session, identity: Identity, post_id: int) -> LikeResult:
    get_post(session, post_id)

    removed = session.connection().execute(
        delete(PostLike).where(PostLike.post_id == post_id, PostLike.user_id == identity.id)
    ).rowcount
    if removed:
        session.commit()
        liked = False
    else:
        session.add(PostLike(post_id=post_id, user_id=identity.id))
        try:
            session.commit()
        except IntegrityError:
            # A concurrent request by the same user added it first.
            session.rollback()
        liked = True

    likes = count_post_likes(session, post_id)
    logger.debug("User %s %s post %s (likes=%d)", identity.id, "liked" if liked else "unliked", post_id, likes)
    return LikeResult(message="Post liked" if liked else "Post unliked", liked=liked, likes=likes)


def authors_by_id(session: Session, user_ids: Iterable[int]) -> Dict[int, AuthorSummary]:
    ids = set(user_ids)
    if not ids:
        return {}
    rows = session.exec(select(User).where(User.id.in_(ids))).all()
    return {u.id: AuthorSummary.model_validate(u) for u in rows}


def post_views(session: Session, posts: Sequence[Post], viewer_id: Optional[int] = None) -> List[PostView]:
    """Build API views for `posts` with a fixed number of queries."""
    if not posts:
        return []
    post_ids = [p.id for p in posts]

    likes: Dict[int, List[int]] = defaultdict(list)
    for like in session.exec(select(PostLike).where(PostLike.post_id.in_(post_ids)).order_by(PostLike.id)).all():
        likes[like.post_id].append(like.user_id)

    comment_counts: Dict[int, int] = {}
    stmt = (
        select(Comment.post_id, func.count(Comment.id))
        .where(Comment.post_id.in_(post_ids))
        .group_by(Comment.post_id)
    )
    for pid, count in session.exec(stmt).all():
        comment_counts[pid] = int(count)

    authors = authors_by_id(session, (p.user_id for p in posts))

    views = []
    for p in posts:
        likers = likes.get(p.id, [])
        views.append(PostView(
            id=p.id,
            author=authors.get(p.user_id),
            text=p.text,
            images=list(p.images or []),
            likes=likers,
            like_count=len(likers),
            comment_count=comment_counts.get(p.id, 0),
            liked=(viewer_id in likers) if viewer_id is not None else None,
            created_at=p.created_at,
            updated_at=p.updated_at,
        ))
    return views
