import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from blog_api.core.errors import NotFoundError, UnauthorizedError, ValidationError
from blog_api.core.security import Principal
from blog_api.core.utils import utc_now_naive
from blog_api.db.models.blog_comment import BlogComment
from blog_api.db.models.reactions import BlogCommentLike
from blog_api.db.session import atomic
from blog_api.services.blogs import get_visible_blog
from blog_api.services.toggles import ToggleResult, toggle_association

logger = logging.getLogger(__name__)


@dataclass
class CommentView:
    comment: BlogComment
    like_count: int
    reply_count: int


def get_comment(db: Session, comment_id: int) -> BlogComment:
    comment = db.get(BlogComment, comment_id)
    if comment is None:
        raise NotFoundError("blog comment not found")
    return comment


def create_comment(
    db: Session,
    actor: Principal,
    *,
    blog_id: int,
    content: str,
    parent_comment_id: int | None = None,
) -> BlogComment:
    """Add a top-level comment, or a reply when ``parent_comment_id`` is given.

    Threads are two levels deep: replying to a reply attaches the new comment
    to that reply's top-level parent.
    """
    clean = (content or "").strip()
    if not clean:
        raise ValidationError("blog comment content cannot be empty")
    try:
        get_visible_blog(db, blog_id, actor)
    except NotFoundError:
        raise NotFoundError("blog not found") from None

    root_id = None
    if parent_comment_id is not None:
        parent = db.get(BlogComment, parent_comment_id)
        if parent is None:
            raise NotFoundError("parent comment not found")
        if parent.blog_id != blog_id:
            raise ValidationError("parent comment is not blog's comment")
        root_id = parent.parent_comment_id or parent.id

    with atomic(db):
        comment = BlogComment(
            content=clean,
            author_id=actor.user_id,
            blog_id=blog_id,
            parent_comment_id=root_id,
            created_at=utc_now_naive(),
        )
        db.add(comment)
    return comment


def update_comment(db: Session, actor: Principal, comment_id: int, *, content: str) -> BlogComment:
    clean = (content or "").strip()
    if not clean:
        raise ValidationError("blog comment content is required")
    comment = get_comment(db, comment_id)
    if comment.author_id != actor.user_id:
        raise UnauthorizedError("unauthorized to update blog comment")
    with atomic(db):
        comment.content = clean
        comment.updated_at = utc_now_naive()
    return comment


def delete_comment(db: Session, actor: Principal, comment_id: int) -> None:
    comment = get_comment(db, comment_id)
    if comment.author_id != actor.user_id:
        raise UnauthorizedError("unauthorized to delete blog comment")
    # replies and likes go with it through ON DELETE CASCADE
    with atomic(db):
        db.delete(comment)
    logger.info("Blog comment deleted id=%s blog_id=%s", comment_id, comment.blog_id)


def get_visible_comment(db: Session, comment_id: int, viewer: Principal | None) -> BlogComment:
    """Comments on someone else's draft do not exist for the viewer."""
    comment = get_comment(db, comment_id)
    try:
        get_visible_blog(db, comment.blog_id, viewer)
    except NotFoundError:
        raise NotFoundError("blog comment not found") from None
    return comment


def toggle_comment_like(db: Session, actor: Principal, comment_id: int) -> ToggleResult:
    get_visible_comment(db, comment_id, actor)
    return toggle_association(db, BlogCommentLike, user_id=actor.user_id, comment_id=comment_id)


def _list_annotated(db: Session, where, *, skip: int, limit: int) -> tuple[list[CommentView], int]:
    likes = (
        select(BlogCommentLike.comment_id.label("comment_id"), func.count(BlogCommentLike.user_id).label("n"))
        .group_by(BlogCommentLike.comment_id)
        .subquery("comment_likes")
    )
    reply_table = BlogComment.__table__.alias("replies")
    replies = (
        select(reply_table.c.parent_comment_id.label("comment_id"), func.count(reply_table.c.id).label("n"))
        .where(reply_table.c.parent_comment_id.is_not(None))
        .group_by(reply_table.c.parent_comment_id)
        .subquery("comment_replies")
    )
    stmt = (
        select(
            BlogComment,
            func.coalesce(likes.c.n, 0).label("like_count"),
            func.coalesce(replies.c.n, 0).label("reply_count"),
        )
        .outerjoin(likes, likes.c.comment_id == BlogComment.id)
        .outerjoin(replies, replies.c.comment_id == BlogComment.id)
        .where(where)
        .order_by(BlogComment.created_at.desc(), BlogComment.id.desc())
        .offset(skip)
        .limit(limit)
    )
    items = [
        CommentView(comment=row.BlogComment, like_count=int(row.like_count), reply_count=int(row.reply_count))
        for row in db.execute(stmt)
    ]
    total = int(db.scalar(select(func.count(BlogComment.id)).where(where)) or 0)
    return items, total


def list_blog_comments(
    db: Session,
    blog_id: int,
    *,
    viewer: Principal | None = None,
    skip: int,
    limit: int,
) -> tuple[list[CommentView], int]:
    """Top-level comments of a blog, newest first."""
    get_visible_blog(db, blog_id, viewer)
    where = (BlogComment.blog_id == blog_id) & BlogComment.parent_comment_id.is_(None)
    return _list_annotated(db, where, skip=skip, limit=limit)


def list_comment_replies(
    db: Session,
    comment_id: int,
    *,
    viewer: Principal | None = None,
    skip: int,
    limit: int,
) -> tuple[list[CommentView], int]:
    """Replies to a comment, newest first."""
    get_visible_comment(db, comment_id, viewer)
    return _list_annotated(db, BlogComment.parent_comment_id == comment_id, skip=skip, limit=limit)
