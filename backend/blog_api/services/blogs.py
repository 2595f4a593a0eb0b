import logging
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from blog_api.core.errors import InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
from blog_api.core.security import Principal
from blog_api.core.utils import utc_now_naive
from blog_api.db.models.blog import (
    BLOG_STATUS_ARCHIVED,
    BLOG_STATUS_DRAFT,
    BLOG_STATUS_PUBLISHED,
    BLOG_STATUSES,
    Blog,
    BlogTopic,
)
from blog_api.db.models.reactions import BlogBookmark, BlogLike
from blog_api.db.session import atomic
from blog_api.services.toggles import ToggleResult, toggle_association
from blog_api.services.topics import require_topics

logger = logging.getLogger(__name__)

MAX_TOPICS_PER_BLOG = 5
CREATABLE_STATUSES = (BLOG_STATUS_DRAFT, BLOG_STATUS_PUBLISHED)


def _topic_limit_error() -> ValidationError:
    return ValidationError(f"a blog can have max {MAX_TOPICS_PER_BLOG} no of topics")


def get_blog(db: Session, blog_id: int) -> Blog:
    blog = db.get(Blog, blog_id)
    if blog is None:
        raise NotFoundError("blog does not exist")
    return blog


def get_visible_blog(db: Session, blog_id: int, viewer: Principal | None) -> Blog:
    """Published and archived blogs are public; drafts only exist for their author."""
    blog = get_blog(db, blog_id)
    if blog.status == BLOG_STATUS_DRAFT and (viewer is None or viewer.user_id != blog.author_id):
        raise NotFoundError("blog does not exist")
    return blog


def blog_topic_ids(db: Session, blog_id: int) -> list[int]:
    return list(db.scalars(select(BlogTopic.topic_id).where(BlogTopic.blog_id == blog_id)))


def create_blog(
    db: Session,
    actor: Principal,
    *,
    title: str,
    content: Any,
    status: str,
    topic_ids: Iterable[int] = (),
    description: str | None = None,
    thumbnail_url: str | None = None,
) -> Blog:
    clean_title = (title or "").strip()
    if not clean_title or content is None:
        raise ValidationError("blog title and content are required")
    if status not in CREATABLE_STATUSES:
        raise ValidationError(f"blog can only be created as {' or '.join(CREATABLE_STATUSES)}")

    ids = list(dict.fromkeys(topic_ids))
    if len(ids) > MAX_TOPICS_PER_BLOG:
        raise _topic_limit_error()
    if status == BLOG_STATUS_PUBLISHED and not ids:
        raise ValidationError("blog topics compulsory for published blog")
    require_topics(db, ids)

    now = utc_now_naive()
    with atomic(db):
        blog = Blog(
            title=clean_title,
            description=(description or "").strip() or None,
            content=content,
            thumbnail_url=thumbnail_url,
            status=status,
            author_id=actor.user_id,
            published_at=now if status == BLOG_STATUS_PUBLISHED else None,
            created_at=now,
        )
        db.add(blog)
        db.flush()
        db.add_all(BlogTopic(blog_id=blog.id, topic_id=topic_id) for topic_id in ids)
    logger.info("Blog created id=%s author_id=%s status=%s topics=%s", blog.id, actor.user_id, status, ids)
    return blog


def _publish_draft(db: Session, blog: Blog, new_topic_ids: list[int]) -> None:
    existing = set(blog_topic_ids(db, blog.id))
    if existing:
        if any(topic_id in existing for topic_id in new_topic_ids):
            raise ValidationError("topic already exists")
    elif not new_topic_ids:
        raise ValidationError("topics required to publish blog")
    if len(existing) + len(new_topic_ids) > MAX_TOPICS_PER_BLOG:
        raise _topic_limit_error()

    with atomic(db):
        db.add_all(BlogTopic(blog_id=blog.id, topic_id=topic_id) for topic_id in new_topic_ids)
        blog.status = BLOG_STATUS_PUBLISHED
        if blog.published_at is None:
            blog.published_at = utc_now_naive()


def _archive(db: Session, blog: Blog, _new_topic_ids: list[int]) -> None:
    with atomic(db):
        blog.status = BLOG_STATUS_ARCHIVED


def _republish(db: Session, blog: Blog, _new_topic_ids: list[int]) -> None:
    # published_at keeps the first publication time
    with atomic(db):
        blog.status = BLOG_STATUS_PUBLISHED


TRANSITIONS: dict[tuple[str, str], Callable[[Session, Blog, list[int]], None]] = {
    (BLOG_STATUS_DRAFT, BLOG_STATUS_PUBLISHED): _publish_draft,
    (BLOG_STATUS_PUBLISHED, BLOG_STATUS_ARCHIVED): _archive,
    (BLOG_STATUS_ARCHIVED, BLOG_STATUS_PUBLISHED): _republish,
}


def change_blog_status(
    db: Session,
    actor: Principal,
    blog_id: int,
    *,
    status: str,
    topic_ids: Iterable[int] = (),
) -> Blog:
    if status not in BLOG_STATUSES:
        raise ValidationError("invalid blog status")
    blog = get_blog(db, blog_id)
    if blog.author_id != actor.user_id:
        raise UnauthorizedError("unauthorized to update blog status")

    ids = list(dict.fromkeys(topic_ids))
    require_topics(db, ids)

    apply = TRANSITIONS.get((blog.status, status))
    if apply is None:
        raise InvalidTransitionError(f"cannot update blog status with current blog status {blog.status}")
    previous = blog.status
    apply(db, blog, ids)
    logger.info("Blog status changed id=%s from=%s to=%s", blog.id, previous, blog.status)
    return blog


def delete_blog(db: Session, actor: Principal, blog_id: int) -> None:
    blog = get_blog(db, blog_id)
    if blog.author_id != actor.user_id:
        raise UnauthorizedError("unauthorized to delete blog")
    with atomic(db):
        db.delete(blog)
    logger.info("Blog deleted id=%s author_id=%s", blog_id, actor.user_id)


def toggle_blog_like(db: Session, actor: Principal, blog_id: int) -> ToggleResult:
    get_visible_blog(db, blog_id, actor)
    return toggle_association(db, BlogLike, user_id=actor.user_id, blog_id=blog_id)


def toggle_blog_bookmark(db: Session, actor: Principal, blog_id: int) -> ToggleResult:
    get_visible_blog(db, blog_id, actor)
    return toggle_association(db, BlogBookmark, user_id=actor.user_id, blog_id=blog_id)
