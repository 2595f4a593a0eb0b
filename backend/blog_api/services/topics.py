import logging
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from blog_api.core.errors import NotFoundError, ValidationError
from blog_api.core.security import Principal
from blog_api.core.utils import utc_now_naive
from blog_api.db.models.blog import BLOG_STATUS_ARCHIVED, BLOG_STATUS_PUBLISHED, Blog, BlogTopic
from blog_api.db.models.topic import Topic, TopicFollow
from blog_api.db.session import atomic
from blog_api.services.toggles import ToggleResult, toggle_association

logger = logging.getLogger(__name__)


def normalize_topic_name(name: str) -> str:
    clean = name.strip().lower()
    if not clean:
        raise ValidationError("topic name is required")
    return clean


def _find_by_name(db: Session, name: str) -> Topic | None:
    return db.scalars(select(Topic).where(func.lower(Topic.name) == name.lower())).first()


def get_topic(db: Session, topic_id: int) -> Topic:
    topic = db.get(Topic, topic_id)
    if topic is None:
        raise NotFoundError("topic does not exist")
    return topic


def require_topics(db: Session, topic_ids: Iterable[int]) -> list[Topic]:
    """Load every id or fail before anything is written."""
    ids = list(dict.fromkeys(topic_ids))
    if not ids:
        return []
    found = {t.id: t for t in db.scalars(select(Topic).where(Topic.id.in_(ids)))}
    for topic_id in ids:
        if topic_id not in found:
            raise NotFoundError("topic does not exist")
    return [found[topic_id] for topic_id in ids]


def create_topic(db: Session, name: str) -> Topic:
    clean = normalize_topic_name(name)
    if _find_by_name(db, clean) is not None:
        raise ValidationError("topic already exists")
    try:
        with atomic(db):
            topic = Topic(name=clean, created_at=utc_now_naive())
            db.add(topic)
    except IntegrityError:
        raise ValidationError("topic already exists") from None
    return topic


def update_topic(db: Session, topic_id: int, name: str) -> Topic:
    clean = normalize_topic_name(name)
    topic = db.get(Topic, topic_id)
    if topic is None:
        raise NotFoundError("topic not found")
    existing = _find_by_name(db, clean)
    if existing is not None and existing.id != topic.id:
        raise ValidationError("topic with topic name already exists")
    try:
        with atomic(db):
            topic.name = clean
            topic.updated_at = utc_now_naive()
    except IntegrityError:
        raise ValidationError("topic with topic name already exists") from None
    return topic


def _sole_topic_blog_ids(db: Session, topic_id: int) -> list[int]:
    """Published or archived blogs that would be left without topics."""
    tagged = select(BlogTopic.blog_id).where(BlogTopic.topic_id == topic_id)
    stmt = (
        select(BlogTopic.blog_id)
        .join(Blog, Blog.id == BlogTopic.blog_id)
        .where(
            BlogTopic.blog_id.in_(tagged),
            Blog.status.in_((BLOG_STATUS_PUBLISHED, BLOG_STATUS_ARCHIVED)),
        )
        .group_by(BlogTopic.blog_id)
        .having(func.count(BlogTopic.topic_id) == 1)
    )
    return list(db.scalars(stmt))


def delete_topic(db: Session, topic_id: int) -> None:
    topic = db.get(Topic, topic_id)
    if topic is None:
        raise NotFoundError("topic not found")
    with atomic(db):
        stranded = _sole_topic_blog_ids(db, topic_id)
        if stranded:
            logger.info("Topic delete refused topic_id=%s blog_ids=%s", topic_id, stranded)
            raise ValidationError("topic is the only topic of published blogs")
        db.delete(topic)


def list_topics(db: Session, *, search: str | None, skip: int, limit: int) -> tuple[list[Topic], int]:
    stmt = select(Topic)
    count_stmt = select(func.count(Topic.id))
    term = (search or "").strip().lower()
    if term:
        pattern = f"%{term}%"
        stmt = stmt.where(Topic.name.like(pattern))
        count_stmt = count_stmt.where(Topic.name.like(pattern))
    stmt = stmt.order_by(Topic.created_at.desc(), Topic.id.desc()).offset(skip).limit(limit)
    return list(db.scalars(stmt)), int(db.scalar(count_stmt) or 0)


def toggle_topic_follow(db: Session, actor: Principal, topic_id: int) -> ToggleResult:
    get_topic(db, topic_id)
    return toggle_association(db, TopicFollow, user_id=actor.user_id, topic_id=topic_id)
