from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blog_api.core.utils import utc_now_naive
from blog_api.db.base import Base
from blog_api.db.models.user import User

BLOG_STATUS_DRAFT = "draft"
BLOG_STATUS_PUBLISHED = "published"
BLOG_STATUS_ARCHIVED = "archived"
BLOG_STATUSES = (BLOG_STATUS_DRAFT, BLOG_STATUS_PUBLISHED, BLOG_STATUS_ARCHIVED)


class Blog(Base):
    __tablename__ = "blogs"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[Any] = mapped_column(JSON)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=BLOG_STATUS_DRAFT, index=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=utc_now_naive)

    author: Mapped[User] = relationship(lazy="joined")


class BlogTopic(Base):
    __tablename__ = "blog_topics"

    blog_id: Mapped[int] = mapped_column(ForeignKey("blogs.id", ondelete="CASCADE"), primary_key=True)
    topic_id: Mapped[int] = mapped_column(ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True, index=True)
