"""Activity-score ranking of published blogs.

    score = (0.3 * likes + 0.5 * top_level_comments + 0.2 * bookmarks) / minutes_since_published ** 2

The score is computed in SQL so ordering and pagination happen in the store.
Likes and bookmarks are counted per distinct actor; replies do not count.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import DateTime, Float, Select, cast, func, literal, select
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.sql.functions import FunctionElement

from blog_api.core.security import Principal
from blog_api.core.utils import utc_now_naive
from blog_api.db.models.blog import BLOG_STATUS_PUBLISHED, Blog, BlogTopic
from blog_api.db.models.blog_comment import BlogComment
from blog_api.db.models.reactions import BlogBookmark, BlogLike
from blog_api.db.models.topic import Topic, TopicFollow

LIKES_WEIGHT = 0.3
COMMENTS_WEIGHT = 0.5
BOOKMARKS_WEIGHT = 0.2

# Age is floored at one second so a blog published "now" has a finite score.
MIN_AGE_SECONDS = 1.0


class minutes_since(FunctionElement):
    """``minutes_since(now, ts)``: fractional minutes from ``ts`` to ``now``."""

    type = Float()
    name = "minutes_since"
    inherit_cache = True


@compiles(minutes_since)
def _minutes_since_default(element, compiler, **kw):
    now, ts = list(element.clauses)
    return "(GREATEST(EXTRACT(EPOCH FROM (%s - %s)), %s) / 60.0)" % (
        compiler.process(now, **kw),
        compiler.process(ts, **kw),
        MIN_AGE_SECONDS,
    )


@compiles(minutes_since, "sqlite")
def _minutes_since_sqlite(element, compiler, **kw):
    now, ts = list(element.clauses)
    return "(MAX((julianday(%s) - julianday(%s)) * 86400.0, %s) / 60.0)" % (
        compiler.process(now, **kw),
        compiler.process(ts, **kw),
        MIN_AGE_SECONDS,
    )


@dataclass(frozen=True)
class TopicScope:
    topic_id: int


@dataclass(frozen=True)
class FollowedTopicsScope:
    user_id: int


@dataclass(frozen=True)
class TopFollowedTopicsScope:
    n: int


FeedScope = TopicScope | FollowedTopicsScope | TopFollowedTopicsScope


@dataclass
class RankedBlog:
    blog: Blog
    topics: list[Topic]
    likes_count: int
    comments_count: int
    bookmarks_count: int
    activity_score: float | None = None


def activity_score(
    *,
    likes_count: int,
    comments_count: int,
    bookmarks_count: int,
    published_at: datetime,
    now: datetime,
) -> float:
    """Plain-Python twin of the SQL score, for single blogs and tests."""
    age_seconds = max((now - published_at).total_seconds(), MIN_AGE_SECONDS)
    minutes = age_seconds / 60.0
    engagement = LIKES_WEIGHT * likes_count + COMMENTS_WEIGHT * comments_count + BOOKMARKS_WEIGHT * bookmarks_count
    return engagement / (minutes * minutes)


def _engagement_subqueries():
    likes = (
        select(BlogLike.blog_id.label("blog_id"), func.count(func.distinct(BlogLike.user_id)).label("n"))
        .group_by(BlogLike.blog_id)
        .subquery("likes")
    )
    bookmarks = (
        select(BlogBookmark.blog_id.label("blog_id"), func.count(func.distinct(BlogBookmark.user_id)).label("n"))
        .group_by(BlogBookmark.blog_id)
        .subquery("bookmarks")
    )
    comments = (
        select(BlogComment.blog_id.label("blog_id"), func.count(BlogComment.id).label("n"))
        .where(BlogComment.parent_comment_id.is_(None))
        .group_by(BlogComment.blog_id)
        .subquery("comments")
    )
    return likes, comments, bookmarks


def _scope_blog_ids(scope: FeedScope) -> Select:
    if isinstance(scope, TopicScope):
        return select(BlogTopic.blog_id).where(BlogTopic.topic_id == scope.topic_id)

    if isinstance(scope, FollowedTopicsScope):
        followed = select(TopicFollow.topic_id).where(TopicFollow.user_id == scope.user_id)
        return select(BlogTopic.blog_id).where(BlogTopic.topic_id.in_(followed))

    if isinstance(scope, TopFollowedTopicsScope):
        top_topics = (
            select(TopicFollow.topic_id.label("topic_id"))
            .group_by(TopicFollow.topic_id)
            .order_by(func.count(TopicFollow.user_id).desc(), TopicFollow.topic_id.asc())
            .limit(scope.n)
            .subquery("top_topics")
        )
        return select(BlogTopic.blog_id).where(BlogTopic.topic_id.in_(select(top_topics.c.topic_id)))

    raise TypeError(f"unsupported feed scope {scope!r}")


def _eligible(scope: FeedScope):
    return (
        Blog.status == BLOG_STATUS_PUBLISHED,
        Blog.published_at.is_not(None),
        # IN deduplicates blogs that sit under several qualifying topics
        Blog.id.in_(_scope_blog_ids(scope)),
    )


def load_topics_for_blogs(db: Session, blog_ids: list[int]) -> dict[int, list[Topic]]:
    if not blog_ids:
        return {}
    rows = db.execute(
        select(BlogTopic.blog_id, Topic)
        .join(Topic, Topic.id == BlogTopic.topic_id)
        .where(BlogTopic.blog_id.in_(blog_ids))
        .order_by(Topic.name.asc())
    )
    by_blog: dict[int, list[Topic]] = defaultdict(list)
    for blog_id, topic in rows:
        by_blog[blog_id].append(topic)
    return by_blog


def count_ranked_blogs(db: Session, scope: FeedScope) -> int:
    return int(db.scalar(select(func.count(Blog.id)).where(*_eligible(scope))) or 0)


def rank_blogs(
    db: Session,
    scope: FeedScope,
    *,
    skip: int,
    limit: int,
    now: datetime | None = None,
) -> tuple[list[RankedBlog], int]:
    """One page of published blogs in ``scope``, highest activity score first, plus the scope total."""
    if skip < 0:
        raise ValueError("skip must not be negative")
    now = now or utc_now_naive()
    likes, comments, bookmarks = _engagement_subqueries()

    likes_count = func.coalesce(likes.c.n, 0)
    comments_count = func.coalesce(comments.c.n, 0)
    bookmarks_count = func.coalesce(bookmarks.c.n, 0)
    age_minutes = minutes_since(literal(now, DateTime()), Blog.published_at)
    score = cast(
        (LIKES_WEIGHT * likes_count + COMMENTS_WEIGHT * comments_count + BOOKMARKS_WEIGHT * bookmarks_count)
        / (age_minutes * age_minutes),
        Float,
    )

    stmt = (
        select(
            Blog,
            likes_count.label("likes_count"),
            comments_count.label("comments_count"),
            bookmarks_count.label("bookmarks_count"),
            score.label("activity_score"),
        )
        .outerjoin(likes, likes.c.blog_id == Blog.id)
        .outerjoin(comments, comments.c.blog_id == Blog.id)
        .outerjoin(bookmarks, bookmarks.c.blog_id == Blog.id)
        .where(*_eligible(scope))
        .order_by(score.desc(), Blog.published_at.desc(), Blog.id.desc())
        .offset(skip)
        .limit(limit)
    )
    rows = db.execute(stmt).all()
    topics = load_topics_for_blogs(db, [row.Blog.id for row in rows])

    items = [
        RankedBlog(
            blog=row.Blog,
            topics=topics.get(row.Blog.id, []),
            likes_count=int(row.likes_count),
            comments_count=int(row.comments_count),
            bookmarks_count=int(row.bookmarks_count),
            activity_score=float(row.activity_score),
        )
        for row in rows
    ]
    return items, count_ranked_blogs(db, scope)


def describe_blog(db: Session, blog: Blog, *, now: datetime | None = None) -> RankedBlog:
    """Single blog with topics and engagement counts; scored only when published."""
    likes, comments, bookmarks = _engagement_subqueries()
    counts = db.execute(
        select(
            func.coalesce(likes.c.n, 0),
            func.coalesce(comments.c.n, 0),
            func.coalesce(bookmarks.c.n, 0),
        )
        .select_from(Blog)
        .outerjoin(likes, likes.c.blog_id == Blog.id)
        .outerjoin(comments, comments.c.blog_id == Blog.id)
        .outerjoin(bookmarks, bookmarks.c.blog_id == Blog.id)
        .where(Blog.id == blog.id)
    ).one()
    likes_count, comments_count, bookmarks_count = (int(x) for x in counts)

    score = None
    if blog.status == BLOG_STATUS_PUBLISHED and blog.published_at is not None:
        score = activity_score(
            likes_count=likes_count,
            comments_count=comments_count,
            bookmarks_count=bookmarks_count,
            published_at=blog.published_at,
            now=now or utc_now_naive(),
        )
    return RankedBlog(
        blog=blog,
        topics=load_topics_for_blogs(db, [blog.id]).get(blog.id, []),
        likes_count=likes_count,
        comments_count=comments_count,
        bookmarks_count=bookmarks_count,
        activity_score=score,
    )


def feed_scope_for(db: Session, principal: Principal | None, *, top_n: int) -> FeedScope:
    """Personal feed when the caller follows something, otherwise the most-followed topics."""
    if principal is not None:
        follows = db.scalar(select(func.count()).select_from(TopicFollow).where(TopicFollow.user_id == principal.user_id))
        if follows:
            return FollowedTopicsScope(user_id=principal.user_id)
    return TopFollowedTopicsScope(n=top_n)
