import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from blog_api.api.comments import serialize_author, serialize_comment_view
from blog_api.core.api_response import success_response_payload, toggle_response
from blog_api.core.metrics import increment_counter
from blog_api.core.observability import log_business_event
from blog_api.core.paging import PageParams, build_paged_response, page_params
from blog_api.core.security import Principal, get_current_principal, get_optional_principal, get_settings
from blog_api.core.settings import Settings
from blog_api.db.session import get_db
from blog_api.schemas.blog import BlogCreate, BlogStatusUpdate
from blog_api.services import blogs as blog_service
from blog_api.services import comments as comment_service
from blog_api.services.feed import FollowedTopicsScope, RankedBlog, describe_blog, feed_scope_for, rank_blogs

router = APIRouter(prefix="/blog", tags=["blogs"])
logger = logging.getLogger(__name__)


def serialize_ranked_blog(item: RankedBlog) -> dict:
    blog = item.blog
    return {
        "id": blog.id,
        "title": blog.title,
        "description": blog.description,
        "content": blog.content,
        "thumbnail_url": blog.thumbnail_url,
        "status": blog.status,
        "author": serialize_author(blog.author),
        "topics": [{"id": t.id, "name": t.name} for t in item.topics],
        "blog_likes_count": item.likes_count,
        "blog_comments_count": item.comments_count,
        "blog_bookmarks_count": item.bookmarks_count,
        "activity_score": item.activity_score,
        "published_at": blog.published_at.isoformat() if blog.published_at else None,
        "created_at": blog.created_at.isoformat() if blog.created_at else None,
        "updated_at": blog.updated_at.isoformat() if blog.updated_at else None,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_blog(
    payload: BlogCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    blog = blog_service.create_blog(
        db,
        principal,
        title=payload.title,
        content=payload.content,
        status=payload.status,
        topic_ids=payload.topic_ids,
        description=payload.description,
        thumbnail_url=payload.thumbnail_url,
    )
    increment_counter("blogs_total", action="create", status=blog.status)
    log_business_event(logger, request, event="blog.create", blog_id=blog.id, status=blog.status)
    return success_response_payload(
        request, message="created blog successfully", blog=serialize_ranked_blog(describe_blog(db, blog))
    )


@router.get("/feed")
def blog_feed(
    request: Request,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    principal: Principal | None = Depends(get_optional_principal),
):
    scope = feed_scope_for(db, principal, top_n=settings.feed_top_topics_count)
    items, total = rank_blogs(db, scope, skip=params.skip, limit=params.limit)
    increment_counter(
        "feed_requests_total",
        scope="followed" if isinstance(scope, FollowedTopicsScope) else "top_followed",
    )
    return success_response_payload(
        request,
        **build_paged_response(key="blogs", items=items, total=total, params=params, serializer=serialize_ranked_blog),
    )


@router.get("/{blog_id}")
def get_blog(
    blog_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    blog = blog_service.get_visible_blog(db, blog_id, principal)
    return success_response_payload(request, blog=serialize_ranked_blog(describe_blog(db, blog)))


@router.patch("/{blog_id}/status")
def update_blog_status(
    blog_id: int,
    payload: BlogStatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    blog = blog_service.change_blog_status(db, principal, blog_id, status=payload.status, topic_ids=payload.topic_ids)
    increment_counter("blogs_total", action="status", status=blog.status)
    log_business_event(logger, request, event="blog.status", blog_id=blog.id, status=blog.status)
    return success_response_payload(
        request, message="updated blog status successfully", blog=serialize_ranked_blog(describe_blog(db, blog))
    )


@router.delete("/{blog_id}")
def delete_blog(
    blog_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    blog_service.delete_blog(db, principal, blog_id)
    increment_counter("blogs_total", action="delete")
    log_business_event(logger, request, event="blog.delete", blog_id=blog_id)
    return success_response_payload(request, message="deleted blog successfully")


@router.post("/{blog_id}/like")
def like_blog(
    blog_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    result = blog_service.toggle_blog_like(db, principal, blog_id)
    increment_counter("toggles_total", kind="blog_like", added=str(result.added).lower())
    log_business_event(logger, request, event="blog.like", blog_id=blog_id, added=result.added)
    return toggle_response(
        request,
        added=result.added,
        added_message="liked blog",
        removed_message="removed blog like",
        blog_id=blog_id,
    )


@router.post("/{blog_id}/bookmark")
def bookmark_blog(
    blog_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    result = blog_service.toggle_blog_bookmark(db, principal, blog_id)
    increment_counter("toggles_total", kind="blog_bookmark", added=str(result.added).lower())
    log_business_event(logger, request, event="blog.bookmark", blog_id=blog_id, added=result.added)
    return toggle_response(
        request,
        added=result.added,
        added_message="bookmarked blog",
        removed_message="removed blog bookmark",
        blog_id=blog_id,
    )


@router.get("/{blog_id}/blog-comments")
def blog_comments(
    blog_id: int,
    request: Request,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    items, total = comment_service.list_blog_comments(
        db, blog_id, viewer=principal, skip=params.skip, limit=params.limit
    )
    return success_response_payload(
        request,
        **build_paged_response(
            key="blog_comments", items=items, total=total, params=params, serializer=serialize_comment_view
        ),
    )
