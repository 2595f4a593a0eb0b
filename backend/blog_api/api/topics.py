import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from blog_api.api.blogs import serialize_ranked_blog
from blog_api.core.api_response import success_response_payload, toggle_response
from blog_api.core.metrics import increment_counter
from blog_api.core.observability import log_business_event
from blog_api.core.paging import PageParams, build_paged_response, page_params
from blog_api.core.security import Principal, get_current_principal, require_admin
from blog_api.db.models.topic import Topic
from blog_api.db.session import get_db
from blog_api.services import topics as topic_service
from blog_api.services.feed import TopicScope, rank_blogs

router = APIRouter(prefix="/topic", tags=["topics"])
logger = logging.getLogger(__name__)


class TopicIn(BaseModel):
    name: str


def serialize_topic(topic: Topic) -> dict:
    return {
        "id": topic.id,
        "name": topic.name,
        "created_at": topic.created_at.isoformat() if topic.created_at else None,
        "updated_at": topic.updated_at.isoformat() if topic.updated_at else None,
    }


@router.get("")
def list_topics(
    request: Request,
    search: str | None = None,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
):
    items, total = topic_service.list_topics(db, search=search, skip=params.skip, limit=params.limit)
    return success_response_payload(
        request,
        **build_paged_response(key="topics", items=items, total=total, params=params, serializer=serialize_topic),
    )


@router.post("", status_code=201)
def create_topic(
    payload: TopicIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    topic = topic_service.create_topic(db, payload.name)
    log_business_event(logger, request, event="topic.create", topic_id=topic.id, admin_id=admin.user_id)
    return success_response_payload(request, message="created topic successfully", topic=serialize_topic(topic))


@router.put("/{topic_id}")
def update_topic(
    topic_id: int,
    payload: TopicIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    topic = topic_service.update_topic(db, topic_id, payload.name)
    log_business_event(logger, request, event="topic.update", topic_id=topic.id, admin_id=admin.user_id)
    return success_response_payload(request, message="updated topic successfully", topic=serialize_topic(topic))


@router.delete("/{topic_id}")
def delete_topic(
    topic_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    topic_service.delete_topic(db, topic_id)
    log_business_event(logger, request, event="topic.delete", topic_id=topic_id, admin_id=admin.user_id)
    return success_response_payload(request, message="deleted topic successfully")


@router.get("/{topic_id}/blogs")
def topic_blogs(
    topic_id: int,
    request: Request,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
):
    topic_service.get_topic(db, topic_id)
    items, total = rank_blogs(db, TopicScope(topic_id=topic_id), skip=params.skip, limit=params.limit)
    increment_counter("feed_requests_total", scope="topic")
    return success_response_payload(
        request,
        **build_paged_response(key="blogs", items=items, total=total, params=params, serializer=serialize_ranked_blog),
    )


@router.post("/{topic_id}/follow")
def follow_topic(
    topic_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    result = topic_service.toggle_topic_follow(db, principal, topic_id)
    increment_counter("toggles_total", kind="topic_follow", added=str(result.added).lower())
    log_business_event(
        logger, request, event="topic.follow", topic_id=topic_id, user_id=principal.user_id, added=result.added
    )
    return toggle_response(
        request,
        added=result.added,
        added_message="followed topic",
        removed_message="unfollowed topic",
        topic_id=topic_id,
    )
