import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from blog_api.core.api_response import success_response_payload, toggle_response
from blog_api.core.metrics import increment_counter
from blog_api.core.observability import log_business_event
from blog_api.core.paging import PageParams, build_paged_response, page_params
from blog_api.core.security import Principal, get_current_principal, get_optional_principal
from blog_api.db.models.blog_comment import BlogComment
from blog_api.db.models.user import User
from blog_api.db.session import get_db
from blog_api.schemas.blog import CommentCreate, CommentUpdate
from blog_api.services import comments as comment_service
from blog_api.services.comments import CommentView

router = APIRouter(prefix="/blog-comment", tags=["comments"])
logger = logging.getLogger(__name__)


def serialize_author(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "username": user.username,
        "name": user.name,
        "profile_img": user.profile_img,
    }


def serialize_comment(comment: BlogComment) -> dict:
    return {
        "id": comment.id,
        "comment": comment.content,
        "blog_id": comment.blog_id,
        "parent_comment_id": comment.parent_comment_id,
        "author": serialize_author(comment.author),
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "updated_at": comment.updated_at.isoformat() if comment.updated_at else None,
    }


def serialize_comment_view(view: CommentView) -> dict:
    payload = serialize_comment(view.comment)
    payload["like_count"] = view.like_count
    payload["reply_count"] = view.reply_count
    return payload


@router.post("", status_code=status.HTTP_201_CREATED)
def create_comment(
    payload: CommentCreate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    comment = comment_service.create_comment(
        db,
        principal,
        blog_id=payload.blog_id,
        content=payload.comment,
        parent_comment_id=payload.parent_comment_id,
    )
    increment_counter("comments_total", action="create")
    log_business_event(
        logger,
        request,
        event="comment.create",
        comment_id=comment.id,
        blog_id=comment.blog_id,
        parent_comment_id=comment.parent_comment_id,
    )
    return success_response_payload(
        request, message="created blog comment successfully", blog_comment=serialize_comment(comment)
    )


@router.put("/{comment_id}")
def update_comment(
    comment_id: int,
    payload: CommentUpdate,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    comment = comment_service.update_comment(db, principal, comment_id, content=payload.comment)
    increment_counter("comments_total", action="update")
    log_business_event(logger, request, event="comment.update", comment_id=comment.id)
    return success_response_payload(
        request, message="updated blog comment successfully", blog_comment=serialize_comment(comment)
    )


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    comment_service.delete_comment(db, principal, comment_id)
    increment_counter("comments_total", action="delete")
    log_business_event(logger, request, event="comment.delete", comment_id=comment_id)
    return success_response_payload(request, message="deleted blog comment successfully")


@router.post("/{comment_id}/like")
def like_comment(
    comment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    result = comment_service.toggle_comment_like(db, principal, comment_id)
    increment_counter("toggles_total", kind="comment_like", added=str(result.added).lower())
    log_business_event(
        logger, request, event="comment.like", comment_id=comment_id, user_id=principal.user_id, added=result.added
    )
    return toggle_response(
        request,
        added=result.added,
        added_message="liked blog comment",
        removed_message="removed blog comment like",
        comment_id=comment_id,
    )


@router.get("/{comment_id}/comments")
def list_replies(
    comment_id: int,
    request: Request,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    items, total = comment_service.list_comment_replies(
        db, comment_id, viewer=principal, skip=params.skip, limit=params.limit
    )
    return success_response_payload(
        request,
        **build_paged_response(
            key="blog_comments", items=items, total=total, params=params, serializer=serialize_comment_view
        ),
    )
