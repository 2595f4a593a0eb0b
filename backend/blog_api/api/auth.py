import logging

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from blog_api.core.api_response import success_response_payload
from blog_api.core.mailer import Mailer
from blog_api.core.metrics import increment_counter
from blog_api.core.observability import log_business_event
from blog_api.core.security import (
    Principal,
    SessionTokenCodec,
    clear_auth_cookie,
    get_current_principal,
    get_settings,
    get_token_codec,
    set_auth_cookie,
)
from blog_api.core.settings import Settings
from blog_api.db.models.user import User
from blog_api.db.session import get_db
from blog_api.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class CredentialsIn(BaseModel):
    email: str
    password: str


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "name": user.name,
        "profile_img": user.profile_img,
        "role": user.role,
        "is_verified": user.is_verified,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _start_session(response: Response, user: User, settings: Settings, codec: SessionTokenCodec) -> None:
    set_auth_cookie(response, codec.issue(user.id), settings, codec)


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    payload: CredentialsIn,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
):
    increment_counter("auth_register_total")
    registration = auth_service.register_user(
        db,
        settings,
        mailer,
        email=payload.email,
        password=payload.password,
    )
    log_business_event(
        logger,
        request,
        event="auth.register",
        user_id=registration.user.id,
        delivery=registration.delivery,
    )
    return success_response_payload(request, message="registered user successfully")


@router.put("/activate/{token}")
def activate(
    token: str,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    codec: SessionTokenCodec = Depends(get_token_codec),
):
    increment_counter("auth_activate_total")
    user = auth_service.activate_user(db, token)
    _start_session(response, user, settings, codec)
    log_business_event(logger, request, event="auth.activate", user_id=user.id)
    return success_response_payload(request, message="activated user successfully", user=serialize_user(user))


@router.post("/login")
def login(
    payload: CredentialsIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    codec: SessionTokenCodec = Depends(get_token_codec),
):
    increment_counter("auth_login_total")
    try:
        user = auth_service.login_user(db, email=payload.email, password=payload.password)
    except Exception:
        increment_counter("auth_login_result_total", result="failed")
        raise
    _start_session(response, user, settings, codec)
    increment_counter("auth_login_result_total", result="success")
    log_business_event(logger, request, event="auth.login", user_id=user.id)
    return success_response_payload(request, message="logged in user successfully", user=serialize_user(user))


@router.post("/logout")
def logout(request: Request, response: Response, settings: Settings = Depends(get_settings)):
    clear_auth_cookie(response, settings)
    return success_response_payload(request, message="logged out user successfully")


@router.get("/user")
def current_user(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    user = auth_service.get_user(db, principal.user_id)
    return success_response_payload(request, user=serialize_user(user))
