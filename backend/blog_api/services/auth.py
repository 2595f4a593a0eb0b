import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from blog_api.core.errors import InternalError, NotFoundError, ValidationError
from blog_api.core.mailer import ActivationMail, build_activation_url, send_with_retries
from blog_api.core.security import (
    generate_invitation_token,
    hash_invitation_token,
    hash_password,
    verify_password,
)
from blog_api.core.settings import Settings
from blog_api.core.utils import normalize_email, utc_now_naive
from blog_api.core.validators import is_password_strong, is_valid_email
from blog_api.db.models.invitation import UserInvitation
from blog_api.db.models.user import ROLE_USER, User
from blog_api.db.session import atomic
from blog_api.services.email_queue import ActivationSender, enqueue_activation_email

logger = logging.getLogger(__name__)


@dataclass
class Registration:
    user: User
    delivery: str


def _clean_credentials(email: str, password: str) -> tuple[str, str]:
    clean_email = normalize_email(email)
    clean_password = password.strip()
    if not clean_email or not clean_password:
        raise ValidationError("email and password are required")
    return clean_email, clean_password


def validate_new_credentials(email: str, password: str) -> tuple[str, str]:
    clean_email, clean_password = _clean_credentials(email, password)
    if not is_password_strong(clean_password):
        raise ValidationError("weak password")
    if not is_valid_email(clean_email):
        raise ValidationError("invalid email")
    return clean_email, clean_password


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("user does not exist")
    return user


def register_user(
    db: Session,
    settings: Settings,
    sender: ActivationSender,
    *,
    email: str,
    password: str,
) -> Registration:
    """Create an unverified user with a fresh invitation and get the activation mail out.

    An existing unverified account for the same email is re-armed: its password
    and invitation are replaced, which doubles as "resend activation email".
    """
    clean_email, clean_password = validate_new_credentials(email, password)

    existing = db.scalars(select(User).where(User.email == clean_email)).first()
    if existing is not None and existing.is_verified:
        raise ValidationError("user already exists")

    hashed = hash_password(clean_password)
    plain_token, token_hash = generate_invitation_token()
    expires_at = utc_now_naive() + timedelta(minutes=settings.invitation_expire_minutes)
    mail = ActivationMail(
        email=clean_email,
        activation_url=build_activation_url(settings.client_url, plain_token),
    )
    queued = settings.email_delivery == "queue"

    with atomic(db):
        if existing is None:
            user = User(email=clean_email, hashed_password=hashed, is_verified=False, role=ROLE_USER)
            db.add(user)
            db.flush()
        else:
            user = existing
            user.hashed_password = hashed
            db.execute(delete(UserInvitation).where(UserInvitation.user_id == user.id))
        db.add(UserInvitation(token_hash=token_hash, user_id=user.id, expires_at=expires_at))
        if queued:
            enqueue_activation_email(db, mail)

    if queued:
        return Registration(user=user, delivery="queued")

    # The user and invitation stay committed even if every attempt fails.
    try:
        send_with_retries(
            lambda: sender.send_activation_email(mail),
            attempts=settings.email_max_attempts,
            label=f"activation email user_id={user.id}",
        )
    except Exception as exc:
        logger.error("Failed to send activation email user_id=%s: %s", user.id, exc)
        raise InternalError("internal server error") from exc
    return Registration(user=user, delivery="sent")


def activate_user(db: Session, token: str) -> User:
    """Consume an invitation token: verify the user and delete the token in one unit."""
    token_hash = hash_invitation_token(token.strip())
    now = utc_now_naive()

    with atomic(db):
        invitation = db.scalars(
            select(UserInvitation).where(
                UserInvitation.token_hash == token_hash,
                UserInvitation.expires_at > now,
            )
        ).first()
        if invitation is None:
            raise NotFoundError("invalid or expired activation token")

        user = db.get(User, invitation.user_id)
        if user is None:
            raise NotFoundError("invalid or expired activation token")
        user.is_verified = True
        db.delete(invitation)
    return user


def login_user(db: Session, *, email: str, password: str) -> User:
    clean_email, clean_password = _clean_credentials(email, password)
    user = db.scalars(select(User).where(User.email == clean_email, User.is_verified.is_(True))).first()
    if user is None or not verify_password(clean_password, user.hashed_password):
        raise ValidationError("invalid email or password")
    return user


def create_verified_user(db: Session, *, email: str, password: str, role: str = ROLE_USER) -> User:
    clean_email, clean_password = validate_new_credentials(email, password)
    if db.scalars(select(User).where(User.email == clean_email)).first() is not None:
        raise ValidationError("user already exists")
    with atomic(db):
        user = User(
            email=clean_email,
            hashed_password=hash_password(clean_password),
            is_verified=True,
            role=role,
        )
        db.add(user)
    return user
