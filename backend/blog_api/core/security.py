import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from blog_api.core.settings import Settings
from blog_api.db.models.user import ROLE_ADMIN, User
from blog_api.db.session import get_db

ALGORITHM = "HS256"
AUTH_COOKIE_NAME = "auth_token"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def generate_invitation_token() -> tuple[str, str]:
    """Return ``(plain_token, token_hash)``; only the hash is ever persisted."""
    plain = secrets.token_bytes(32).hex()
    return plain, hash_invitation_token(plain)


def hash_invitation_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class InvalidSessionToken(Exception):
    pass


class SessionTokenCodec:
    """Signs and verifies session tokens with a key handed in at startup."""

    def __init__(self, secret_key: str, expire_days: int = 2):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.expire_days = expire_days

    @property
    def max_age_seconds(self) -> int:
        return self.expire_days * 24 * 60 * 60

    def issue(self, user_id: int, *, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        claims = {
            "sub": str(user_id),
            "exp": issued_at + timedelta(days=self.expire_days),
        }
        return jwt.encode(claims, self._secret_key, algorithm=ALGORITHM)

    def decode(self, token: str) -> int:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM])
        except JWTError as exc:
            raise InvalidSessionToken(str(exc)) from exc
        subject = payload.get("sub")
        try:
            return int(subject)
        except (TypeError, ValueError) as exc:
            raise InvalidSessionToken("token subject is not a user id") from exc


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_codec(request: Request) -> SessionTokenCodec:
    return request.app.state.token_codec


def set_auth_cookie(response: Response, token: str, settings: Settings, codec: SessionTokenCodec) -> None:
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        max_age=codec.max_age_seconds,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def clear_auth_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def _resolve_principal(db: Session, codec: SessionTokenCodec, token: str | None) -> Principal | None:
    if not token:
        return None
    try:
        user_id = codec.decode(token)
    except InvalidSessionToken:
        return None
    user = db.get(User, user_id)
    if not user or not user.is_verified:
        return None
    return Principal(user_id=user.id, role=user.role)


def get_current_principal(
    request: Request,
    db: Session = Depends(get_db),
    codec: SessionTokenCodec = Depends(get_token_codec),
) -> Principal:
    principal = _resolve_principal(db, codec, request.cookies.get(AUTH_COOKIE_NAME))
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return principal


def get_optional_principal(
    request: Request,
    db: Session = Depends(get_db),
    codec: SessionTokenCodec = Depends(get_token_codec),
) -> Principal | None:
    return _resolve_principal(db, codec, request.cookies.get(AUTH_COOKIE_NAME))


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="user does not have admin role",
        )
    return principal
