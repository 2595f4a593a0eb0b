from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from conftest import FakeMailer
from blog_api.core.errors import InternalError, NotFoundError, ValidationError
from blog_api.core.security import InvalidSessionToken, SessionTokenCodec, hash_invitation_token
from blog_api.core.settings import Settings
from blog_api.db.models.email_job import EMAIL_JOB_PENDING, EmailJob
from blog_api.db.models.invitation import UserInvitation
from blog_api.db.models.user import User
from blog_api.services.auth import activate_user, create_verified_user, login_user, register_user

PASSWORD = "Secret1!"


def _settings(**overrides) -> Settings:
    return Settings(secret_key="test-secret", client_url="http://client.test", **overrides)


def _token_from(mail) -> str:
    return mail.activation_url.rsplit("/", 1)[-1]


def test_register_creates_unverified_user_and_sends_activation_mail(db_session):
    mailer = FakeMailer()
    registration = register_user(db_session, _settings(), mailer, email=" Jane@Example.com ", password=PASSWORD)

    assert registration.delivery == "sent"
    user = registration.user
    assert user.email == "jane@example.com"
    assert user.is_verified is False
    assert user.hashed_password != PASSWORD

    assert len(mailer.sent) == 1
    mail = mailer.sent[0]
    assert mail.email == "jane@example.com"
    assert mail.activation_url.startswith("http://client.test/activate-account/")

    invitation = db_session.scalars(select(UserInvitation).where(UserInvitation.user_id == user.id)).one()
    token = _token_from(mail)
    assert len(token) == 64
    assert invitation.token_hash == hash_invitation_token(token)
    assert invitation.token_hash != token


def test_register_rejects_weak_password_and_bad_email(db_session):
    with pytest.raises(ValidationError, match="weak password"):
        register_user(db_session, _settings(), FakeMailer(), email="jane@example.com", password="secret")
    with pytest.raises(ValidationError, match="invalid email"):
        register_user(db_session, _settings(), FakeMailer(), email="jane@example", password=PASSWORD)
    with pytest.raises(ValidationError, match="email and password are required"):
        register_user(db_session, _settings(), FakeMailer(), email=" ", password=PASSWORD)


def test_register_retries_inline_send(db_session):
    mailer = FakeMailer(failures=2)
    registration = register_user(db_session, _settings(), mailer, email="jane@example.com", password=PASSWORD)

    assert registration.delivery == "sent"
    assert mailer.calls == 3
    assert len(mailer.sent) == 1


def test_register_send_failure_is_internal_error_but_keeps_user(db_session):
    mailer = FakeMailer(failures=3)
    with pytest.raises(InternalError, match="internal server error"):
        register_user(db_session, _settings(), mailer, email="jane@example.com", password=PASSWORD)

    assert mailer.calls == 3
    user = db_session.scalars(select(User).where(User.email == "jane@example.com")).one()
    assert user.is_verified is False
    assert db_session.scalars(select(UserInvitation).where(UserInvitation.user_id == user.id)).first() is not None


def test_register_in_queue_mode_enqueues_job_without_sending(db_session):
    mailer = FakeMailer()
    registration = register_user(
        db_session, _settings(email_delivery="queue"), mailer, email="jane@example.com", password=PASSWORD
    )

    assert registration.delivery == "queued"
    assert mailer.calls == 0
    job = db_session.scalars(select(EmailJob)).one()
    assert job.status == EMAIL_JOB_PENDING
    assert job.recipient == "jane@example.com"
    assert job.payload_json["activation_url"].startswith("http://client.test/activate-account/")


def test_register_existing_verified_user_fails(db_session):
    create_verified_user(db_session, email="jane@example.com", password=PASSWORD)
    with pytest.raises(ValidationError, match="user already exists"):
        register_user(db_session, _settings(), FakeMailer(), email="jane@example.com", password=PASSWORD)


def test_reregistering_unverified_user_replaces_invitation(db_session):
    mailer = FakeMailer()
    first = register_user(db_session, _settings(), mailer, email="jane@example.com", password=PASSWORD)
    second = register_user(db_session, _settings(), mailer, email="jane@example.com", password="Other2@")

    assert first.user.id == second.user.id
    invitations = db_session.scalars(select(UserInvitation).where(UserInvitation.user_id == first.user.id)).all()
    assert len(invitations) == 1

    old_token, new_token = _token_from(mailer.sent[0]), _token_from(mailer.sent[1])
    with pytest.raises(NotFoundError):
        activate_user(db_session, old_token)
    assert activate_user(db_session, new_token).is_verified is True
    assert login_user(db_session, email="jane@example.com", password="Other2@").id == first.user.id


def test_activation_token_is_single_use(db_session):
    mailer = FakeMailer()
    registration = register_user(db_session, _settings(), mailer, email="jane@example.com", password=PASSWORD)
    token = _token_from(mailer.sent[0])

    user = activate_user(db_session, token)
    assert user.id == registration.user.id
    assert user.is_verified is True
    assert db_session.scalars(select(UserInvitation)).first() is None

    with pytest.raises(NotFoundError, match="invalid or expired activation token"):
        activate_user(db_session, token)


def test_expired_activation_token_fails(db_session):
    mailer = FakeMailer()
    register_user(db_session, _settings(), mailer, email="jane@example.com", password=PASSWORD)
    invitation = db_session.scalars(select(UserInvitation)).one()
    invitation.expires_at = datetime(2000, 1, 1)
    db_session.commit()

    with pytest.raises(NotFoundError, match="invalid or expired activation token"):
        activate_user(db_session, _token_from(mailer.sent[0]))
    user = db_session.scalars(select(User)).one()
    assert user.is_verified is False


def test_login_requires_verified_user_and_matching_password(db_session):
    mailer = FakeMailer()
    register_user(db_session, _settings(), mailer, email="jane@example.com", password=PASSWORD)
    with pytest.raises(ValidationError, match="invalid email or password"):
        login_user(db_session, email="jane@example.com", password=PASSWORD)

    activate_user(db_session, _token_from(mailer.sent[0]))
    assert login_user(db_session, email="JANE@example.com", password=PASSWORD).email == "jane@example.com"
    with pytest.raises(ValidationError, match="invalid email or password"):
        login_user(db_session, email="jane@example.com", password="Wrong1!")


def test_session_token_codec_roundtrip_and_rejections():
    codec = SessionTokenCodec("key-one", expire_days=2)
    token = codec.issue(42)
    assert codec.decode(token) == 42

    with pytest.raises(InvalidSessionToken):
        SessionTokenCodec("key-two").decode(token)

    stale = codec.issue(42, now=datetime.now(timezone.utc) - timedelta(days=3))
    with pytest.raises(InvalidSessionToken):
        codec.decode(stale)

    assert codec.max_age_seconds == 2 * 24 * 60 * 60


def test_session_token_codec_requires_key():
    with pytest.raises(ValueError):
        SessionTokenCodec("")
