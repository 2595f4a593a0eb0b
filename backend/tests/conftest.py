from collections.abc import Generator

import pytest
from sqlalchemy.orm import Session

from blog_api.core.mailer import ActivationMail
from blog_api.core.security import Principal
from blog_api.db import models  # noqa: F401
from blog_api.db.base import Base
from blog_api.db.models.topic import Topic
from blog_api.db.models.user import ROLE_USER, User
from blog_api.db.session import build_engine, build_session_factory


class FakeMailer:
    """Records activation mails; fails the first ``failures`` sends."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.sent: list[ActivationMail] = []

    def send_activation_email(self, mail: ActivationMail) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("smtp unavailable")
        self.sent.append(mail)


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    try:
        yield build_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(email: str | None = None, *, role: str = ROLE_USER, is_verified: bool = True) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@test.local",
            hashed_password="x",
            role=role,
            is_verified=is_verified,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_topic(db_session):
    def _make_topic(name: str) -> Topic:
        topic = Topic(name=name)
        db_session.add(topic)
        db_session.commit()
        return topic

    return _make_topic


def as_principal(user: User) -> Principal:
    return Principal(user_id=user.id, role=user.role)
