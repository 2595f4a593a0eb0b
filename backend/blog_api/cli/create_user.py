"""Seed a verified account without going through the activation email.

    blog-create-user --email admin@example.com --password 'Secret1!' --admin
"""

import argparse
import logging
import sys

from blog_api.core.errors import ServiceError
from blog_api.core.observability import configure_logging
from blog_api.core.settings import Settings
from blog_api.db.models.user import ROLE_ADMIN, ROLE_USER
from blog_api.db.session import build_engine, build_session_factory
from blog_api.services.auth import create_verified_user

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blog-create-user", description="Create a verified user.")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--admin", action="store_true", help="grant the admin role")
    parser.add_argument("--database-url", help="defaults to DATABASE_URL")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    engine = build_engine(args.database_url or settings.database_url)
    db = build_session_factory(engine)()
    try:
        user = create_verified_user(
            db,
            email=args.email,
            password=args.password,
            role=ROLE_ADMIN if args.admin else ROLE_USER,
        )
    except ServiceError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
        engine.dispose()

    logger.info("Created user id=%s email=%s role=%s", user.id, user.email, user.role)
    print(f"created user id={user.id} email={user.email} role={user.role}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
