import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


def _parse_origins(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass(frozen=True)
class Settings:
    secret_key: str
    database_url: str = "sqlite:///./blog.db"
    environment: str = "development"
    client_url: str = "http://localhost:5173"
    session_expire_days: int = 2
    invitation_expire_minutes: int = 15

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_use_tls: bool = True

    email_delivery: str = "inline"
    email_worker_enabled: bool = False
    email_max_attempts: int = 3
    email_poll_interval_seconds: int = 5
    email_job_lease_seconds: int = 300

    feed_top_topics_count: int = 5

    db_statement_timeout_ms: int = 5000
    db_pool_timeout_seconds: int = 10

    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        secret = os.getenv("SECRET_KEY")
        if not secret:
            raise RuntimeError("SECRET_KEY is not set")

        email_delivery = os.getenv("EMAIL_DELIVERY", "inline").strip().lower()
        if email_delivery not in {"inline", "queue"}:
            raise RuntimeError(f"EMAIL_DELIVERY must be 'inline' or 'queue', got {email_delivery!r}")

        return cls(
            secret_key=secret,
            database_url=os.getenv("DATABASE_URL", "sqlite:///./blog.db"),
            environment=os.getenv("APP_ENV", "development").strip().lower(),
            client_url=os.getenv("CLIENT_URL", "http://localhost:5173").rstrip("/"),
            session_expire_days=_env_int("SESSION_EXPIRE_DAYS", 2),
            invitation_expire_minutes=_env_int("INVITATION_EXPIRE_MINUTES", 15),
            smtp_host=os.getenv("SMTP_HOST"),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER"),
            smtp_password=os.getenv("SMTP_PASSWORD"),
            smtp_from=os.getenv("SMTP_FROM") or os.getenv("SMTP_USER"),
            smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
            email_delivery=email_delivery,
            email_worker_enabled=_env_bool("EMAIL_WORKER_ENABLED", email_delivery == "queue"),
            email_max_attempts=max(1, _env_int("EMAIL_MAX_ATTEMPTS", 3)),
            email_poll_interval_seconds=max(1, _env_int("EMAIL_POLL_INTERVAL_SECONDS", 5)),
            email_job_lease_seconds=max(30, _env_int("EMAIL_JOB_LEASE_SECONDS", 300)),
            feed_top_topics_count=max(1, _env_int("FEED_TOP_TOPICS_COUNT", 5)),
            db_statement_timeout_ms=_env_int("DB_STATEMENT_TIMEOUT_MS", 5000),
            db_pool_timeout_seconds=_env_int("DB_POOL_TIMEOUT_SECONDS", 10),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=_parse_origins(os.getenv("CORS_ORIGINS", "http://localhost:5173")),
        )
