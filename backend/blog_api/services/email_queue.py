import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from blog_api.core.mailer import ActivationMail, send_with_retries
from blog_api.core.metrics import increment_counter
from blog_api.core.utils import utc_now_naive
from blog_api.db.models.email_job import (
    EMAIL_JOB_DEAD,
    EMAIL_JOB_PENDING,
    EMAIL_JOB_PROCESSING,
    EMAIL_JOB_SENT,
    EmailJob,
)
from blog_api.db.session import atomic

logger = logging.getLogger(__name__)

JOB_KIND_ACTIVATION = "activation"


class ActivationSender(Protocol):
    def send_activation_email(self, mail: ActivationMail) -> None: ...


@dataclass
class JobOutcome:
    job_id: int
    status: str
    attempts: int


def enqueue_activation_email(db: Session, mail: ActivationMail) -> EmailJob:
    """Add an activation job to the session; it becomes visible when the caller commits."""
    now = utc_now_naive()
    job = EmailJob(
        kind=JOB_KIND_ACTIVATION,
        recipient=mail.email,
        payload_json=mail.to_payload(),
        status=EMAIL_JOB_PENDING,
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(job)
    db.flush()
    return job


def _claim_next_job(db: Session, *, lease_seconds: int) -> EmailJob | None:
    now = utc_now_naive()
    stale_before = now - timedelta(seconds=lease_seconds)
    stmt = (
        select(EmailJob)
        .where(
            or_(
                EmailJob.status == EMAIL_JOB_PENDING,
                # a worker died mid-delivery; hand the job out again
                (EmailJob.status == EMAIL_JOB_PROCESSING) & (EmailJob.updated_at < stale_before),
            )
        )
        .order_by(EmailJob.created_at.asc(), EmailJob.id.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    with atomic(db):
        job = db.scalars(stmt).first()
        if job is None:
            return None
        job.status = EMAIL_JOB_PROCESSING
        job.updated_at = now
    return job


def _finish_job(db: Session, job: EmailJob, *, status: str, attempts: int, error: str | None) -> None:
    with atomic(db):
        job.status = status
        job.attempts = attempts
        job.last_error = error[:2000] if error else None
        job.updated_at = utc_now_naive()


def process_next_email_job(
    session_factory: Callable[[], Session],
    sender: ActivationSender,
    *,
    max_attempts: int = 3,
    lease_seconds: int = 300,
) -> JobOutcome | None:
    """Deliver one queued email. Returns None when the queue is empty."""
    db = session_factory()
    try:
        job = _claim_next_job(db, lease_seconds=lease_seconds)
        if job is None:
            return None

        try:
            if job.kind != JOB_KIND_ACTIVATION:
                raise ValueError(f"unknown email job kind {job.kind!r}")
            mail = ActivationMail.from_payload(job.payload_json or {})
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Email job id=%s has an unreadable payload, moving to dead letter: %s", job.id, exc)
            _finish_job(db, job, status=EMAIL_JOB_DEAD, attempts=job.attempts, error=f"bad payload: {exc}")
            increment_counter("email_jobs_total", result="dead")
            return JobOutcome(job_id=job.id, status=EMAIL_JOB_DEAD, attempts=job.attempts)

        try:
            used = send_with_retries(
                lambda: sender.send_activation_email(mail),
                attempts=max_attempts,
                label=f"email job id={job.id}",
            )
        except Exception as exc:
            attempts = job.attempts + max_attempts
            logger.error("Email job id=%s exhausted %s attempts, moving to dead letter", job.id, max_attempts)
            _finish_job(db, job, status=EMAIL_JOB_DEAD, attempts=attempts, error=str(exc))
            increment_counter("email_jobs_total", result="dead")
            return JobOutcome(job_id=job.id, status=EMAIL_JOB_DEAD, attempts=attempts)

        attempts = job.attempts + used
        _finish_job(db, job, status=EMAIL_JOB_SENT, attempts=attempts, error=None)
        increment_counter("email_jobs_total", result="sent")
        logger.info("Activation email sent job_id=%s recipient=%s", job.id, mail.email)
        return JobOutcome(job_id=job.id, status=EMAIL_JOB_SENT, attempts=attempts)
    finally:
        db.close()


def drain_email_queue(
    session_factory: Callable[[], Session],
    sender: ActivationSender,
    *,
    max_attempts: int = 3,
    lease_seconds: int = 300,
    limit: int = 100,
) -> list[JobOutcome]:
    outcomes: list[JobOutcome] = []
    while len(outcomes) < limit:
        outcome = process_next_email_job(
            session_factory, sender, max_attempts=max_attempts, lease_seconds=lease_seconds
        )
        if outcome is None:
            break
        outcomes.append(outcome)
    return outcomes


def list_dead_letter_jobs(db: Session, *, limit: int = 100) -> list[EmailJob]:
    stmt = (
        select(EmailJob)
        .where(EmailJob.status == EMAIL_JOB_DEAD)
        .order_by(EmailJob.updated_at.desc(), EmailJob.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def requeue_dead_letter_job(db: Session, job_id: int) -> EmailJob | None:
    job = db.get(EmailJob, job_id)
    if job is None or job.status != EMAIL_JOB_DEAD:
        return None
    with atomic(db):
        job.status = EMAIL_JOB_PENDING
        job.last_error = None
        job.updated_at = utc_now_naive()
    return job
