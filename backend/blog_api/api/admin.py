import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from blog_api.core.api_response import success_response_payload
from blog_api.core.errors import NotFoundError
from blog_api.core.metrics import increment_counter
from blog_api.core.observability import log_business_event
from blog_api.core.security import Principal, require_admin
from blog_api.db.models.email_job import EmailJob
from blog_api.db.session import get_db
from blog_api.services.email_queue import list_dead_letter_jobs, requeue_dead_letter_job

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


def _serialize_email_job(job: EmailJob) -> dict:
    return {
        "id": job.id,
        "kind": job.kind,
        "recipient": job.recipient,
        "status": job.status,
        "attempts": job.attempts,
        "last_error": job.last_error,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
    }


@router.get("/email-jobs/dead")
def dead_email_jobs(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _admin: Principal = Depends(require_admin),
):
    jobs = list_dead_letter_jobs(db, limit=limit)
    return success_response_payload(request, email_jobs=[_serialize_email_job(j) for j in jobs])


@router.post("/email-jobs/{job_id}/requeue")
def requeue_email_job(
    job_id: int,
    request: Request,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    job = requeue_dead_letter_job(db, job_id)
    if job is None:
        raise NotFoundError("dead email job not found")
    increment_counter("email_jobs_total", result="requeued")
    log_business_event(logger, request, event="email_job.requeue", job_id=job.id, admin_id=admin.user_id)
    return success_response_payload(
        request, message="requeued email job successfully", email_job=_serialize_email_job(job)
    )
