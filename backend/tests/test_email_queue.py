import asyncio
from datetime import timedelta

import pytest

from conftest import FakeMailer
from blog_api.core.mailer import ActivationMail, send_with_retries
from blog_api.core.utils import utc_now_naive
from blog_api.db.models.email_job import (
    EMAIL_JOB_DEAD,
    EMAIL_JOB_PENDING,
    EMAIL_JOB_PROCESSING,
    EMAIL_JOB_SENT,
    EmailJob,
)
from blog_api.services.email_queue import (
    drain_email_queue,
    enqueue_activation_email,
    list_dead_letter_jobs,
    process_next_email_job,
    requeue_dead_letter_job,
)
from blog_api.workers.email_worker import run_email_worker_loop

MAIL = ActivationMail(email="jane@example.com", activation_url="http://client.test/activate-account/abc")


def _enqueue(session_factory, mail=MAIL) -> int:
    with session_factory() as db:
        job = enqueue_activation_email(db, mail)
        db.commit()
        return job.id


def _job(session_factory, job_id) -> EmailJob:
    with session_factory() as db:
        return db.get(EmailJob, job_id)


def test_send_with_retries_returns_successful_attempt():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise OSError("boom")

    assert send_with_retries(flaky, attempts=3) == 2


def test_send_with_retries_reraises_last_error():
    def always_fails():
        raise OSError("down")

    with pytest.raises(OSError, match="down"):
        send_with_retries(always_fails, attempts=3)
    with pytest.raises(ValueError):
        send_with_retries(always_fails, attempts=0)


def test_process_empty_queue(session_factory):
    assert process_next_email_job(session_factory, FakeMailer()) is None


def test_job_is_sent(session_factory):
    job_id = _enqueue(session_factory)
    mailer = FakeMailer()

    outcome = process_next_email_job(session_factory, mailer)

    assert outcome.job_id == job_id
    assert outcome.status == EMAIL_JOB_SENT
    assert outcome.attempts == 1
    assert mailer.sent == [MAIL]
    assert _job(session_factory, job_id).status == EMAIL_JOB_SENT
    assert process_next_email_job(session_factory, mailer) is None


def test_job_retries_before_success(session_factory):
    job_id = _enqueue(session_factory)

    outcome = process_next_email_job(session_factory, FakeMailer(failures=2), max_attempts=3)

    assert outcome.status == EMAIL_JOB_SENT
    assert outcome.attempts == 3
    assert _job(session_factory, job_id).attempts == 3


def test_exhausted_job_goes_to_dead_letter(session_factory):
    job_id = _enqueue(session_factory)
    mailer = FakeMailer(failures=10)

    outcome = process_next_email_job(session_factory, mailer, max_attempts=3)

    assert outcome.status == EMAIL_JOB_DEAD
    assert mailer.calls == 3
    job = _job(session_factory, job_id)
    assert job.status == EMAIL_JOB_DEAD
    assert job.attempts == 3
    assert "smtp unavailable" in job.last_error

    with session_factory() as db:
        assert [j.id for j in list_dead_letter_jobs(db)] == [job_id]
        requeued = requeue_dead_letter_job(db, job_id)
        assert requeued.status == EMAIL_JOB_PENDING
        assert requeue_dead_letter_job(db, job_id) is None

    outcome = process_next_email_job(session_factory, FakeMailer(), max_attempts=3)
    assert outcome.status == EMAIL_JOB_SENT
    assert outcome.attempts == 4


def test_unreadable_payload_goes_straight_to_dead_letter(session_factory):
    with session_factory() as db:
        job = enqueue_activation_email(db, MAIL)
        job.payload_json = {"unexpected": True}
        db.commit()
        job_id = job.id
    mailer = FakeMailer()

    outcome = process_next_email_job(session_factory, mailer)

    assert outcome.status == EMAIL_JOB_DEAD
    assert mailer.calls == 0
    assert _job(session_factory, job_id).last_error.startswith("bad payload")


def test_stale_processing_job_is_reclaimed(session_factory):
    job_id = _enqueue(session_factory)
    with session_factory() as db:
        job = db.get(EmailJob, job_id)
        job.status = EMAIL_JOB_PROCESSING
        job.updated_at = utc_now_naive() - timedelta(minutes=30)
        db.commit()

    outcome = process_next_email_job(session_factory, FakeMailer(), lease_seconds=300)
    assert outcome.job_id == job_id
    assert outcome.status == EMAIL_JOB_SENT


def test_fresh_processing_job_is_left_alone(session_factory):
    job_id = _enqueue(session_factory)
    with session_factory() as db:
        job = db.get(EmailJob, job_id)
        job.status = EMAIL_JOB_PROCESSING
        job.updated_at = utc_now_naive()
        db.commit()

    assert process_next_email_job(session_factory, FakeMailer(), lease_seconds=300) is None


def test_drain_processes_jobs_in_order(session_factory):
    first = _enqueue(session_factory)
    second = _enqueue(session_factory, ActivationMail(email="bob@example.com", activation_url="http://x/y"))

    outcomes = drain_email_queue(session_factory, FakeMailer())

    assert [o.job_id for o in outcomes] == [first, second]


def test_worker_loop_drains_and_stops(session_factory):
    job_id = _enqueue(session_factory)
    mailer = FakeMailer()

    async def _run():
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            run_email_worker_loop(stop_event, session_factory, mailer, poll_interval_seconds=1)
        )
        for _ in range(50):
            if mailer.sent:
                break
            await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=3)

    asyncio.run(_run())

    assert mailer.sent == [MAIL]
    assert _job(session_factory, job_id).status == EMAIL_JOB_SENT


def test_worker_loop_survives_failing_ticks():
    calls = {"n": 0}

    def broken_factory():
        calls["n"] += 1
        raise RuntimeError("database is down")

    async def _run():
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            run_email_worker_loop(stop_event, broken_factory, FakeMailer(), poll_interval_seconds=1)
        )
        for _ in range(50):
            if calls["n"]:
                break
            await asyncio.sleep(0.05)
        stop_event.set()
        await asyncio.wait_for(task, timeout=3)
        return task

    task = asyncio.run(_run())
    assert calls["n"] >= 1
    assert task.exception() is None
