import asyncio
import logging
import signal
from collections.abc import Callable

from sqlalchemy.orm import Session

from blog_api.core.mailer import Mailer
from blog_api.core.metrics import increment_counter
from blog_api.core.observability import configure_logging
from blog_api.core.settings import Settings
from blog_api.db.session import build_engine, build_session_factory
from blog_api.services.email_queue import ActivationSender, drain_email_queue

logger = logging.getLogger(__name__)


async def run_email_worker_loop(
    stop_event: asyncio.Event,
    session_factory: Callable[[], Session],
    sender: ActivationSender,
    *,
    max_attempts: int = 3,
    lease_seconds: int = 300,
    poll_interval_seconds: int = 5,
) -> None:
    """Drain the email queue until ``stop_event`` is set. Failures are logged, never raised."""
    logger.info("Email worker started poll_interval_seconds=%s", poll_interval_seconds)
    while not stop_event.is_set():
        try:
            outcomes = await asyncio.to_thread(
                drain_email_queue,
                session_factory,
                sender,
                max_attempts=max_attempts,
                lease_seconds=lease_seconds,
            )
            if outcomes:
                logger.info(
                    "Email worker tick processed=%s statuses=%s",
                    len(outcomes),
                    ",".join(o.status for o in outcomes),
                )
        except Exception:
            increment_counter("email_worker_errors_total")
            logger.exception("Email worker tick failed")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=poll_interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("Email worker stopped")


async def _serve(settings: Settings) -> None:
    engine = build_engine(
        settings.database_url,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        pool_timeout_seconds=settings.db_pool_timeout_seconds,
    )
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # not available on Windows event loops
            pass
    try:
        await run_email_worker_loop(
            stop_event,
            build_session_factory(engine),
            Mailer.from_settings(settings),
            max_attempts=settings.email_max_attempts,
            lease_seconds=settings.email_job_lease_seconds,
            poll_interval_seconds=settings.email_poll_interval_seconds,
        )
    finally:
        engine.dispose()


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    asyncio.run(_serve(settings))


if __name__ == "__main__":
    main()
