import asyncio
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from blog_api.api.admin import router as admin_router
from blog_api.api.auth import router as auth_router
from blog_api.api.blogs import router as blogs_router
from blog_api.api.comments import router as comments_router
from blog_api.api.topics import router as topics_router
from blog_api.core.api_response import error_response_payload, get_request_id, success_response_payload
from blog_api.core.errors import ServiceError
from blog_api.core.mailer import Mailer
from blog_api.core.metrics import increment_counter, prometheus_text, snapshot_metrics
from blog_api.core.observability import configure_logging
from blog_api.core.security import Principal, SessionTokenCodec, require_admin
from blog_api.core.settings import Settings
from blog_api.db.session import build_engine, build_session_factory
from blog_api.services.email_queue import ActivationSender
from blog_api.workers.email_worker import run_email_worker_loop

logger = logging.getLogger(__name__)


def _count_error(request: Request, code: int) -> None:
    increment_counter(
        "http_errors_total",
        code=str(code),
        path=request.url.path,
        method=request.method.upper(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    worker_stop_event: asyncio.Event | None = None
    worker_task: asyncio.Task | None = None
    if settings.email_worker_enabled:
        worker_stop_event = asyncio.Event()
        worker_task = asyncio.create_task(
            run_email_worker_loop(
                worker_stop_event,
                app.state.session_factory,
                app.state.mailer,
                max_attempts=settings.email_max_attempts,
                lease_seconds=settings.email_job_lease_seconds,
                poll_interval_seconds=settings.email_poll_interval_seconds,
            )
        )

    yield

    if worker_stop_event is not None:
        worker_stop_event.set()
    if worker_task is not None:
        try:
            await asyncio.wait_for(worker_task, timeout=3)
        except asyncio.TimeoutError:
            worker_task.cancel()
    app.state.engine.dispose()


def create_app(settings: Settings | None = None, *, mailer: ActivationSender | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(title="Blog API", lifespan=lifespan)
    engine = build_engine(
        settings.database_url,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        pool_timeout_seconds=settings.db_pool_timeout_seconds,
    )
    app.state.settings = settings
    app.state.token_codec = SessionTokenCodec(settings.secret_key, expire_days=settings.session_expire_days)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.mailer = mailer or Mailer.from_settings(settings)

    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(blogs_router)
    app.include_router(comments_router)
    app.include_router(topics_router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        started_at = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started_at) * 1000
        response.headers["X-Request-ID"] = request_id
        if request.url.path not in {"/metrics", "/metrics/prometheus"}:
            increment_counter(
                "http_requests_total",
                method=request.method.upper(),
                path=request.url.path,
                status=str(response.status_code),
            )
        logger.info(
            "http_request request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        _count_error(request, exc.status_code)
        if exc.status_code >= 500:
            logger.error(
                "Service error request_id=%s message=%s", get_request_id(request), exc.message, exc_info=exc
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response_payload(request, message=exc.message),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        message = detail if isinstance(detail, str) else "request failed"
        _count_error(request, exc.status_code)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response_payload(request, message=message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        _count_error(request, 400)
        return JSONResponse(
            status_code=400,
            content=error_response_payload(
                request,
                message="invalid request body",
                details=[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()],
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        _count_error(request, 500)
        logger.exception("Unhandled error request_id=%s", get_request_id(request), exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=error_response_payload(request, message="internal server error"),
        )

    @app.get("/health")
    def health(request: Request):
        return {"success": True, "status": "ok", "request_id": get_request_id(request)}

    @app.get("/metrics")
    def metrics(request: Request, _: Principal = Depends(require_admin)):
        return success_response_payload(request, counters=snapshot_metrics())

    @app.get("/metrics/prometheus")
    def metrics_prometheus():
        return PlainTextResponse(content=prometheus_text(), media_type="text/plain; version=0.0.4; charset=utf-8")

    return app
