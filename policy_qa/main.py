# policy_qa/main.py
"""
HTTP entry point.

Run with ``uvicorn policy_qa.main:app``.
"""

from contextlib import asynccontextmanager
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from policy_qa.api.routes import router
from policy_qa.errors import PolicyQAError
from policy_qa.observability.logger import (
    get_logger,
    log_request_complete,
    log_request_error,
    log_request_start,
    setup_logging,
)
from policy_qa.observability.metrics import metrics_tracker
from policy_qa.observability.posthog_client import posthog_client

# logging is configured before anything else logs
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    to_file=os.getenv("LOG_TO_FILE", "true").lower() == "true",
)
logger = get_logger(__name__)

API_VERSION = "1.0.0"
REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI):

    logger.info("Policy Q&A API starting", extra={"version": API_VERSION})

    if not os.getenv("OPENAI_API_KEY"):
        logger.warning(
            "OPENAI_API_KEY not set; embedding and generation calls will fail"
        )

    yield

    posthog_client.shutdown()

    logger.info("Policy Q&A API stopped")


app = FastAPI(
    title="Policy Q&A API",
    description="Questions over insurance policies, with expert-verified overrides",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def track_requests(request: Request, call_next):
    """Request id, start/finish logs and request metrics for every call."""

    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    log_request_start(
        logger,
        request_id,
        "http",
        method=request.method,
        path=request.url.path,
    )

    started = time.time()

    try:
        response = await call_next(request)

    except Exception as e:
        metrics_tracker.record_failure()
        log_request_error(logger, request_id, "http", e, path=request.url.path)
        raise

    latency = time.time() - started

    # 4xx is the caller's problem, not a failed request
    if response.status_code >= 500:
        metrics_tracker.record_failure()
    else:
        metrics_tracker.record_success(latency)

    log_request_complete(
        logger,
        request_id,
        "http",
        latency,
        path=request.url.path,
        status_code=response.status_code,
    )

    response.headers[REQUEST_ID_HEADER] = request_id

    return response


app.include_router(router)


# ============================================================
# ERROR RESPONSES
# ============================================================

def _error_response(request: Request, status_code: int, detail: str, exc: Exception, **extra):

    request_id = getattr(request.state, "request_id", "unknown")

    if status_code >= 500:
        posthog_client.track_error(
            distinct_id=request_id,
            error_type=type(exc).__name__,
            error_message=str(exc),
            endpoint=request.url.path,
        )

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": detail,
            "error_type": type(exc).__name__,
            "request_id": request_id,
            **extra,
        },
        headers={REQUEST_ID_HEADER: request_id},
    )


@app.exception_handler(PolicyQAError)
async def policy_qa_error_handler(request: Request, exc: PolicyQAError):

    level = logger.warning if exc.status_code < 500 else logger.error
    level(
        "Request rejected",
        extra={
            "path": request.url.path,
            "status_code": exc.status_code,
            "error": exc.message,
            "error_type": type(exc).__name__,
        },
    )

    extra = {"field": exc.field} if exc.field else {}

    return _error_response(request, exc.status_code, exc.message, exc, **extra)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):

    logger.error(
        "Unhandled exception",
        extra={"path": request.url.path, "error": str(exc)},
        exc_info=True,
    )

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An internal error occurred. Please try again.",
        exc,
    )
