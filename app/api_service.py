from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ai.gemini_client import GeminiClient
from config.settings import settings
from documents.extractor import DocumentExtractionError
from governor.errors import (
    AdmissionDenied,
    BackendFailure,
    BackendNotConfigured,
    RetriesExhaustedError,
)
from governor.quota_store import build_quota_store
from governor.quota_tracker import QuotaTracker
from governor.request_governor import RequestGovernor
from ops.structured_logger import setup_logging
from quiz.service import QuizService
from repos.conversation_repo import ConversationRepository
from repos.session_repo import SessionRepository
from utils.request_context import clear_request_id, set_request_id

from app.routers.health import router as health_router
from app.routers.quiz import router as quiz_router
from app.routers.sessions import router as sessions_router
from app.routers.status import router as status_router

setup_logging(settings.LOG_LEVEL)

log = logging.getLogger("studybuddy.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    tracker = QuotaTracker(
        store=build_quota_store(settings.QUOTA_STORE, settings.QUOTA_STATE_PATH),
        minute_quota=settings.QUOTA_MINUTE_LIMIT,
        daily_quota=settings.QUOTA_DAILY_LIMIT,
    )
    tracker.init()
    governor = RequestGovernor(
        min_interval=settings.GOVERNOR_MIN_INTERVAL_SECONDS,
        max_retries=settings.GOVERNOR_MAX_RETRIES,
        default_retry_delay=settings.GOVERNOR_DEFAULT_RETRY_DELAY_SECONDS,
        dispatch_pause=settings.GOVERNOR_DISPATCH_PAUSE_SECONDS,
    )
    gemini = GeminiClient() if settings.GEMINI_API_KEY else None
    if gemini is None:
        log.error("gemini_not_configured", extra={"extra": {"event": "gemini_not_configured"}})

    app.state.quota_tracker = tracker
    app.state.request_governor = governor
    app.state.gemini = gemini
    app.state.quiz_service = QuizService(
        tracker=tracker,
        governor=governor,
        gemini=gemini,
        sessions=SessionRepository(),
        conversations=ConversationRepository(),
    )
    log.info("startup", extra={"extra": {"event": "startup", "environment": settings.ENVIRONMENT, "gemini_configured": gemini is not None}})
    try:
        yield
    finally:
        await governor.close()
        if gemini is not None:
            await gemini.aclose()
        tracker.close()
        log.info("shutdown", extra={"extra": {"event": "shutdown"}})


app = FastAPI(title="Study Buddy API", version="1.0.0", lifespan=lifespan)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or ""


def _revision() -> str:
    return os.getenv("K_REVISION") or ""


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    set_request_id(rid)
    try:
        response = await call_next(request)
    finally:
        clear_request_id()
    response.headers["X-Request-Id"] = rid
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    rid = _get_request_id(request)
    log.warning(
        "http_exception",
        extra={
            "extra": {
                "event": "http_exception",
                "status_code": exc.status_code,
                "detail": exc.detail,
                "path": request.url.path,
                "method": request.method,
                "request_id": rid,
            }
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "request_id": rid, "revision": _revision()},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = _get_request_id(request)
    log.warning(
        "validation_error",
        extra={
            "extra": {
                "event": "validation_error",
                "path": request.url.path,
                "method": request.method,
                "request_id": rid,
            }
        },
    )
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "request_id": rid, "revision": _revision()},
    )


def _busy_response(request: Request, reason: str, retry_after: int) -> JSONResponse:
    rid = _get_request_id(request)
    log.warning(
        "service_busy",
        extra={"extra": {"event": "service_busy", "reason": reason, "retry_after": retry_after, "path": request.url.path, "request_id": rid}},
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "service_busy",
            "reason": reason,
            "message": f"The API is under heavy demand. Please try again in {retry_after} seconds.",
            "retry_after": retry_after,
            "request_id": rid,
        },
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(AdmissionDenied)
async def admission_denied_handler(request: Request, exc: AdmissionDenied):
    return _busy_response(request, "quota_exceeded", exc.retry_after_seconds)


@app.exception_handler(RetriesExhaustedError)
async def retries_exhausted_handler(request: Request, exc: RetriesExhaustedError):
    return _busy_response(request, "rate_limited", exc.retry_after_seconds)


@app.exception_handler(BackendFailure)
async def backend_failure_handler(request: Request, exc: BackendFailure):
    rid = _get_request_id(request)
    log.error(
        "backend_failure",
        extra={"extra": {"event": "backend_failure", "status_code": exc.status_code, "message": str(exc), "path": request.url.path, "request_id": rid}},
    )
    return JSONResponse(
        status_code=502,
        content={"error": "processing_error", "details": "The AI backend could not process the request.", "request_id": rid},
    )


@app.exception_handler(BackendNotConfigured)
async def backend_not_configured_handler(request: Request, exc: BackendNotConfigured):
    return JSONResponse(
        status_code=500,
        content={"error": "gemini_not_configured", "message": "GEMINI_API_KEY is not set on the server.", "request_id": _get_request_id(request)},
    )


@app.exception_handler(DocumentExtractionError)
async def document_extraction_handler(request: Request, exc: DocumentExtractionError):
    return JSONResponse(
        status_code=400,
        content={"error": "document_unreadable", "message": str(exc), "request_id": _get_request_id(request)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _get_request_id(request)
    log.error(
        "internal_unhandled_exception",
        extra={
            "extra": {
                "event": "internal_unhandled_exception",
                "error_type": type(exc).__name__,
                "message": str(exc),
                "path": request.url.path,
                "method": request.method,
                "request_id": rid,
            }
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_unhandled_exception", "request_id": rid, "revision": _revision()},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["health"])
app.include_router(quiz_router, prefix="/api/chat", tags=["quiz"])
app.include_router(sessions_router, prefix="/api/chat", tags=["sessions"])
app.include_router(status_router, prefix="/api/chat", tags=["status"])
