"""
Logging configuration for TrendoTalk Backend

structlog on top of stdlib logging. Every HTTP request gets a request id
(taken from X-Request-ID when the client sends one); once the bearer token
is resolved the acting user id is bound too, so DM state transitions can be
traced per actor.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from app.core.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "aiobotocore", "rq.worker")


def add_request_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    user_id = user_id_var.get()
    if user_id:
        event_dict.setdefault("actor_id", user_id)
    return event_dict


def bind_user(user_id: str) -> None:
    """Attach the authenticated user to every log line of the current request"""
    user_id_var.set(user_id)


def setup_logging() -> None:
    """Configure structured logging for the application"""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.is_production:
        formatter = jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s")
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # one handler even when several apps are built in one process
    root_logger.handlers = [handler]

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_context,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def _header(scope, name: bytes) -> Optional[str]:
    for key, value in scope.get("headers") or []:
        if key.lower() == name:
            return value.decode("latin-1")
    return None


class RequestIDMiddleware:
    """Assigns the request id and resets the per-request log context"""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _header(scope, b"x-request-id") or uuid.uuid4().hex
        request_id_var.set(request_id)
        user_id_var.set(None)

        async def send_with_request_id(message):
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


class RequestLoggingMiddleware:
    """One log line per finished request, plus the traceback when a handler blows up"""

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("app.request")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        status_code = None

        async def send_with_status(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status")
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        except Exception:
            self.logger.exception("http.request.failed", method=scope.get("method"), path=scope.get("path"))
            raise
        finally:
            status_code = status_code or 500
            log = self.logger.warning if status_code >= 500 else self.logger.info
            log(
                "http.request",
                method=scope.get("method"),
                path=scope.get("path"),
                status_code=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )


class LatencyLogger:
    """Context manager that logs how long an operation took and whether it raised"""

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger, **fields: Any):
        self.operation = operation
        self.logger = logger
        self.fields = fields
        self.started: Optional[float] = None

    def __enter__(self):
        self.started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        latency_ms = round((time.perf_counter() - self.started) * 1000, 2)
        if exc_type is None:
            self.logger.info(f"{self.operation}.completed", latency_ms=latency_ms, **self.fields)
        else:
            self.logger.warning(
                f"{self.operation}.failed",
                latency_ms=latency_ms,
                error=str(exc_val),
                **self.fields,
            )
