# app/core/logging.py
import logging
import logging.config
import time
import uuid
from contextvars import ContextVar
from typing import Any, Mapping, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# request_id поточного HTTP-запиту (у воркері лишається порожнім)
_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

access_log = logging.getLogger("app.access")


class RequestContextFilter(logging.Filter):
    """Додає request_id у кожен запис, щоб його бачив форматер."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    """Єдина конфігурація логів для апки, воркера та Uvicorn."""
    LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {"()": RequestContextFilter},
        },
        "formatters": {
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "plain",
                "filters": ["request_context"],
            },
        },
        "loggers": {
            "": {"handlers": ["default"], "level": level},
            "uvicorn": {"handlers": ["default"], "level": level, "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": level, "propagate": False},
            # власний app.access замість uvicorn.access
            "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": False},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    X-Request-ID: береться з вхідного заголовка або генерується.
    Кладеться в request.state і в contextvar (для всіх логів запиту),
    повертається в заголовку відповіді. Наприкінці один рядок access-логу.
    """

    header_name = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            _request_id.reset(token)

        response.headers[self.header_name] = request_id
        access_log.info("request_done", extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 1),
        })
        return response


def log_extra(request: Request) -> Mapping[str, Any]:
    """extra={**log_extra(request), "ticket_id": t.id}"""
    rid = getattr(request.state, "request_id", None) or _request_id.get()
    return {"request_id": rid} if rid else {}
