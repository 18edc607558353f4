# app/core/errors.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

log = logging.getLogger(__name__)


class AppError(Exception):
    """
    Базова помилка домену: стабільний машинний `code` + людське повідомлення.
    Роутери їх не ловлять — перетворення в HTTP робить exception handler.
    """

    code = "APP_ERROR"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.reason:
            body["reason"] = self.reason
        return body


class AuthenticationError(AppError):
    code = "AUTHENTICATION_ERROR"
    http_status = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(AppError):
    code = "FORBIDDEN"
    http_status = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None) -> None:
        msg = f"{entity} not found" if entity_id is None else f"{entity} not found with ID: {entity_id}"
        super().__init__(msg)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST


class StaleStateError(ValidationError):
    """Запис відхилено: заявку змінили між читанням і записом."""

    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Ticket was modified concurrently, reload and retry") -> None:
        super().__init__(message, reason="stale_state")


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    log.warning(
        "request_rejected",
        extra={"code": exc.code, "error": exc.message, "path": request.url.path, "request_id": rid},
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
