# app/workers/rq_worker.py
import os
import logging
import json
import hmac, hashlib
from typing import Any, Callable, Mapping

import redis
import requests
from rq import Queue, Worker

from app.core.config import settings
from app.core.logging import setup_logging

logger = logging.getLogger("worker.ticket_events")

# події, які дублюємо у webhook (settings.webhook_ticket_events)
WEBHOOK_EVENTS = frozenset({
    "ticket_created",
    "ticket_assigned",
    "ticket_unassigned",
    "status_changed",
    "priority_changed",
})


def _sign(payload: Mapping[str, Any]) -> str | None:
    if not settings.webhook_secret:
        return None
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hmac.new(settings.webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _post(url: str, event_type: str, payload: Mapping[str, Any]) -> None:
    if not url:
        logger.debug("webhook_url_missing", extra={"event_type": event_type})
        return
    headers = {"Content-Type": "application/json", "X-Ticketing-Event": event_type}
    sig = _sign(payload)
    if sig:
        headers["X-Ticketing-Signature"] = f"sha256={sig}"
    # помилка мережі -> виняток -> rq повторить job (Retry у enqueue)
    r = requests.post(url, json=dict(payload), headers=headers, timeout=10)
    r.raise_for_status()
    logger.info("webhook_sent", extra={"event_type": event_type, "status": r.status_code})


def _forward(event_type: str, payload: Mapping[str, Any]) -> None:
    if event_type in WEBHOOK_EVENTS:
        _post(settings.webhook_ticket_events or "", event_type, payload)


def on_ticket_created(payload: Mapping[str, Any]) -> None:
    logger.info("ticket_created", extra={"ticket_id": payload.get("ticket_id"),
                                         "actor_id": payload.get("actor_id"),
                                         "department_id": payload.get("department_id")})
    _forward("ticket_created", payload)


def on_ticket_assigned(payload: Mapping[str, Any]) -> None:
    logger.info("ticket_assigned", extra={"ticket_id": payload.get("ticket_id"),
                                          "assigned_to_id": payload.get("assigned_to_id"),
                                          "previous_assignee_id": payload.get("previous_assignee_id")})
    _forward("ticket_assigned", payload)


def on_ticket_unassigned(payload: Mapping[str, Any]) -> None:
    logger.info("ticket_unassigned", extra={"ticket_id": payload.get("ticket_id"),
                                            "previous_assignee_id": payload.get("previous_assignee_id")})
    _forward("ticket_unassigned", payload)


def on_status_changed(payload: Mapping[str, Any]) -> None:
    logger.info("status_changed", extra={"ticket_id": payload.get("ticket_id"),
                                         "from": payload.get("from_status_id"),
                                         "to": payload.get("to_status_id")})
    _forward("status_changed", payload)


def on_priority_changed(payload: Mapping[str, Any]) -> None:
    logger.info("priority_changed", extra={"ticket_id": payload.get("ticket_id"),
                                           "from": payload.get("from_priority_id"),
                                           "to": payload.get("to_priority_id")})
    _forward("priority_changed", payload)


def on_activity(event_type: str) -> Callable[[Mapping[str, Any]], None]:
    # коментарі / вкладення / відгуки / редагування — лише журнал
    def handler(payload: Mapping[str, Any]) -> None:
        logger.info(event_type, extra={"ticket_id": payload.get("ticket_id"),
                                       "actor_id": payload.get("actor_id")})
    return handler


EVENT_HANDLERS: dict[str, Callable[[Mapping[str, Any]], None]] = {
    "ticket_created": on_ticket_created,
    "ticket_assigned": on_ticket_assigned,
    "ticket_unassigned": on_ticket_unassigned,
    "status_changed": on_status_changed,
    "priority_changed": on_priority_changed,
    "ticket_updated": on_activity("ticket_updated"),
    "comment_added": on_activity("comment_added"),
    "attachment_added": on_activity("attachment_added"),
    "feedback_submitted": on_activity("feedback_submitted"),
}


def handle_event(event_type: str, payload: Mapping[str, Any] | None = None) -> None:
    handler = EVENT_HANDLERS.get(event_type)
    if not handler:
        logger.warning("unknown_event", extra={"event_type": event_type})
        return
    handler(payload or {})


def main() -> None:
    setup_logging(settings.log_level)
    logger.info("worker_starting", extra={"queue": settings.notifications_queue, "redis": settings.redis_url})
    conn = redis.from_url(settings.redis_url)
    queue = Queue(settings.notifications_queue, connection=conn)
    worker = Worker([queue], connection=conn, name=os.getenv("WORKER_NAME", "ticket-events-worker"))
    worker.work(logging_level=logging.INFO)


if __name__ == "__main__":
    main()
