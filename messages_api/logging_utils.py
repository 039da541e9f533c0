"""
JSON logging for the messages service.

Every record is one JSON object on stdout carrying ``ts``, ``level`` and,
inside a request, the ``request_id`` the middleware assigned. Each request
ends with one summary record; for /messages it names the operation and its
outcome, e.g. ``"update noop"`` with ``message_id`` and ``rows_affected``.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from messages_api.metrics import record_http_request


HANDLER_NAME = "messages_api.json"

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

request_logger = logging.getLogger("messages_api.requests")


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """Stamps records with their creation time, level name and request id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        # "ts" is named in the format string, so it is present but None here
        if not log_record.get("ts"):
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record["ts"] = created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{created.microsecond // 1000:03d}Z"
        log_record["level"] = record.levelname

        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send application and uvicorn logs through one JSON handler on stdout.

    Safe to call once per created app: the handler installed by an earlier
    call is replaced, other handlers on the root logger are left alone.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(ServiceJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    for logger in [root, logging.getLogger("uvicorn"), logging.getLogger("uvicorn.error")]:
        for old in [h for h in logger.handlers if h.get_name() == HANDLER_NAME]:
            logger.removeHandler(old)
        logger.addHandler(handler)

    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False
    # one summary record per request replaces the access log
    logging.getLogger("uvicorn.access").disabled = True

    return root


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _summary(fields: dict) -> str:
    operation = fields.get("operation")
    if operation is None:
        return "Request completed"
    return f"{operation} {fields.get('result', 'unhandled')}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Gives each request an id (``X-Request-ID``), feeds the HTTP metrics and
    writes the request's summary record.

    Summary fields: method, path, status, latency_ms, plus whatever the
    /messages route attached through log_message_data: operation, result
    (the label counted in message_operations_total), message_id and
    rows_affected.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id

            path = request.url.path
            if path != "/metrics":
                record_http_request(request.method, path, response.status_code, elapsed)

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
            }
            fields.update(getattr(request.state, "message_log_data", {}))

            request_logger.log(_level_for(response.status_code), _summary(fields), extra=fields)
            return response
        finally:
            request_id_ctx.reset(token)


def log_message_data(request: Request, **fields) -> None:
    """
    Attach operation fields (operation, result, message_id, rows_affected)
    to the request; None values are skipped.
    """
    message_data = getattr(request.state, "message_log_data", {})
    message_data.update({key: value for key, value in fields.items() if value is not None})
    request.state.message_log_data = message_data
