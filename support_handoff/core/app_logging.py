"""Logging setup for the service.

``init_logging`` configures the ``support_handoff`` logger tree with either a
human-readable or a JSON formatter (``LOG_JSON=true``). ``install_access_logging``
adds an HTTP middleware that writes one line per request and echoes an
``X-Request-Id`` header for correlation.
"""

from __future__ import annotations

import json
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request

from support_handoff.core.config import Settings

ROOT_LOGGER_NAME = "support_handoff"
_SKIP_ACCESS_PATHS = {"/api/v1/health", "/api/v1/health/db"}


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


def init_logging(settings: Settings) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(settings.log_level.upper())

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(_get_formatter(settings.log_json))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def install_access_logging(app: FastAPI) -> None:
    access_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.access")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in _SKIP_ACCESS_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - start) * 1000
        client_ip = request.headers.get("X-Forwarded-For")
        if not client_ip and request.client is not None:
            client_ip = request.client.host

        access_logger.info(
            "%s %s -> %s in %.1fms (request_id=%s client=%s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
            client_ip,
        )
        response.headers["X-Request-Id"] = request_id
        return response
