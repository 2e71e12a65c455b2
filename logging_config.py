"""
Logging for the exchange service.

- LOG_LEVEL from env (default INFO).
- Single-line JSON when LOG_JSON=1, plain text otherwise.
- Records logged while serving a request carry its method and path.
- Log record ids only: no usernames, phone numbers or IBANs in messages.
"""
import json
import logging
import os
import sys
from typing import Any

from flask import has_request_context, request

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(request_line)s): %(message)s"

# LogRecord attributes that are not caller-supplied `extra` fields
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "request_line",
}


def _json_serial(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    # Decimal amounts and prices
    return str(obj)


class RequestContextFilter(logging.Filter):
    """Stamp each record with the HTTP request it was logged under, or '-'."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            record.request_line = f"{request.method} {request.path}"
        else:
            record.request_line = "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "request": getattr(record, "request_line", "-"),
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_serial)


def configure_logging() -> None:
    level_name = (os.getenv("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    use_json = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")

    root = logging.getLogger()
    root.setLevel(level)
    # create_app can run more than once per process (tests, CLI)
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    # 개발 서버 접속 로그와 SQL 에코는 기본적으로 숨김
    for name in ("werkzeug", "sqlalchemy.engine", "flask_jwt_extended"):
        logging.getLogger(name).setLevel(logging.WARNING)
