"""Log output for car-fetch.

Every record passes through credential redaction before it is emitted:
download URLs handed out by the job service are often pre-signed. Records
emitted inside a :class:`LogContext` carry the bound ``client``, ``job_id``
and ``backend`` fields, appended as ``[key=value]`` in text output and as a
``context`` object in JSON output.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
from collections.abc import Mapping
from typing import IO, Any

from car_fetch.secrets import redact_string, redact_structure

HANDLER_NAME = "car_fetch"
LOG_FORMATS = ("text", "json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

_bound: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar("car_fetch_log_fields", default={})


def get_log_context() -> dict[str, Any]:
    return dict(_bound.get())


class LogContext:
    """Bind fields to every record logged inside the block; nesting merges."""

    def __init__(self, **fields: Any) -> None:
        self.fields = fields
        self._token: contextvars.Token | None = None

    def __enter__(self) -> LogContext:
        self._token = _bound.set({**_bound.get(), **self.fields})
        return self

    def __exit__(self, *exc: object) -> None:
        if self._token is not None:
            _bound.reset(self._token)
            self._token = None


def render_message(record: logging.LogRecord) -> str:
    """``record.getMessage()`` with secrets removed from both the template and its arguments."""
    template = str(redact_structure(record.msg))
    if not record.args:
        return redact_string(template)
    try:
        text = template % redact_structure(record.args)
    except (TypeError, ValueError):
        text = template
    return redact_string(text)


class TextFormatter(logging.Formatter):
    """``2024-01-01 00:00:00 | INFO | car_fetch.jobs | Job done. [client=f01 job_id=7]``"""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        stamp = self.formatTime(record, self.datefmt)
        line = f"{stamp} | {record.levelname} | {record.name} | {render_message(record)}"
        fields = get_log_context()
        if fields:
            bound = " ".join(f"{key}={value}" for key, value in redact_structure(fields).items())
            line = f"{line} [{bound}]"
        if record.exc_info:
            line = f"{line}\n{redact_string(self.formatException(record.exc_info))}"
        return line


class JsonFormatter(logging.Formatter):
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": render_message(record),
        }
        fields = get_log_context()
        if fields:
            payload["context"] = redact_structure(fields)
        if record.exc_info:
            payload["exc_info"] = redact_string(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(*, level: str = "INFO", fmt: str = "text", stream: IO[str] | None = None) -> logging.Handler:
    """Attach the car-fetch stderr handler to the root logger.

    Calling it again replaces the formatter and level of the existing handler
    instead of stacking a second one.
    """
    root = logging.getLogger()
    handler = next((h for h in root.handlers if h.get_name() == HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.set_name(HANDLER_NAME)
        root.addHandler(handler)
    else:
        handler.setStream(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt == "json" else TextFormatter())
    root.setLevel(level.upper() if level.upper() in LOG_LEVELS else logging.INFO)
    return handler


def add_logging_args(parser: Any) -> None:
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        default="text",
        choices=LOG_FORMATS,
        help="Logging format (default: text)",
    )
