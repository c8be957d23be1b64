"""Structured JSON logging for the order and points ledger.

Every record is written as one JSON line. Identifiers that tie a line to the
ledger (order, user, points entry, scheduled job) are lifted into a ``ledger``
object so that a single order or customer can be followed across the state
machine, the payment flow and the expiry sweep. Anything else passed as
keyword context lands under ``context``.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from logging import LogRecord
from typing import Any, Dict, Iterator, Mapping, TextIO

from loguru import logger
from opentelemetry import trace

LEDGER_KEYS = ("order_id", "user_id", "source_entry_id", "job")

# Attributes every stdlib LogRecord carries; only caller supplied extras are forwarded.
_STDLIB_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class InterceptHandler(logging.Handler):
    """Route stdlib logging (uvicorn, sqlalchemy, apscheduler) through Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        extra.setdefault("stdlib_logger", record.name)
        message = record.getMessage().replace("{", "{{").replace("}", "}}")
        logger.bind(**extra).opt(depth=6, exception=record.exc_info).log(level, message)


@contextmanager
def ledger_context(**identifiers: Any) -> Iterator[None]:
    """Attach ledger identifiers to every log line emitted inside the block."""

    bound = {key: str(value) for key, value in identifiers.items() if value is not None}
    with logger.contextualize(**bound):
        yield


def build_log_payload(record: Mapping[str, Any], metadata: Mapping[str, str]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    extra = dict(record["extra"])
    ledger = {key: extra.pop(key) for key in LEDGER_KEYS if extra.get(key) is not None}
    if ledger:
        payload["ledger"] = ledger
    if extra:
        payload["context"] = extra
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    return payload


class JsonLineSink:
    """Loguru sink writing one JSON document per record."""

    def __init__(self, metadata: Mapping[str, str], stream: TextIO | None = None) -> None:
        self._metadata = dict(metadata)
        self._stream = stream

    def __call__(self, message: "logger.Message") -> None:
        stream = self._stream or sys.stdout
        stream.write(json.dumps(build_log_payload(message.record, self._metadata), default=str) + "\n")
        stream.flush()


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Send Loguru and stdlib logging to the JSON line sink."""

    logger.remove()
    metadata = {"service_name": service_name, "environment": environment, "version": version}
    logger.add(JsonLineSink(metadata, stream), level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)


__all__ = [
    "LEDGER_KEYS",
    "InterceptHandler",
    "JsonLineSink",
    "build_log_payload",
    "configure_logging",
    "ledger_context",
]
