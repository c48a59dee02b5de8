"""
saep_core/logging_config.py — Logging setup.

Components log through module loggers (`logging.getLogger(__name__)`) and
the audit recorder through `saep.audit`. Structured context travels as
`extra={"fields": {...}}` and is rendered either as one JSON object per
line or as trailing key=value pairs.

Private key material, passphrases and plaintext content must never reach
a logger. Fields under those names are replaced before rendering in case
one slips through.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Correlates the log lines emitted while serving one call.
request_id_var: ContextVar[str] = ContextVar("saep_request_id", default="")

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset({
    "private_key",
    "passphrase",
    "content_key",
    "plaintext",
    "raw_content",
})


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    fields = getattr(record, "fields", None)
    if not isinstance(fields, dict):
        fields = {}
    context = {
        k: (REDACTED if k in SENSITIVE_FIELDS else v) for k, v in fields.items()
    }
    request_id = request_id_var.get()
    if request_id:
        context.setdefault("request_id", request_id)
    return context


class StructuredFormatter(logging.Formatter):
    """JSON lines for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_context(record))
        return json.dumps(entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable lines with the structured fields appended."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if context:
            line += " | " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """Install one stdout handler (and optionally a file handler) on the root logger.

    Calling it again replaces the handlers installed earlier.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter: logging.Formatter = (
        StructuredFormatter() if json_format else KeyValueFormatter()
    )
    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if omitted."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()
