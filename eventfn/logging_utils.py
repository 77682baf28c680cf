"""Logging utilities for eventfn.

Provides centralized JSON logging configuration and header sanitization for
request/response logs. Request and response bodies are never logged; event
payloads are opaque and may be binary.
"""

import json
import logging
from typing import Any, Dict, Mapping

from pythonjsonlogger import json as jsonlogger

# Sensitive keys to filter (case-insensitive)
SENSITIVE_KEYS = [
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "auth",
    "token",
    "password",
    "secret",
    "credential",
    "cookie",
]

# Sensitive header prefixes (case-insensitive)
SENSITIVE_HEADER_PREFIXES = [
    "x-api-key",
    "x-auth",
    "x-token",
    "x-secret",
    "authorization",
    "cookie",
    "set-cookie",
]

_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName",
        "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "asctime", "datefmt", "taskName",
    )
)


def configure_json_logging(level: str = "INFO", pretty: bool = False) -> None:
    """Configure ALL loggers to use JSON format.

    Sets up the root logger with JSON formatting so that every module
    logger inherits it.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        pretty: If True, use pretty-printed JSON (for local development).
                If False, use compact JSON (one record per line).
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler()
    handler.setLevel(log_level)

    if pretty:
        formatter = _PrettyJsonFormatter()
    else:
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            timestamp=True,
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)


class _PrettyJsonFormatter(logging.Formatter):
    """Indented JSON formatter for local development."""

    def __init__(self, max_string_length: int = 500) -> None:
        super().__init__()
        self.max_string_length = max_string_length

    def _truncate(self, value: Any) -> Any:
        if isinstance(value, str) and len(value) > self.max_string_length:
            return value[: self.max_string_length] + f"... (truncated, {len(value)} chars)"
        return value

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as pretty JSON."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = self._truncate(value)

        if record.exc_info:
            log_data["exc_info"] = self.formatException(record.exc_info)

        try:
            return json.dumps(log_data, indent=2, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return json.dumps({"message": str(record.getMessage())}, indent=2)


def _is_sensitive_key(key: str) -> bool:
    key_lower = key.lower()
    return any(sensitive_key in key_lower for sensitive_key in SENSITIVE_KEYS)


def sanitize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Sanitize HTTP headers by redacting sensitive values.

    Args:
        headers: HTTP headers

    Returns:
        Sanitized headers dictionary
    """
    sanitized = {}
    for key, value in headers.items():
        key_lower = key.lower()
        if any(
            key_lower.startswith(prefix) for prefix in SENSITIVE_HEADER_PREFIXES
        ) or _is_sensitive_key(key):
            sanitized[key] = "[REDACTED]"
        else:
            sanitized[key] = value
    return sanitized


def format_request_log(
    request_id: str,
    http_method: str,
    headers: Mapping[str, str],
) -> Dict[str, Any]:
    """Format structured request log entry.

    The body is not included; it may not have been read yet.

    Args:
        request_id: Request ID
        http_method: HTTP method (GET, POST, etc.)
        headers: HTTP headers

    Returns:
        Dictionary with structured log data
    """
    return {
        "request_id": request_id,
        "http_method": http_method,
        "request_headers": sanitize_headers(headers),
    }


def format_response_log(
    request_id: str,
    status_code: int,
    headers: Mapping[str, str],
    body_size: int,
    duration_ms: float,
    success: bool = True,
) -> Dict[str, Any]:
    """Format structured response log entry.

    Args:
        request_id: Request ID
        status_code: HTTP status code
        headers: Response headers
        body_size: Response body size in bytes
        duration_ms: Processing duration in milliseconds
        success: Whether request was successful

    Returns:
        Dictionary with structured log data
    """
    return {
        "request_id": request_id,
        "response_status": status_code,
        "response_headers": sanitize_headers(headers),
        "response_body_size": body_size,
        "duration_ms": round(duration_ms, 2),
        "success": success,
    }
