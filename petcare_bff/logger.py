"""
Structured logging for the BFF.

With LOG_FORMAT=json every record is printed as one JSON object per line
(suitable for log aggregation); fields passed through ``extra={...}`` are
collected under ``meta``. LOG_FORMAT=text keeps a human-readable format.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from starlette.requests import Request

# Attributes every LogRecord carries; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        meta = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if meta:
            payload["meta"] = meta

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure root logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "json" for JSON lines, "text" for human-readable output
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove existing handlers (avoid duplicates when the factory runs twice)
    for handler in root.handlers[:]:
        if getattr(handler, "_petcare_bff", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler._petcare_bff = True

    if log_format.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
        ))

    root.addHandler(handler)


def client_ip(request: Request, trusted_hops: int = 0) -> Optional[str]:
    """
    Resolve the client address of a request.

    With ``trusted_hops`` reverse proxies in front of the service, the
    address is taken from ``X-Forwarded-For``, skipping the entries those
    proxies appended.

    Args:
        request: Incoming request
        trusted_hops: Number of proxies allowed to set X-Forwarded-For

    Returns:
        Client IP string, or None if it cannot be determined
    """
    peer = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")

    if trusted_hops <= 0 or not forwarded:
        return peer

    chain = [addr.strip() for addr in forwarded.split(",") if addr.strip()]
    if peer:
        chain.append(peer)
    if not chain:
        return peer

    index = max(len(chain) - 1 - trusted_hops, 0)
    return chain[index]


def request_context(request: Request, trusted_hops: int = 0) -> Dict[str, Any]:
    """Base fields attached to every log record emitted for a request."""
    return {
        "method": request.method,
        "path": request.url.path,
        "ip": client_ip(request, trusted_hops),
    }
