"""Structured API error logging with sanitized request context."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

_LOGGER = logging.getLogger("finance_app.errors")

_SENSITIVE = ("password", "token", "secret", "authorization", "cookie", "signature", "api_key", "apikey")
REDACTED = "[REDACTED]"


def _is_sensitive(key: str) -> bool:
    k = key.lower().replace("-", "_")
    return any(s in k for s in _SENSITIVE)


def sanitize(data: Any) -> Any:
    """Return a copy of `data` with sensitive keys redacted at any depth."""
    if isinstance(data, dict):
        return {k: (REDACTED if _is_sensitive(str(k)) else sanitize(v)) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [sanitize(v) for v in data]
    return data


def log_api_error(request, error: BaseException, operation: Optional[str] = None, context: Optional[dict] = None) -> dict:
    """Log an API failure with request metadata and return the logged payload."""
    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": getattr(getattr(request, "state", None), "request_id", ""),
        "method": request.method,
        "path": request.url.path,
        "operation": operation or "",
        "headers": sanitize(dict(request.headers)),
        "context": sanitize(context or {}),
        "error_type": type(error).__name__,
        "error": str(error),
    }
    orig = getattr(error, "orig", None)
    if orig is not None:
        payload["db_error"] = str(orig)
    _LOGGER.error("api_error %s", json.dumps(payload, ensure_ascii=True, default=str), exc_info=error)
    return payload
