"""Translate service exceptions into structured HTTP errors."""
import logging
import uuid
from typing import Optional

from fastapi import HTTPException

from services.errors import OrchestrationError

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return str(uuid.uuid4())


def http_error(exc: OrchestrationError, request_id: Optional[str] = None, context: str = "") -> HTTPException:
    """HTTPException with detail {error_code, message, request_id, ...}."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log("%s failed request_id=%s error_code=%s: %s", context or "request", request_id, exc.error_code, exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail(request_id))
