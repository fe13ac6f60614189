from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response

from app.db.session import SessionLocal
from app.core.audit import audit

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    rid = request.headers.get("X-Request-Id") or request.headers.get("X-Request-ID")
    if rid:
        return rid
    return str(uuid.uuid4())


def _client_ip(request: Request) -> str | None:
    # Behind a proxy the first X-Forwarded-For hop is the terminal.
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _actor(request: Request) -> str:
    emp = request.headers.get("X-Employee-Id")
    return f"emp:{emp}" if emp else "anonymous"


async def audit_http_middleware(request: Request, call_next: Callable) -> Response:
    """Shop-floor request audit.

    - Adds a correlation id (X-Request-Id)
    - Records every failed production call (4xx/5xx) with the terminal's operator
    """
    request_id = _get_request_id(request)
    start = time.perf_counter()

    response: Response
    try:
        response = await call_next(request)
    except Exception:
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.exception("Unhandled error on %s %s (request %s)", request.method, request.url.path, request_id)
        with SessionLocal() as db:
            audit(
                db,
                actor=_actor(request),
                action="http.exception",
                entity_type="http",
                entity_id=request.url.path,
                payload={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
                request_id=request_id,
                ip_address=_client_ip(request),
                user_agent=request.headers.get("User-Agent"),
                status_code=500,
                success=False,
            )
        raise

    response.headers["X-Request-Id"] = request_id

    status_code = response.status_code
    duration_ms = int((time.perf_counter() - start) * 1000)

    if status_code >= 400 and request.url.path.startswith("/work-orders"):
        with SessionLocal() as db:
            audit(
                db,
                actor=_actor(request),
                action="http.request",
                entity_type="http",
                entity_id=request.url.path,
                payload={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                    "station": request.headers.get("X-Station-Code"),
                },
                request_id=request_id,
                ip_address=_client_ip(request),
                user_agent=request.headers.get("User-Agent"),
                status_code=status_code,
                success=False,
            )

    return response
