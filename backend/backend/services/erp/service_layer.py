from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from app.core import config

logger = logging.getLogger(__name__)

SESSION_COOKIE = "B1SESSION"


class ServiceLayerError(Exception):
    """ERP rejected a call or could not be reached."""

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


def _error_from_response(resp: httpx.Response, fallback: str) -> ServiceLayerError:
    # {"error": {"code": -5002, "message": {"lang": "en-us", "value": "..."}}}
    code = None
    message = fallback
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        code = str(err["code"]) if err.get("code") is not None else None
        msg = err.get("message")
        if isinstance(msg, dict):
            message = msg.get("value") or fallback
        elif isinstance(msg, str):
            message = msg
    elif resp.text:
        message = resp.text[:300]
    return ServiceLayerError(message, code=code, status_code=resp.status_code)


class ServiceLayerClient:
    """Write access to the ERP through its Service Layer REST API.

    All document creation goes through here; direct writes to ERP tables are
    never done. Sessions expire after ~30 minutes of inactivity, so the
    client logs in lazily, refreshes shortly before expiry, and re-logs in
    once when a call comes back 401.
    """

    GOODS_ISSUE = "/InventoryGenExits"
    GOODS_RECEIPT = "/InventoryGenEntries"

    def __init__(
        self,
        base_url: str = config.SL_BASE_URL,
        company: str = config.SL_COMPANY,
        username: str = config.SL_USERNAME,
        password: str = config.SL_PASSWORD,
        *,
        timeout: float = config.SL_TIMEOUT_SECONDS,
        verify: bool = config.SL_VERIFY_TLS,
        session_ttl: timedelta = timedelta(minutes=config.SL_SESSION_TTL_MIN),
        refresh_buffer: timedelta = timedelta(minutes=config.SL_REFRESH_BUFFER_MIN),
        transport: httpx.BaseTransport | None = None,
    ):
        self.company = company
        self.username = username
        self.password = password
        self.session_ttl = session_ttl
        self.refresh_buffer = refresh_buffer
        self._session_id: str | None = None
        self._expires_at: datetime | None = None
        self._lock = threading.Lock()
        self._http = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ServiceLayerClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- session ----
    def login(self) -> None:
        try:
            resp = self._http.post(
                "/Login",
                json={"CompanyDB": self.company, "UserName": self.username, "Password": self.password},
            )
        except httpx.HTTPError as e:
            logger.error("Service Layer login failed: %s", e)
            raise ServiceLayerError(f"ERP connection failed: {e}") from e

        if resp.status_code >= 400:
            err = _error_from_response(resp, "Login failed")
            logger.error("Service Layer login failed: %s", err.message)
            raise err

        session_id = resp.cookies.get(SESSION_COOKIE)
        if not session_id:
            try:
                session_id = (resp.json() or {}).get("SessionId")
            except ValueError:
                session_id = None
        if not session_id:
            raise ServiceLayerError("Login response carried no session id", status_code=resp.status_code)

        self._session_id = session_id
        self._expires_at = datetime.now(timezone.utc) + self.session_ttl
        logger.info("Service Layer session established for company %s", self.company)

    def _ensure_session(self) -> None:
        with self._lock:
            if not self._session_id or not self._expires_at:
                self.login()
                return
            if datetime.now(timezone.utc) >= self._expires_at - self.refresh_buffer:
                logger.debug("Service Layer session expiring, refreshing")
                self.login()

    def _drop_session(self) -> None:
        with self._lock:
            self._session_id = None
            self._expires_at = None

    # ---- requests ----
    def request(self, method: str, endpoint: str, payload: Any | None = None, *, retry: bool = True) -> dict | None:
        self._ensure_session()
        headers = {"Cookie": f"{SESSION_COOKIE}={self._session_id}"}
        try:
            resp = self._http.request(
                method,
                endpoint,
                json=payload if method in ("POST", "PATCH") else None,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("Service Layer %s %s failed: %s", method, endpoint, e)
            raise ServiceLayerError(f"ERP connection failed: {e}") from e

        if resp.status_code == 401 and retry:
            logger.debug("Service Layer session rejected, retrying with a fresh session")
            self._drop_session()
            return self.request(method, endpoint, payload, retry=False)

        if resp.status_code >= 400:
            err = _error_from_response(resp, "Service Layer request failed")
            logger.error(
                "Service Layer error on %s %s (HTTP %s, code %s): %s",
                method, endpoint, resp.status_code, err.code, err.message,
            )
            raise err

        if resp.status_code == 204 or not resp.content:
            return None
        self._touch()
        return resp.json()

    def _touch(self) -> None:
        # Any successful call extends the server-side idle timeout.
        with self._lock:
            if self._session_id:
                self._expires_at = datetime.now(timezone.utc) + self.session_ttl

    # ---- documents ----
    def create_goods_issue(self, payload: dict) -> dict:
        """Material issue (OIGE) against a production order."""
        result = self.request("POST", self.GOODS_ISSUE, payload) or {}
        logger.info("Goods issue created: DocEntry=%s", result.get("DocEntry"))
        return result

    def create_goods_receipt(self, payload: dict) -> dict:
        """Finished-goods receipt (OIGN) from a production order."""
        result = self.request("POST", self.GOODS_RECEIPT, payload) or {}
        logger.info("Goods receipt created: DocEntry=%s", result.get("DocEntry"))
        return result


_client: ServiceLayerClient | None = None
_client_lock = threading.Lock()


def get_service_layer() -> ServiceLayerClient:
    """FastAPI dependency: one shared client so the ERP session is reused."""
    global _client
    with _client_lock:
        if _client is None:
            _client = ServiceLayerClient()
        return _client


def close_service_layer() -> None:
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
