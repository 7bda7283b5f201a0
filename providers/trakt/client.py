# providers/trakt/client.py
# Plaxt - Trakt API client with a shared rate limiter and retry policy
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Mapping, Protocol

import requests

from _logging import emit

TRAKT_API = "https://api.trakt.tv"
API_VERSION = "2"
MAX_ATTEMPTS = 3

SCROBBLE_ACTIONS = ("start", "pause", "stop")
SYNC_ENDPOINTS = ("ratings", "ratings/remove", "collection")


class TraktError(Exception):
    pass


class TraktHTTPError(TraktError):
    def __init__(self, status: int, method: str, url: str, body: str = "") -> None:
        super().__init__(f"trakt api returned bad status: {status} ({method} {url})")
        self.status = status
        self.body = body


class TraktUnavailable(TraktError):
    """Raised once every attempt failed on a connection error or a 5xx."""


class TraktDeadlineExceeded(TraktError):
    pass


class InvalidCredential(TraktError):
    """The refresh token was rejected: the Trakt session is gone."""


class DeviceCodeError(TraktError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason.replace("_", " "))
        self.reason = reason


class PayloadError(TraktError):
    pass


class TokenBucket:
    """Token bucket shared by every outbound call in the process."""

    def __init__(self, rate: float = 2.0, burst: int = 5, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._cond = threading.Condition()
        self._clock = clock
        self.rate = float(rate)
        self.burst = int(burst)
        self._tokens = float(burst)
        self._stamp = clock()

    def configure(self, rate: float, burst: int) -> None:
        with self._cond:
            self._refill()
            self.rate = float(rate)
            self.burst = int(burst)
            self._tokens = min(self._tokens, float(burst))
            self._cond.notify_all()

    def _refill(self) -> None:
        now = self._clock()
        if now > self._stamp:
            self._tokens = min(float(self.burst), self._tokens + (now - self._stamp) * self.rate)
        self._stamp = now

    def acquire(self, *, timeout: float | None = None, cancel: threading.Event | None = None) -> None:
        end = None if timeout is None else self._clock() + max(0.0, timeout)
        with self._cond:
            while True:
                if cancel is not None and cancel.is_set():
                    raise TraktDeadlineExceeded("rate limiter wait cancelled")
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / self.rate
                if end is not None:
                    remaining = end - self._clock()
                    if remaining <= 0:
                        raise TraktDeadlineExceeded("rate limiter wait exceeded deadline")
                    wait = min(wait, remaining)
                if cancel is not None:
                    wait = min(wait, 0.25)
                self._cond.wait(wait)


# Trakt allows 1000 calls / 5 min; stay well under it.
RATE_LIMITER = TokenBucket(2.0, 5)


class TraktAPI(Protocol):
    def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any: ...
    def scrobble(self, action: str, body: Mapping[str, Any]) -> Any: ...
    def sync(self, endpoint: str, body: Mapping[str, Any]) -> Any: ...
    def delete_checkin(self) -> None: ...


def _encode(body: Any) -> str | None:
    if body is None:
        return None
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"failed to encode request body: {e}") from e


class TraktClient:
    def __init__(
        self,
        client_id: str,
        access_token: str = "",
        *,
        base: str = TRAKT_API,
        timeout: float = 30.0,
        max_attempts: int = MAX_ATTEMPTS,
        session: requests.Session | Any | None = None,
        limiter: TokenBucket | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        deadline: float | None = None,
        cancel: threading.Event | None = None,
        logger: Callable[..., None] | Any | None = None,
    ) -> None:
        self.client_id = client_id
        self.access_token = access_token
        self.base = base.rstrip("/")
        self.timeout = float(timeout)
        self.max_attempts = max(1, int(max_attempts))
        self.session = session or requests.Session()
        self.limiter = limiter or RATE_LIMITER
        self._sleep = sleep
        self._clock = clock
        self.deadline = deadline
        self.cancel = cancel
        self.logger = logger

    @classmethod
    def from_config(cls, cfg: dict[str, Any], access_token: str = "", **kw: Any) -> "TraktClient":
        tr = cfg.get("trakt") or {}
        return cls(
            str(tr.get("client_id") or ""),
            access_token,
            base=str(tr.get("api_base") or TRAKT_API),
            timeout=float(tr.get("timeout") or 30.0),
            max_attempts=int(tr.get("max_attempts") or MAX_ATTEMPTS),
            **kw,
        )

    def _emit(self, msg: str, level: str = "INFO") -> None:
        emit(self.logger, msg, level, module="TRAKT")

    def headers(self) -> dict[str, str]:
        h = {
            "Content-Type": "application/json",
            "trakt-api-version": API_VERSION,
            "trakt-api-key": self.client_id,
        }
        if self.access_token:
            h["Authorization"] = f"Bearer {self.access_token}"
        return h

    def url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{self.base}/{path.lstrip('/')}"

    def _remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def _acquire(self) -> None:
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            raise TraktDeadlineExceeded("pipeline deadline reached before request")
        self.limiter.acquire(timeout=remaining, cancel=self.cancel)

    def _send(self, method: str, url: str, params: Mapping[str, Any] | None, data: str | None) -> Any:
        remaining = self._remaining()
        timeout = self.timeout if remaining is None else max(0.1, min(self.timeout, remaining))
        return self.session.request(method, url, params=params, data=data, headers=self.headers(), timeout=timeout)

    def _backoff(self, attempt: int) -> None:
        if attempt + 1 >= self.max_attempts:
            return
        wait = float(attempt + 1)
        remaining = self._remaining()
        if remaining is not None and remaining <= wait:
            raise TraktDeadlineExceeded("pipeline deadline reached during retry backoff")
        self._sleep(wait)

    @staticmethod
    def _decode(r: Any) -> Any:
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise TraktError(f"failed to decode response: {e}") from e

    def request(self, method: str, path: str, *, params: Mapping[str, Any] | None = None, body: Any = None) -> Any:
        url = self.url(path)
        data = _encode(body)
        last: Exception | None = None
        for attempt in range(self.max_attempts):
            self._acquire()
            try:
                r = self._send(method, url, params, data)
            except requests.RequestException as e:
                last = e
                self._emit(f"request failed attempt={attempt + 1} {method} {url}: {e}", "WARN")
                self._backoff(attempt)
                continue

            status = int(r.status_code)
            if status >= 500:
                last = TraktHTTPError(status, method, url, (r.text or "")[:200])
                self._emit(f"server error {status} attempt={attempt + 1} {method} {url}", "WARN")
                self._backoff(attempt)
                continue
            if status >= 400:
                body_txt = (r.text or "")[:400]
                self._emit(f"client error {status} {method} {url}: {body_txt}", "ERROR")
                raise TraktHTTPError(status, method, url, body_txt)
            if status == 204:
                return None
            if not 200 <= status < 300:
                raise TraktHTTPError(status, method, url, (r.text or "")[:200])
            return self._decode(r)

        raise TraktUnavailable(f"request failed after {self.max_attempts} attempts: {last}") from last

    # Capability surface used by the resolver and the pipeline
    def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def scrobble(self, action: str, body: Mapping[str, Any]) -> Any:
        if action not in SCROBBLE_ACTIONS:
            raise ValueError(f"unknown scrobble action {action!r}")
        return self.request("POST", f"/scrobble/{action}", body=body)

    def sync(self, endpoint: str, body: Mapping[str, Any]) -> Any:
        if endpoint not in SYNC_ENDPOINTS:
            raise ValueError(f"unknown sync endpoint {endpoint!r}")
        return self.request("POST", f"/sync/{endpoint}", body=body)

    def delete_checkin(self) -> None:
        try:
            self.request("DELETE", "/checkin")
        except TraktHTTPError as e:
            if e.status != 404:
                raise

    # OAuth
    def oauth_token(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        try:
            res = self.request("POST", "/oauth/token", body=dict(payload))
        except TraktHTTPError as e:
            if e.status in (400, 401):
                raise InvalidCredential("invalid_token") from e
            raise
        return res if isinstance(res, dict) else {}

    def device_code(self) -> dict[str, Any]:
        res = self.request("POST", "/oauth/device/code", body={"client_id": self.client_id})
        return res if isinstance(res, dict) else {}

    def poll_device_token(self, device_code: str, client_secret: str) -> dict[str, Any] | None:
        """One poll of the device-token endpoint; ``None`` while the user has not approved yet."""
        url = self.url("/oauth/device/token")
        data = _encode({"code": device_code, "client_id": self.client_id, "client_secret": client_secret})
        last: Exception | None = None
        for attempt in range(self.max_attempts):
            self._acquire()
            try:
                r = self._send("POST", url, None, data)
            except requests.RequestException as e:
                last = e
                self._backoff(attempt)
                continue

            status = int(r.status_code)
            if status == 400:
                return None
            if status == 404:
                raise DeviceCodeError("invalid_code")
            if status == 409:
                raise DeviceCodeError("already_used")
            if status == 410:
                raise DeviceCodeError("expired")
            if status >= 500:
                last = TraktHTTPError(status, "POST", url)
                self._backoff(attempt)
                continue
            if status != 200:
                raise TraktHTTPError(status, "POST", url, (r.text or "")[:200])
            res = self._decode(r)
            return res if isinstance(res, dict) else {}

        raise TraktUnavailable(f"request failed after {self.max_attempts} attempts: {last}") from last


def configure_rate_limiter(cfg: dict[str, Any]) -> None:
    rl = ((cfg.get("trakt") or {}).get("rate_limit") or {})
    RATE_LIMITER.configure(float(rl.get("rate") or 2.0), int(rl.get("burst") or 5))
