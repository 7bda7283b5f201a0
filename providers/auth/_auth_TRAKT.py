# providers/auth/_auth_TRAKT.py
# Plaxt - Trakt Authentication Provider
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from _logging import emit
from providers.trakt.client import DeviceCodeError, InvalidCredential, TraktClient, TraktError
from px_platform.user_store import StoreError, User, UserStore

VERIFY_URL = "https://trakt.tv/activate"
REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"


def _now() -> int:
    return int(time.time())


def log(msg: str, level: str = "INFO", logger: Any = None) -> None:
    emit(logger, msg, level, module="AUTH")


class AuthInvalid(Exception):
    """The user's Trakt session is gone; they must authorize again."""


class AuthTransient(Exception):
    """Refresh could not complete right now; stored tokens are untouched."""


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_response(cls, tok: dict[str, Any], now: int | None = None) -> "TokenSet":
        acc = str(tok.get("access_token") or "").strip()
        rt = str(tok.get("refresh_token") or "").strip()
        if not acc or not rt:
            raise TraktError("token response is missing access_token or refresh_token")
        try:
            created = int(tok.get("created_at") or 0) or (now if now is not None else _now())
            expires_in = int(tok.get("expires_in") or 0)
        except (TypeError, ValueError) as e:
            raise TraktError(f"token response has a bad expiry: {e}") from e
        return cls(acc, rt, created + expires_in)


def _client_secrets(cfg: dict[str, Any]) -> tuple[str, str]:
    tr = cfg.get("trakt") or {}
    return str(tr.get("client_id") or "").strip(), str(tr.get("client_secret") or "").strip()


class _TraktProvider:
    name = "TRAKT"
    label = "Trakt"

    def _client(self, cfg: dict[str, Any], client: Any | None) -> Any:
        return client if client is not None else TraktClient.from_config(cfg)

    def start(self, cfg: dict[str, Any], *, client: Any | None = None, logger: Any = None) -> dict[str, Any]:
        cid, _ = _client_secrets(cfg)
        if not cid:
            return {"ok": False, "error": "missing_client_id"}

        log("TRAKT: request device code", logger=logger)
        try:
            data = self._client(cfg, client).device_code()
        except TraktError as e:
            log(f"TRAKT: device code request failed: {e}", "ERROR", logger)
            return {"ok": False, "error": "http_error", "detail": str(e)}

        user_code = str(data.get("user_code") or "")
        device_code = str(data.get("device_code") or "")
        if not user_code or not device_code:
            return {"ok": False, "error": "invalid_response"}

        log("TRAKT: device code received", logger=logger)
        return {
            "ok": True,
            "user_code": user_code,
            "device_code": device_code,
            "verification_url": str(data.get("verification_url") or VERIFY_URL),
            "interval": int(data.get("interval", 5) or 5),
            "expires_at": _now() + int(data.get("expires_in", 600) or 600),
        }

    def finish(
        self,
        cfg: dict[str, Any],
        *,
        device_code: str,
        username: str,
        plex_username: str = "",
        store: UserStore | None = None,
        client: Any | None = None,
        logger: Any = None,
    ) -> dict[str, Any]:
        """One device-token poll; on approval the new user is created and saved."""
        cid, secret = _client_secrets(cfg)
        if not cid or not secret:
            return {"ok": False, "status": "missing_client"}
        dc = (device_code or "").strip()
        if not dc:
            return {"ok": False, "status": "no_device_code"}

        log("TRAKT: exchange device code", logger=logger)
        try:
            tok = self._client(cfg, client).poll_device_token(dc, secret)
        except DeviceCodeError as e:
            return {"ok": False, "status": e.reason}
        except TraktError as e:
            log(f"TRAKT: device token exchange failed: {e}", "ERROR", logger)
            return {"ok": False, "status": "network_error", "error": str(e)}
        if tok is None:
            return {"ok": False, "status": "authorization_pending"}

        try:
            ts = TokenSet.from_response(tok)
        except TraktError as e:
            log(f"TRAKT: {e}", "ERROR", logger)
            return {"ok": False, "status": "invalid_response"}

        find = getattr(store, "find_by_username", None)
        user = find(username) if callable(find) else None
        if user is None:
            user = User.new(username, ts.access_token, ts.refresh_token, 0)
        user.access_token = ts.access_token
        user.refresh_token = ts.refresh_token
        user.token_expires_at = ts.expires_at
        user.plex_username = (plex_username or username).strip()
        if store is not None:
            store.save(user)
        log(f"TRAKT: tokens stored for {username}", "SUCCESS", logger)
        return {"ok": True, "status": "ok", "user_id": user.id}

    def refresh(self, refresh_token: str, cfg: dict[str, Any], *, client: Any | None = None, now: int | None = None) -> TokenSet:
        """Exchange *refresh_token*; raises ``InvalidCredential`` or another ``TraktError``."""
        cid, secret = _client_secrets(cfg)
        payload = {
            "refresh_token": refresh_token,
            "client_id": cid,
            "client_secret": secret,
            "redirect_uri": REDIRECT_URI,
            "grant_type": "refresh_token",
        }
        tok = self._client(cfg, client).oauth_token(payload)
        return TokenSet.from_response(tok, now)

    def ensure_valid_token(
        self,
        user: User,
        store: UserStore,
        cfg: dict[str, Any],
        *,
        client: Any | None = None,
        now: int | None = None,
        logger: Any = None,
    ) -> bool:
        """Refresh *user*'s token when expired. Returns ``True`` when a refresh happened."""
        if not user.is_authorized():
            raise AuthInvalid(f"user {user.id} has no access token")

        t = _now() if now is None else int(now)
        if not user.token_expired(t):
            return False

        log(f"TRAKT: refreshing token for {user.username or user.id}", logger=logger)
        try:
            ts = self.refresh(user.refresh_token, cfg, client=client, now=t)
        except InvalidCredential as e:
            log(f"TRAKT: refresh rejected for {user.username or user.id}, clearing tokens", "WARN", logger)
            user.access_token = ""
            user.refresh_token = ""
            try:
                store.save(user)
            except StoreError as se:
                log(f"TRAKT: failed to persist cleared tokens: {se}", "ERROR", logger)
            raise AuthInvalid(str(e)) from e
        except TraktError as e:
            log(f"TRAKT: token refresh failed: {e}", "ERROR", logger)
            raise AuthTransient(str(e)) from e

        user.access_token = ts.access_token
        user.refresh_token = ts.refresh_token
        user.token_expires_at = ts.expires_at
        try:
            store.save(user)
        except StoreError as e:
            log(f"TRAKT: refreshed token not persisted: {e}", "ERROR", logger)
        log("TRAKT: refresh ok", "SUCCESS", logger)
        return True


PROVIDER = _TraktProvider()
__all__ = ["PROVIDER", "_TraktProvider", "TokenSet", "AuthInvalid", "AuthTransient"]
