# /providers/webhooks/plextrakt.py
# Plaxt - Plex to Trakt webhook pipeline
# Copyright (c) 2025-2026 CrossWatch / Cenodude
from __future__ import annotations

import base64
import hashlib
import hmac
import threading
import time
from typing import Any, Callable, Mapping

from _logging import emit
from providers.auth._auth_TRAKT import PROVIDER, AuthInvalid, AuthTransient, _TraktProvider
from providers.scrobble.actions import ActionKind, SyncAction, classify
from providers.scrobble.payloads import build_payload
from providers.trakt.client import TraktAPI, TraktClient, TraktError
from providers.trakt.resolver import MediaNotFound, MediaResolver
from providers.webhooks.plexevent import WebhookEvent, extract_media_info, format_collected_at
from px_platform.config_base import APP_VERSION, load_config
from px_platform.user_store import StoreError, User, UserStore

# user id -> lock; entries live for the whole process
_USER_LOCKS: dict[str, UserLock] = {}
_USER_LOCKS_GUARD = threading.Lock()

_PLEX_SECRET_WARNED = False
_PLEX_SECRET_WARNED_LOCK = threading.Lock()


def _emit(logger: Callable[..., None] | Any | None, msg: str, level: str = "INFO") -> None:
    emit(logger, msg, level, module="SCROBBLE")


class UserLock:
    """Per-user FIFO lock: holders are served in the order they took a ticket."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._next = 0
        self._serving = 0
        self._dropped: set[int] = set()

    def ticket(self) -> int:
        with self._cond:
            t = self._next
            self._next += 1
            return t

    def wait(self, ticket: int, timeout: float | None = None) -> bool:
        with self._cond:
            if self._cond.wait_for(lambda: self._serving == ticket, timeout):
                return True
            self._dropped.add(ticket)
            return False

    def cancel(self, ticket: int) -> None:
        """Give up *ticket* without running; later tickets are not held back."""
        with self._cond:
            if ticket == self._serving:
                self._advance()
            elif ticket > self._serving:
                self._dropped.add(ticket)

    def release(self) -> None:
        with self._cond:
            self._advance()

    def _advance(self) -> None:
        self._serving += 1
        while self._serving in self._dropped:
            self._dropped.discard(self._serving)
            self._serving += 1
        self._cond.notify_all()

    def acquire(self, timeout: float | None = None) -> bool:
        return self.wait(self.ticket(), timeout)

    def __enter__(self) -> "UserLock":
        self.acquire()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.release()


def user_lock(user_id: str) -> UserLock:
    with _USER_LOCKS_GUARD:
        lk = _USER_LOCKS.get(user_id)
        if lk is None:
            lk = _USER_LOCKS[user_id] = UserLock()
        return lk


def verify_signature(raw: bytes | None, headers: Mapping[str, str], secret: str, logger: Callable[..., None] | None = None) -> bool:
    global _PLEX_SECRET_WARNED
    if not secret:
        with _PLEX_SECRET_WARNED_LOCK:
            if not _PLEX_SECRET_WARNED:
                _PLEX_SECRET_WARNED = True
                _emit(logger, "server.webhook_secret is empty, signature verification disabled", "WARN")
        return True
    if not raw:
        return False
    sig = headers.get("X-Plex-Signature") or headers.get("x-plex-signature")
    if not sig:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha1).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(sig.strip(), expected.strip())


def _media_prefix(ev: WebhookEvent, kind: ActionKind) -> str:
    if ev.section_type == "movie":
        return "movie"
    # shows only carry a rating preference
    if ev.item_type == "show" and kind in (ActionKind.RATE, ActionKind.RATE_REMOVE):
        return "show"
    return "episode"


def preference_key(action: SyncAction, ev: WebhookEvent) -> str | None:
    """Preference gating *action*; ``None`` for actions that always run."""
    kind = action.kind
    prefix = _media_prefix(ev, kind)
    if kind == ActionKind.SCROBBLE_START:
        return f"{prefix}_scrobble_start"
    if kind == ActionKind.SCROBBLE_STOP:
        return f"{prefix}_scrobble_stop"
    if kind in (ActionKind.RATE, ActionKind.RATE_REMOVE):
        return f"{prefix}_rate"
    if kind == ActionKind.COLLECT:
        return f"{prefix}_collection"
    return None


def account_matches(user: User, ev: WebhookEvent) -> bool:
    want = (user.plex_username or "").strip().lower()
    return bool(want) and want == (ev.account or "").strip().lower()


def _dispatch(api: TraktAPI, target: str, action: SyncAction, body: dict[str, Any]) -> Any:
    if action.is_scrobble:
        return api.scrobble(target, body)
    return api.sync(target, body)


def process_webhook(
    user_id: str,
    event: WebhookEvent,
    raw: bytes | str | Mapping[str, Any] | None = None,
    *,
    store: UserStore,
    cfg: dict[str, Any] | None = None,
    client_factory: Callable[[str], Any] | None = None,
    auth: _TraktProvider | None = None,
    logger: Callable[..., None] | Any | None = None,
    now: Callable[[], float] = time.time,
    clock: Callable[[], float] = time.monotonic,
    ticket: int | None = None,
) -> dict[str, Any]:
    """Run one webhook through the pipeline while holding the user's lock.

    *ticket* is a place taken earlier with ``user_lock(user_id).ticket()``; runs for
    one user execute in ticket order. Without one the run queues on entry.
    """
    cfg = cfg if cfg is not None else load_config()
    auth = auth or PROVIDER
    run_timeout = int((cfg.get("server") or {}).get("run_timeout") or 0)
    deadline = clock() + run_timeout if run_timeout > 0 else None

    if client_factory is None:
        def client_factory(token: str) -> Any:
            return TraktClient.from_config(cfg, token, deadline=deadline, clock=clock, logger=logger)

    lock = user_lock(user_id)
    if ticket is None:
        ticket = lock.ticket()
    if not lock.wait(ticket, timeout=run_timeout if run_timeout > 0 else None):
        _emit(logger, f"run for user {user_id} timed out waiting for the previous one", "ERROR")
        return {"ok": False, "state": "failed", "error": "deadline"}
    try:
        return _run(user_id, event, raw, store=store, cfg=cfg, client_factory=client_factory,
                    auth=auth, logger=logger, now=now)
    finally:
        lock.release()


def _run(
    user_id: str,
    ev: WebhookEvent,
    raw: bytes | str | Mapping[str, Any] | None,
    *,
    store: UserStore,
    cfg: dict[str, Any],
    client_factory: Callable[[str], Any],
    auth: _TraktProvider,
    logger: Any,
    now: Callable[[], float],
) -> dict[str, Any]:
    _emit(logger, f"incoming '{ev.event}' user='{ev.account}' server='{ev.server_uuid}' media='{ev.describe()}'", "DEBUG")

    try:
        user = store.load(user_id)
    except StoreError as e:
        _emit(logger, f"cannot load user {user_id}: {e}", "ERROR")
        return {"ok": False, "state": "failed", "error": "storage"}
    if user is None:
        _emit(logger, f"user {user_id} not found", "WARN")
        return {"ok": False, "state": "rejected", "error": "not_found"}

    try:
        auth.ensure_valid_token(user, store, cfg, client=client_factory(""), now=int(now()), logger=logger)
    except AuthInvalid:
        _emit(logger, f"user {user.username or user.id} must authorize Plaxt again", "WARN")
        return {"ok": False, "state": "aborted", "error": "auth_invalid"}
    except AuthTransient:
        return {"ok": False, "state": "aborted", "error": "auth_transient"}

    if not account_matches(user, ev):
        _emit(logger, f"ignored account '{ev.account}' (expect '{user.plex_username}')", "DEBUG")
        return {"ok": True, "ignored": True, "state": "rejected", "error": "account"}

    action = classify(ev)
    if action.kind == ActionKind.IGNORE:
        _emit(logger, f"event '{ev.event}' section='{ev.section_type}' ignored", "DEBUG")
        return {"ok": True, "ignored": True, "state": "done"}

    pref = preference_key(action, ev)
    if pref and not user.config.enabled(pref):
        _emit(logger, f"{action.kind.value} skipped, {pref} disabled for {user.username or user.id}", "DEBUG")
        return {"ok": True, "ignored": True, "state": "done", "action": action.kind.value}

    api = client_factory(user.access_token)

    if action.kind == ActionKind.SCROBBLE_CANCEL:
        try:
            api.delete_checkin()
        except TraktError as e:
            _emit(logger, f"checkin delete failed: {e}", "ERROR")
            return {"ok": False, "state": "failed", "action": action.kind.value, "error": str(e)}
        _emit(logger, f"cleared checkin for {ev.describe()} at {action.progress or 0:.1f}%")
        return {"ok": True, "state": "done", "action": action.kind.value}

    try:
        media = MediaResolver(api, logger).resolve(ev)
    except MediaNotFound as e:
        _emit(logger, f"{e}", "WARN")
        return {"ok": False, "state": "aborted", "action": action.kind.value, "error": "not_found"}
    except TraktError as e:
        _emit(logger, f"resolve failed for {ev.describe()}: {e}", "ERROR")
        return {"ok": False, "state": "failed", "action": action.kind.value, "error": str(e)}

    if action.kind == ActionKind.COLLECT:
        meta = extract_media_info(raw, logger) if raw is not None else None
        media = media.with_collection_info(meta, format_collected_at(ev.added_at))

    version = str((cfg.get("runtime") or {}).get("version") or APP_VERSION)
    try:
        target, body = build_payload(action, media, version=version)
        res = _dispatch(api, target, action, body)
    except TraktError as e:
        _emit(logger, f"{action.kind.value} failed for {media.label()}: {e}", "ERROR")
        return {"ok": False, "state": "failed", "action": action.kind.value, "error": str(e)}

    if action.is_scrobble:
        _emit(logger, f"scrobble {target} {media.label()} @ {action.progress or 0:.1f}%", "SUCCESS")
    else:
        _emit(logger, f"{target} {media.label()}", "SUCCESS")
    return {"ok": True, "state": "done", "action": action.kind.value, "trakt": res}
