# /api/webhookAPI.py
# Plaxt - Plex webhook ingress
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from _logging import log
from providers.webhooks.plexevent import parse_event
from providers.webhooks.plextrakt import process_webhook, user_lock, verify_signature
from px_platform.config_base import APP_VERSION
from px_platform.user_store import StoreError

router = APIRouter(prefix="/api", tags=["webhook"])

_LOG = log.child("WEBHOOK")

_EXEC: ThreadPoolExecutor | None = None
_EXEC_LOCK = threading.Lock()


def get_executor(workers: int = 8) -> ThreadPoolExecutor:
    global _EXEC
    with _EXEC_LOCK:
        if _EXEC is None:
            _EXEC = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="plaxt-run")
        return _EXEC


def shutdown_executor(wait: bool = True) -> None:
    global _EXEC
    with _EXEC_LOCK:
        ex, _EXEC = _EXEC, None
    if ex is not None:
        ex.shutdown(wait=wait)


def _bad(status: int, error: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": error}, status_code=status)


def _report(fut: Future) -> None:
    exc = fut.exception()
    if exc is not None:
        _LOG.error(f"webhook run crashed: {exc!r}")
        return
    res = fut.result() or {}
    if not res.get("ok"):
        _LOG.debug(f"webhook run ended state={res.get('state')} error={res.get('error')}")


async def _read_payload(request: Request, body: bytes) -> bytes | str | None:
    ctype = (request.headers.get("content-type") or "").lower()
    if ctype.startswith("multipart/form-data") or ctype.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        payload = form.get("payload")
        if payload is None:
            return None
        if isinstance(payload, str):
            return payload
        return await payload.read()
    return body or None


@router.post("/webhook")
async def api_webhook(request: Request, user_id: str = Query("", alias="id")) -> JSONResponse:
    uid = (user_id or "").strip()
    if not uid:
        return _bad(400, "missing id")

    st = request.app.state
    cfg: dict[str, Any] = st.cfg
    store = st.store

    try:
        user = await run_in_threadpool(store.load, uid)
    except StoreError as e:
        _LOG.error(f"cannot load user {uid}: {e}")
        return _bad(500, "storage")
    if user is None:
        return _bad(404, "user not found")

    body = await request.body()
    secret = str((cfg.get("server") or {}).get("webhook_secret") or "")
    if not verify_signature(body, request.headers, secret, logger=_LOG):
        _LOG.warn("invalid X-Plex-Signature")
        return _bad(401, "invalid_signature")

    raw = await _read_payload(request, body)
    if not raw:
        return _bad(400, "missing payload")
    try:
        event = parse_event(raw)
    except (ValidationError, ValueError) as e:
        _LOG.warn(f"rejected webhook for {uid}: {e}")
        return _bad(400, "invalid payload")

    workers = int((cfg.get("server") or {}).get("workers") or 8)
    # place in the user's queue is fixed here, before the worker picks the run up
    lock = user_lock(uid)
    ticket = lock.ticket()
    try:
        fut = get_executor(workers).submit(
            process_webhook, uid, event, raw, store=store, cfg=cfg, logger=_LOG, ticket=ticket
        )
    except RuntimeError as e:
        lock.cancel(ticket)
        _LOG.error(f"cannot schedule webhook for {uid}: {e}")
        return _bad(503, "shutting down")
    fut.add_done_callback(_report)
    return JSONResponse({"ok": True, "status": "processing in background"})


@router.get("/healthz")
def api_healthz() -> dict[str, Any]:
    return {"ok": True, "version": APP_VERSION}
