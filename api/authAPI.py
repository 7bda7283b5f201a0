# /api/authAPI.py
# Plaxt - Trakt device authorization and per-user preferences
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from _logging import log
from providers.auth._auth_TRAKT import PROVIDER
from providers.webhooks.plextrakt import user_lock
from px_platform.user_store import StoreError, SyncPreferences

router = APIRouter(prefix="/api", tags=["auth"])

_LOG = log.child("AUTH")


def _nostore(res: JSONResponse) -> JSONResponse:
    res.headers["Cache-Control"] = "no-store"
    return res


@router.post("/auth/trakt/start")
async def api_trakt_start(request: Request) -> JSONResponse:
    res = await run_in_threadpool(PROVIDER.start, request.app.state.cfg, logger=_LOG)
    return _nostore(JSONResponse(res, status_code=200 if res.get("ok") else 502))


@router.post("/auth/trakt/finish")
async def api_trakt_finish(request: Request, payload: dict[str, Any] = Body(...)) -> JSONResponse:
    username = str(payload.get("username") or "").strip()
    if not username:
        return _nostore(JSONResponse({"ok": False, "status": "missing_username"}, status_code=400))
    res = await run_in_threadpool(
        lambda: PROVIDER.finish(
            request.app.state.cfg,
            device_code=str(payload.get("device_code") or ""),
            username=username,
            plex_username=str(payload.get("plex_username") or ""),
            store=request.app.state.store,
            logger=_LOG,
        )
    )
    return _nostore(JSONResponse(res))


@router.get("/users/{user_id}/config")
async def api_user_config(request: Request, user_id: str) -> JSONResponse:
    user = await run_in_threadpool(request.app.state.store.load, user_id)
    if user is None:
        return JSONResponse({"ok": False, "error": "user not found"}, status_code=404)
    prefs = {k: user.config.enabled(k) for k in asdict(user.config)}
    return _nostore(JSONResponse({"ok": True, "plex_username": user.plex_username, "config": prefs}))


def _update_user(store: Any, user_id: str, payload: dict[str, Any]) -> bool:
    # held across load and save; shared with the webhook pipeline
    with user_lock(user_id):
        user = store.load(user_id)
        if user is None:
            return False
        merged = {**asdict(user.config), **(payload.get("config") or {})}
        user.config = SyncPreferences.from_dict(merged)
        if "plex_username" in payload:
            user.plex_username = str(payload.get("plex_username") or "").strip()
        store.save(user)
        return True


@router.put("/users/{user_id}/config")
async def api_user_config_update(request: Request, user_id: str, payload: dict[str, Any] = Body(...)) -> JSONResponse:
    if not isinstance(payload.get("config") or {}, dict):
        return JSONResponse({"ok": False, "error": "config must be an object"}, status_code=400)
    try:
        found = await run_in_threadpool(_update_user, request.app.state.store, user_id, payload)
    except StoreError as e:
        _LOG.error(f"cannot save user {user_id}: {e}")
        return JSONResponse({"ok": False, "error": "storage"}, status_code=500)
    if not found:
        return JSONResponse({"ok": False, "error": "user not found"}, status_code=404)
    return _nostore(JSONResponse({"ok": True}))
