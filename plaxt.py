# /plaxt.py
# Plaxt - Plex webhooks to Trakt
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Request

from _logging import log as LOG, BLUE, GREEN, DIM, RESET, configure as configure_logging
from api.authAPI import router as auth_router
from api.webhookAPI import router as webhook_router, shutdown_executor
from providers.trakt.client import configure_rate_limiter
from px_platform.config_base import APP_VERSION, config_path, load_config, redact_config, users_dir
from px_platform.user_store import DiskUserStore, UserStore


def _c(text: str, color: str) -> str:
    return f"{color}{text}{RESET}" if LOG.use_color else text


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    cfg = getattr(app.state, "cfg", None) or load_config()
    app.state.cfg = cfg
    configure_logging(debug=bool((cfg.get("runtime") or {}).get("debug")))
    configure_rate_limiter(cfg)
    if getattr(app.state, "store", None) is None:
        app.state.store = DiskUserStore(users_dir(cfg))

    boot = LOG.child("BOOT")
    if not (cfg.get("trakt") or {}).get("client_id"):
        boot.warn("trakt.client_id is empty; set TRAKT_ID or config.json")
    boot.debug(f"config: {json.dumps(redact_config(cfg), ensure_ascii=False)}")
    try:
        yield
    finally:
        shutdown_executor(wait=True)
        boot.info("stopped")


def create_app(cfg: dict[str, Any] | None = None, store: UserStore | None = None) -> FastAPI:
    app = FastAPI(title="Plaxt", version=APP_VERSION, lifespan=_lifespan)
    app.state.cfg = cfg
    app.state.store = store
    app.include_router(webhook_router)
    app.include_router(auth_router)

    @app.middleware("http")
    async def cache_headers_for_api(request: Request, call_next):
        resp = await call_next(request)
        if request.url.path.startswith("/api/"):
            resp.headers["Cache-Control"] = "no-store"
        return resp

    return app


app = create_app()


# Entry point
def main(host: str | None = None, port: int | None = None) -> None:
    cfg = load_config()
    configure_logging(debug=bool((cfg.get("runtime") or {}).get("debug")))
    srv = cfg.get("server") or {}
    host = host or str(srv.get("host") or "0.0.0.0")
    port = int(port or srv.get("port") or 8000)

    boot = LOG.child("BOOT")
    boot.info(_c(f"PLAXT {APP_VERSION} running:", BLUE))
    boot.info(f"  {_c('Bind:', DIM)}    {_c(f'{host}:{port}', GREEN)}")
    boot.info(f"  {_c('Webhook:', DIM)} {_c(f'http://{host}:{port}/api/webhook?id=<user id>', GREEN)}")
    boot.info(f"  {_c('Config:', DIM)}  {config_path()} (JSON)")
    boot.info(f"  {_c('Users:', DIM)}   {users_dir(cfg)}")
    boot.info("")

    debug = bool((cfg.get("runtime") or {}).get("debug"))
    uv_args: dict[str, Any] = {
        "host": host,
        "port": port,
        "log_level": ("debug" if debug else "warning"),
        "access_log": debug,
    }
    app.state.cfg = cfg
    uvicorn.run(app, **uv_args)


if __name__ == "__main__":
    main()
