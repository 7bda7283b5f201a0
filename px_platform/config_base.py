# px_platform/config_base.py
# configuration management base.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any

from _logging import log as BASE_LOG

APP_VERSION = "1.0.0"


def CONFIG_BASE() -> Path:
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        # In container image mount /config as a writable volume
        return Path("/config")
    return Path(__file__).resolve().parents[1]


# Default config
DEFAULT_CFG: dict[str, Any] = {
    "trakt": {
        "client_id": "",                                # From your Trakt app (TRAKT_ID overrides)
        "client_secret": "",                            # From your Trakt app (TRAKT_SECRET overrides)
        "api_base": "https://api.trakt.tv",             # Trakt API root
        "timeout": 30.0,                                # HTTP timeout (seconds)
        "max_attempts": 3,                              # Attempts per request (connection errors / 5xx)
        "rate_limit": {
            "rate": 2.0,                                # Tokens per second, shared by every user
            "burst": 5,                                 # Bucket capacity
        },
    },

    "server": {
        "host": "0.0.0.0",
        "port": 8000,
        "workers": 8,                                   # Concurrent webhook pipelines
        "run_timeout": 300,                             # Deadline per pipeline run (seconds); 0 = none
        "webhook_secret": "",                           # Plex X-Plex-Signature HMAC key; empty = not checked
    },

    "storage": {
        "users_dir": "",                                # Empty = <CONFIG_BASE>/users
    },

    "runtime": {
        "debug": False,                                 # Verbose DEBUG logging
        "version": APP_VERSION,                         # Sent as app_version on scrobbles
    },
}


_REDACT = "••••••••"

# Canonical list of secret field paths (each is a tuple of dict keys).
_SECRET_PATHS: list[tuple[str, ...]] = [
    ("trakt", "client_id"),
    ("trakt", "client_secret"),
    ("server", "webhook_secret"),
]


def _redact_path(d: dict[str, Any], path: tuple[str, ...]) -> None:
    """Walk *path* inside *d* and replace the leaf with _REDACT if truthy."""
    node: Any = d
    for key in path[:-1]:
        if not isinstance(node, dict):
            return
        node = node.get(key)
    if isinstance(node, dict):
        leaf = path[-1]
        if node.get(leaf):
            node[leaf] = _REDACT


def redact_config(cfg: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = copy.deepcopy(cfg or {})
    for path in _SECRET_PATHS:
        _redact_path(out, path)
    return out


# Helpers: paths, IO, merging, normalization
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"


def config_path() -> Path:
    return _cfg_file()


def _read_json(p: Path) -> dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(p: Path, data: dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out


def _read_secret_file(env_name: str) -> str:
    path = os.getenv(env_name)
    if not path:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        BASE_LOG(f"failed to read secret file {env_name}={path}: {e}", level="WARN", module="CONFIG")
        return ""


def _env_secret(name: str) -> str:
    return (os.getenv(name) or "").strip() or _read_secret_file(f"{name}_FILE")


def _apply_env(cfg: dict[str, Any]) -> None:
    tr = cfg.setdefault("trakt", {})
    cid = _env_secret("TRAKT_ID")
    if cid:
        tr["client_id"] = cid
    sec = _env_secret("TRAKT_SECRET")
    if sec:
        tr["client_secret"] = sec
    if os.getenv("PLAXT_DEBUG") == "1":
        cfg.setdefault("runtime", {})["debug"] = True


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _normalize(cfg: dict[str, Any]) -> None:
    tr = cfg["trakt"]
    tr["client_id"] = str(tr.get("client_id") or "").strip()
    tr["client_secret"] = str(tr.get("client_secret") or "").strip()
    tr["api_base"] = str(tr.get("api_base") or DEFAULT_CFG["trakt"]["api_base"]).strip().rstrip("/")
    tr["timeout"] = max(1.0, _as_float(tr.get("timeout"), 30.0))
    tr["max_attempts"] = max(1, _as_int(tr.get("max_attempts"), 3))
    rl = tr.setdefault("rate_limit", {})
    rl["rate"] = max(0.1, _as_float(rl.get("rate"), 2.0))
    rl["burst"] = max(1, _as_int(rl.get("burst"), 5))

    srv = cfg["server"]
    srv["port"] = _as_int(srv.get("port"), 8000)
    srv["workers"] = max(1, _as_int(srv.get("workers"), 8))
    srv["run_timeout"] = max(0, _as_int(srv.get("run_timeout"), 300))
    srv["webhook_secret"] = str(srv.get("webhook_secret") or "").strip()


# Public API
def load_config() -> dict[str, Any]:
    p = _cfg_file()
    user_cfg: dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError) as e:
            BASE_LOG(f"config.json unreadable, using defaults: {e}", level="ERROR", module="CONFIG")
            user_cfg = {}

    cfg = _deep_merge(DEFAULT_CFG, user_cfg)
    _apply_env(cfg)
    _normalize(cfg)
    return cfg


def users_dir(cfg: dict[str, Any]) -> Path:
    raw = str(((cfg.get("storage") or {}).get("users_dir")) or "").strip()
    return Path(raw) if raw else CONFIG_BASE() / "users"
