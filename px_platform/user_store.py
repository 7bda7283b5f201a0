# px_platform/user_store.py
# Plaxt user records and the JSON file store behind them.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import re
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Protocol

from px_platform.config_base import write_json_atomic

# Unset preferences fall back to these.
_PREF_DEFAULTS: dict[str, bool] = {
    "movie_scrobble_start": True,
    "movie_scrobble_stop": True,
    "movie_rate": True,
    "movie_collection": False,
    "episode_scrobble_start": True,
    "episode_scrobble_stop": True,
    "episode_rate": True,
    "episode_collection": False,
    "show_rate": True,
}

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class SyncPreferences:
    movie_scrobble_start: bool | None = None
    movie_scrobble_stop: bool | None = None
    movie_rate: bool | None = None
    movie_collection: bool | None = None
    episode_scrobble_start: bool | None = None
    episode_scrobble_stop: bool | None = None
    episode_rate: bool | None = None
    episode_collection: bool | None = None
    show_rate: bool | None = None

    def enabled(self, key: str) -> bool:
        if key not in _PREF_DEFAULTS:
            raise KeyError(key)
        v = getattr(self, key)
        return _PREF_DEFAULTS[key] if v is None else bool(v)

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "SyncPreferences":
        d = d or {}
        out = cls()
        for f in fields(cls):
            v = d.get(f.name)
            if isinstance(v, bool):
                setattr(out, f.name, v)
        return out


@dataclass
class User:
    id: str
    username: str = ""
    plex_username: str = ""
    access_token: str = ""
    refresh_token: str = ""
    token_expires_at: int = 0
    config: SyncPreferences = field(default_factory=SyncPreferences)

    @classmethod
    def new(cls, username: str, access_token: str, refresh_token: str, expires_in: int, created_at: int | None = None) -> "User":
        created = int(created_at if created_at is not None else time.time())
        return cls(
            id=uuid.uuid4().hex,
            username=username,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=created + int(expires_in or 0),
        )

    def token_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) >= self.token_expires_at

    def is_authorized(self) -> bool:
        return bool(self.access_token)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "User":
        try:
            exp = int(d.get("token_expires_at") or 0)
        except (TypeError, ValueError):
            exp = 0
        return cls(
            id=str(d.get("id") or ""),
            username=str(d.get("username") or ""),
            plex_username=str(d.get("plex_username") or ""),
            access_token=str(d.get("access_token") or ""),
            refresh_token=str(d.get("refresh_token") or ""),
            token_expires_at=exp,
            config=SyncPreferences.from_dict(d.get("config")),
        )


class UserStore(Protocol):
    def load(self, user_id: str) -> User | None: ...
    def save(self, user: User) -> None: ...


class StoreError(RuntimeError):
    pass


class DiskUserStore:
    """One JSON document per user, written atomically."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, user_id: str) -> Path:
        if not user_id or not _SAFE_ID.match(user_id):
            raise StoreError(f"invalid user id {user_id!r}")
        return self.root / f"{user_id}.json"

    def load(self, user_id: str) -> User | None:
        try:
            p = self._path(user_id)
        except StoreError:
            return None
        if not p.exists():
            return None
        try:
            with p.open("r", encoding="utf-8") as f:
                return User.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            raise StoreError(f"cannot read user {user_id}: {e}") from e

    def save(self, user: User) -> None:
        p = self._path(user.id)
        try:
            with self._lock:
                write_json_atomic(p, user.to_dict())
        except OSError as e:
            raise StoreError(f"cannot write user {user.id}: {e}") from e

    def delete(self, user_id: str) -> bool:
        try:
            p = self._path(user_id)
        except StoreError:
            return False
        try:
            p.unlink()
            return True
        except FileNotFoundError:
            return False

    def find_by_username(self, username: str) -> User | None:
        want = (username or "").strip().lower()
        if not want or not self.root.exists():
            return None
        for p in sorted(self.root.glob("*.json")):
            u = self.load(p.stem)
            if u and u.username.lower() == want:
                return u
        return None
