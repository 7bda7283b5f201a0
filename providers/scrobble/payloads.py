# providers/scrobble/payloads.py
# Plaxt - Trakt request bodies for sync actions
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from datetime import date
from typing import Any

from providers.scrobble.actions import ActionKind, SyncAction
from providers.trakt.client import PayloadError
from providers.trakt.resolver import MediaIdentity
from px_platform.config_base import APP_VERSION

_PLURAL = {"movie": "movies", "episode": "episodes", "show": "shows"}


def app_date(today: date | None = None) -> str:
    return (today or date.today()).strftime("%Y-%m-%d")


def item_dict(media: MediaIdentity) -> dict[str, Any]:
    ids = {k: v for k, v in (media.ids or {}).items() if v}
    out: dict[str, Any] = {"ids": ids}
    if media.kind == "episode":
        return out
    if media.title:
        out["title"] = media.title
    if media.year:
        out["year"] = media.year
    return out


def scrobble_body(media: MediaIdentity, progress: float, *, version: str = APP_VERSION, today: date | None = None) -> dict[str, Any]:
    if media.kind not in ("movie", "episode"):
        raise PayloadError(f"cannot scrobble a {media.kind}")
    return {
        "progress": round(float(progress), 2),
        media.kind: item_dict(media),
        "app_version": version,
        "app_date": app_date(today),
    }


def rate_body(media: MediaIdentity, rating: int) -> dict[str, Any]:
    item = item_dict(media)
    item["rating"] = int(rating)
    return {_PLURAL[media.kind]: [item]}


def rate_remove_body(media: MediaIdentity) -> dict[str, Any]:
    return {_PLURAL[media.kind]: [item_dict(media)]}


def collect_body(media: MediaIdentity) -> dict[str, Any]:
    if media.kind not in ("movie", "episode"):
        raise PayloadError(f"cannot collect a {media.kind}")
    item = item_dict(media)
    if media.metadata is not None:
        item.update(media.metadata.to_dict())
    if media.collected_at:
        item["collected_at"] = media.collected_at
    return {_PLURAL[media.kind]: [item]}


def build_payload(
    action: SyncAction,
    media: MediaIdentity,
    *,
    version: str = APP_VERSION,
    today: date | None = None,
) -> tuple[str, dict[str, Any]]:
    """Return ``(target, body)``: target is a scrobble action or a sync endpoint."""
    kind = action.kind
    if action.is_scrobble:
        body = scrobble_body(media, action.progress or 0.0, version=version, today=today)
        target = kind.value
    elif kind == ActionKind.RATE:
        body = rate_body(media, action.rating or 0)
        target = "ratings"
    elif kind == ActionKind.RATE_REMOVE:
        body = rate_remove_body(media)
        target = "ratings/remove"
    elif kind == ActionKind.COLLECT:
        body = collect_body(media)
        target = "collection"
    else:
        raise PayloadError(f"no payload for action {kind.value}")

    try:
        json.dumps(body)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"failed to serialize {kind.value} payload: {e}") from e
    return target, body
