# providers/scrobble/actions.py
# Plaxt - webhook event to sync action classification
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from providers.webhooks.plexevent import (
    EVENT_LIBRARY_NEW,
    EVENT_PAUSE,
    EVENT_PLAY,
    EVENT_RATE,
    EVENT_RESUME,
    EVENT_SCROBBLE,
    EVENT_STOP,
    WebhookEvent,
)

STOP_THRESHOLD = 90.0
CANCEL_BELOW = 1.0

_SECTIONS = ("movie", "show")
# Plex item types that map onto a Trakt rating or collection entry
_RATE_TYPES = {"movie": ("movie",), "show": ("show", "episode")}
_COLLECT_TYPES = {"movie": ("movie",), "show": ("episode",)}


class ActionKind(str, Enum):
    SCROBBLE_START = "start"
    SCROBBLE_PAUSE = "pause"
    SCROBBLE_STOP = "stop"
    SCROBBLE_CANCEL = "cancel"
    RATE = "rate"
    RATE_REMOVE = "rate_remove"
    COLLECT = "collect"
    IGNORE = "ignore"


@dataclass(frozen=True)
class SyncAction:
    kind: ActionKind
    progress: float | None = None
    rating: int | None = None

    @property
    def is_scrobble(self) -> bool:
        return self.kind in (ActionKind.SCROBBLE_START, ActionKind.SCROBBLE_PAUSE, ActionKind.SCROBBLE_STOP)

    @property
    def needs_media(self) -> bool:
        return self.kind not in (ActionKind.IGNORE, ActionKind.SCROBBLE_CANCEL)


IGNORE = SyncAction(ActionKind.IGNORE)


def compute_progress(view_offset: Any, duration: Any) -> float | None:
    """Playback position in percent, or ``None`` when the duration is unknown."""
    try:
        d = float(duration or 0)
        vo = float(view_offset or 0)
    except (TypeError, ValueError):
        return None
    if d <= 0:
        return None
    return max(0.0, min(100.0, vo * 100.0 / d))


def effective_rating(user_rating: Any, raw_rating: Any) -> int:
    def _num(v: Any) -> float:
        if isinstance(v, (list, tuple)):
            v = v[0] if v else 0
        if v is None or isinstance(v, bool):
            return 0.0
        try:
            return float(v)
        except (TypeError, ValueError):
            return 0.0

    rating = _num(user_rating)
    if rating == 0:
        rating = _num(raw_rating)
    if rating <= 0:
        return 0
    n = int(rating)
    if n < 1:
        n = 1
    return min(10, n)


def classify_playback(event: str, section_type: str, progress: float | None) -> SyncAction:
    if section_type not in _SECTIONS:
        return IGNORE

    if event == EVENT_SCROBBLE:
        return SyncAction(ActionKind.SCROBBLE_STOP, 100.0)

    p = 0.0 if progress is None else max(0.0, min(100.0, float(progress)))
    if event in (EVENT_PLAY, EVENT_RESUME):
        return SyncAction(ActionKind.SCROBBLE_START, p)
    if event == EVENT_PAUSE:
        kind = ActionKind.SCROBBLE_PAUSE
    elif event == EVENT_STOP:
        # an early stop is reported as a pause; Trakt rejects a premature stop
        kind = ActionKind.SCROBBLE_STOP if p >= STOP_THRESHOLD else ActionKind.SCROBBLE_PAUSE
    else:
        return IGNORE

    if p < CANCEL_BELOW:
        return SyncAction(ActionKind.SCROBBLE_CANCEL, p)
    return SyncAction(kind, p)


def classify(ev: WebhookEvent) -> SyncAction:
    if ev.event == EVENT_RATE:
        if ev.item_type not in _RATE_TYPES.get(ev.section_type, ()):
            return IGNORE
        rating = effective_rating(ev.user_rating, ev.raw_rating)
        if rating == 0:
            return SyncAction(ActionKind.RATE_REMOVE)
        return SyncAction(ActionKind.RATE, rating=rating)

    if ev.event == EVENT_LIBRARY_NEW:
        if ev.item_type not in _COLLECT_TYPES.get(ev.section_type, ()):
            return IGNORE
        return SyncAction(ActionKind.COLLECT)

    return classify_playback(ev.event, ev.section_type, compute_progress(ev.view_offset, ev.duration))
