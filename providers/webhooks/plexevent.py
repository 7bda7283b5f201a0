# providers/webhooks/plexevent.py
# Plaxt - Plex webhook payload models and parsing
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from _logging import emit

EVENT_PLAY = "media.play"
EVENT_PAUSE = "media.pause"
EVENT_RESUME = "media.resume"
EVENT_STOP = "media.stop"
EVENT_SCROBBLE = "media.scrobble"
EVENT_RATE = "media.rate"
EVENT_LIBRARY_NEW = "library.new"


class PlexAccount(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | None = None
    title: str | None = ""


class PlexServer(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: str | None = ""
    uuid: str | None = ""


class PlexGuid(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = ""


class PlexMetadata(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    librarySectionType: str | None = ""
    type: str | None = ""
    ratingKey: str | int | None = ""
    title: str | None = ""
    grandparentTitle: str | None = ""
    year: int | None = 0
    guids: list[PlexGuid] = Field(default_factory=list, alias="Guid")
    parentIndex: int | None = 0
    index: int | None = 0
    viewOffset: int | None = 0
    duration: int | None = 0
    userRating: float | None = 0.0
    rating: Any = None
    addedAt: int | None = 0


class PlexWebhook(BaseModel):
    """Plex webhook body (the multipart `payload` field)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event: str
    user: bool = True
    owner: bool = True
    viewOffset: int | None = None
    account: PlexAccount = Field(default_factory=PlexAccount, alias="Account")
    server: PlexServer = Field(default_factory=PlexServer, alias="Server")
    metadata: PlexMetadata = Field(default_factory=PlexMetadata, alias="Metadata")


@dataclass(frozen=True)
class WebhookEvent:
    event: str
    account: str
    server_uuid: str
    section_type: str
    item_type: str
    rating_key: str
    title: str
    show_title: str             # grandparentTitle; the show for episodes
    year: int
    guids: tuple[str, ...]
    season: int
    episode: int
    view_offset: int
    duration: int
    user_rating: float
    raw_rating: Any
    added_at: int

    @classmethod
    def from_payload(cls, p: PlexWebhook) -> "WebhookEvent":
        md = p.metadata
        offset = p.viewOffset if p.viewOffset is not None else md.viewOffset
        raw_rating = md.rating
        if isinstance(raw_rating, list):
            raw_rating = tuple(raw_rating)
        return cls(
            event=(p.event or "").strip().lower(),
            account=(p.account.title or "").strip(),
            server_uuid=(p.server.uuid or "").strip(),
            section_type=(md.librarySectionType or "").strip().lower(),
            item_type=(md.type or "").strip().lower(),
            rating_key=str(md.ratingKey or ""),
            title=md.title or "",
            show_title=md.grandparentTitle or "",
            year=int(md.year or 0),
            guids=tuple(g.id for g in md.guids if g.id),
            season=int(md.parentIndex or 0),
            episode=int(md.index or 0),
            view_offset=int(offset or 0),
            duration=int(md.duration or 0),
            user_rating=float(md.userRating or 0.0),
            raw_rating=raw_rating,
            added_at=int(md.addedAt or 0),
        )

    def describe(self) -> str:
        if self.item_type == "episode" and self.show_title:
            return f"{self.show_title} S{self.season:02d}E{self.episode:02d}" + (f" - {self.title}" if self.title else "")
        return f"{self.title} ({self.year})" if self.year else (self.title or "?")


def _loads(raw: bytes | str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
    obj = json.loads(text)
    if not isinstance(obj, dict):
        raise ValueError("webhook payload must be a JSON object")
    return obj


def parse_webhook(raw: bytes | str | Mapping[str, Any]) -> PlexWebhook:
    """Validate a raw Plex payload; raises ``ValueError`` (pydantic ``ValidationError`` included)."""
    return PlexWebhook.model_validate(_loads(raw))


def parse_event(raw: bytes | str | Mapping[str, Any]) -> WebhookEvent:
    return WebhookEvent.from_payload(parse_webhook(raw))


# Technical metadata for collection entries
@dataclass(frozen=True)
class MediaMetadata:
    media_type: str = ""
    resolution: str = ""
    audio: str = ""
    audio_channels: str = ""
    hdr: str = ""

    def to_dict(self) -> dict[str, str]:
        return {k: v for k, v in asdict(self).items() if v}


_RESOLUTIONS = {
    "4k": "uhd_4k",
    "2160": "uhd_4k",
    "1080": "hd_1080p",
    "720": "hd_720p",
    "480": "sd_480p",
    "576": "sd_576p",
}

_AUDIO = {
    "aac": "aac",
    "ac3": "dolby_digital",
    "eac3": "dolby_digital_plus",
    "dts": "dts",
    "dca": "dts",
    "truehd": "dolby_truehd",
    "flac": "flac",
    "mp3": "mp3",
    "pcm": "lpcm",
    "opus": "ogg_opus",
    "vorbis": "ogg",
}

_CHANNELS = {1: "1.0", 2: "2.0", 6: "5.1", 8: "7.1"}

_HDR = {"smpte2084": "hdr10", "arib-std-b67": "hlg"}


def extract_media_info(raw: bytes | str | Mapping[str, Any], logger: Any = None) -> MediaMetadata:
    try:
        obj = _loads(raw)
    except ValueError as e:
        emit(logger, f"error parsing media info: {e}", "WARN", module="WEBHOOK")
        return MediaMetadata()

    media = ((obj.get("Metadata") or {}).get("Media") or [])
    if not isinstance(media, list) or not media or not isinstance(media[0], dict):
        return MediaMetadata()
    m = media[0]

    try:
        channels = int(m.get("audioChannels") or 0)
    except (TypeError, ValueError):
        channels = 0

    hdr = ""
    for part in m.get("Part") or []:
        for stream in (part or {}).get("Stream") or []:
            if (stream or {}).get("streamType") == 1:
                hdr = _HDR.get(str(stream.get("colorTrc") or ""), hdr)

    return MediaMetadata(
        media_type="digital",
        resolution=_RESOLUTIONS.get(str(m.get("videoResolution") or "").lower(), ""),
        audio=_AUDIO.get(str(m.get("audioCodec") or "").lower(), ""),
        audio_channels=_CHANNELS.get(channels, ""),
        hdr=hdr,
    )


def format_collected_at(added_at: int) -> str:
    if not added_at:
        return ""
    return datetime.fromtimestamp(int(added_at), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
