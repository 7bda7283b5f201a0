# providers/trakt/resolver.py
# Plaxt - resolve Plex items to Trakt catalog entries
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import quote

from _logging import emit
from providers.trakt.client import TraktAPI, TraktDeadlineExceeded, TraktError
from providers.webhooks.plexevent import MediaMetadata, WebhookEvent

_ID_KEYS = ("trakt", "imdb", "tmdb", "tvdb", "tvrage")


class MediaNotFound(LookupError):
    pass


def sanitize_ids(ids: Mapping[str, Any] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k in _ID_KEYS:
        v = (ids or {}).get(k)
        if v is None or isinstance(v, bool):
            continue
        s = str(v).strip()
        if not s:
            continue
        if k == "imdb":
            out[k] = s
        elif s.isdigit() and int(s) > 0:
            out[k] = int(s)
    return out


def describe_ids(ids: Mapping[str, Any] | None) -> str:
    for k in _ID_KEYS:
        if (ids or {}).get(k):
            return f"{k}:{ids[k]}"  # type: ignore[index]
    return "none"


@dataclass(frozen=True)
class MediaIdentity:
    kind: str                                   # movie | episode | show
    ids: dict[str, Any]
    title: str = ""
    year: int = 0
    season: int = 0
    number: int = 0
    show: dict[str, Any] | None = None          # parent show of an episode, when known
    metadata: MediaMetadata | None = None       # collection only
    collected_at: str = ""                      # collection only

    @classmethod
    def movie(cls, d: Mapping[str, Any]) -> "MediaIdentity":
        return cls("movie", sanitize_ids(d.get("ids")), str(d.get("title") or ""), int(d.get("year") or 0))

    @classmethod
    def series(cls, d: Mapping[str, Any]) -> "MediaIdentity":
        return cls("show", sanitize_ids(d.get("ids")), str(d.get("title") or ""), int(d.get("year") or 0))

    @classmethod
    def episode(cls, d: Mapping[str, Any], show: Mapping[str, Any] | None = None) -> "MediaIdentity":
        return cls(
            "episode",
            sanitize_ids(d.get("ids")),
            str(d.get("title") or ""),
            0,
            int(d.get("season") or 0),
            int(d.get("number") or 0),
            show=dict(show) if show else None,
        )

    def with_collection_info(self, metadata: MediaMetadata | None, collected_at: str = "") -> "MediaIdentity":
        return replace(self, metadata=metadata, collected_at=collected_at)

    def label(self) -> str:
        if self.kind == "episode":
            show = (self.show or {}).get("title") or "?"
            return f"{show} S{self.season:02d}E{self.number:02d}"
        return f"{self.title} ({self.year})" if self.year else self.title


def split_guid(guid: str) -> tuple[str, str] | None:
    s = str(guid or "")
    idx = s.find("://")
    if idx == -1:
        return None
    service, ident = s[:idx], s[idx + 3:]
    if not service or not ident:
        return None
    return service, ident


def _pick_by_year(results: Iterable[Any], key: str, year: int) -> dict[str, Any] | None:
    for hit in results or []:
        item = (hit or {}).get(key) if isinstance(hit, dict) else None
        if not isinstance(item, dict):
            continue
        if not year or int(item.get("year") or 0) == year:
            return item
    return None


class MediaResolver:
    """Maps a webhook's Plex item onto a Trakt movie, episode or show. Read-only."""

    def __init__(self, api: TraktAPI, logger: Callable[..., None] | Any | None = None) -> None:
        self.api = api
        self.logger = logger

    def _emit(self, msg: str, level: str = "DEBUG") -> None:
        emit(self.logger, msg, level, module="RESOLVE")

    def resolve(self, ev: WebhookEvent) -> MediaIdentity:
        if ev.section_type == "movie":
            return self.find_movie(ev)
        if ev.section_type == "show":
            if ev.item_type == "show":
                return self.find_show(ev)
            return self.find_episode(ev)
        raise MediaNotFound(f"unsupported section type {ev.section_type!r}")

    def _search_guids(self, guids: Iterable[str], type_: str, parse: Callable[[list[Any]], MediaIdentity | None]) -> MediaIdentity | None:
        for guid in guids:
            parts = split_guid(guid)
            if parts is None:
                continue
            service, ident = parts
            self._emit(f"finding {type_} by guid service={service} id={ident}")
            try:
                res = self.api.get(f"/search/{service}/{quote(ident, safe='')}", {"type": type_})
            except TraktDeadlineExceeded:
                raise
            except TraktError as e:
                self._emit(f"guid search error {service}://{ident}: {e}")
                continue
            if not isinstance(res, list) or not res:
                continue
            found = parse(res)
            if found is not None:
                return found
        return None

    def find_movie(self, ev: WebhookEvent) -> MediaIdentity:
        def _parse(res: list[Any]) -> MediaIdentity | None:
            mv = (res[0] or {}).get("movie") if isinstance(res[0], dict) else None
            return MediaIdentity.movie(mv) if isinstance(mv, dict) else None

        found = self._search_guids(ev.guids, "movie", _parse)
        if found is not None:
            self._emit(f"tracking movie {found.label()} via {describe_ids(found.ids)}", "INFO")
            return found

        self._emit(f"finding movie by title title='{ev.title}' year={ev.year}")
        res = self.api.get("/search/movie", {"query": ev.title})
        mv = _pick_by_year(res if isinstance(res, list) else [], "movie", ev.year)
        if mv is None:
            raise MediaNotFound(f"could not find movie '{ev.title}' ({ev.year})")
        found = MediaIdentity.movie(mv)
        self._emit(f"tracking movie via title search {found.label()}", "INFO")
        return found

    def find_show(self, ev: WebhookEvent) -> MediaIdentity:
        def _parse(res: list[Any]) -> MediaIdentity | None:
            sh = (res[0] or {}).get("show") if isinstance(res[0], dict) else None
            return MediaIdentity.series(sh) if isinstance(sh, dict) else None

        found = self._search_guids(ev.guids, "show", _parse)
        if found is not None:
            return found

        title = ev.title or ev.show_title
        res = self.api.get("/search/show", {"query": title})
        sh = _pick_by_year(res if isinstance(res, list) else [], "show", ev.year)
        if sh is None:
            raise MediaNotFound(f"could not find show '{title}' ({ev.year})")
        return MediaIdentity.series(sh)

    def find_episode(self, ev: WebhookEvent) -> MediaIdentity:
        def _parse(res: list[Any]) -> MediaIdentity | None:
            hit = res[0] if isinstance(res[0], dict) else {}
            ep = hit.get("episode")
            return MediaIdentity.episode(ep, hit.get("show")) if isinstance(ep, dict) else None

        found = self._search_guids(ev.guids, "episode", _parse)
        if found is not None:
            self._emit(f"tracking episode {found.label()} via {describe_ids(found.ids)}", "INFO")
            return found

        self._emit(f"finding episode by show title title='{ev.show_title}' year={ev.year}")
        res = self.api.get("/search/show", {"query": ev.show_title})
        show = _pick_by_year(res if isinstance(res, list) else [], "show", ev.year)
        if show is None:
            raise MediaNotFound(f"could not find show '{ev.show_title}'")

        show_id = sanitize_ids(show.get("ids")).get("trakt")
        if not show_id:
            raise MediaNotFound(f"show '{ev.show_title}' has no trakt id")

        seasons = self.api.get(f"/shows/{show_id}/seasons", {"extended": "episodes"})
        for season in seasons if isinstance(seasons, list) else []:
            if not isinstance(season, dict) or int(season.get("number") or 0) != ev.season:
                continue
            for ep in season.get("episodes") or []:
                if isinstance(ep, dict) and int(ep.get("number") or 0) == ev.episode:
                    found = MediaIdentity.episode({**ep, "season": ev.season}, show)
                    self._emit(f"tracking episode via title search {found.label()}", "INFO")
                    return found
        raise MediaNotFound(f"could not find episode {ev.describe()}")
