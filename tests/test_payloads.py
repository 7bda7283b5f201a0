# tests/test_payloads.py
from __future__ import annotations

from datetime import date

import pytest

from providers.scrobble.actions import ActionKind, SyncAction
from providers.scrobble.payloads import build_payload, item_dict
from providers.trakt.client import PayloadError
from providers.trakt.resolver import MediaIdentity
from providers.webhooks.plexevent import MediaMetadata

MOVIE = MediaIdentity("movie", {"trakt": 16662, "imdb": "tt1375666"}, "Inception", 2010)
EPISODE = MediaIdentity("episode", {"trakt": 73482}, "Cat's in the Bag", 0, 1, 2)
SHOW = MediaIdentity("show", {"trakt": 1388}, "Breaking Bad", 2008)
TODAY = date(2024, 2, 9)


def test_scrobble_movie():
    target, body = build_payload(SyncAction(ActionKind.SCROBBLE_START, 12.5), MOVIE, version="1.2.3", today=TODAY)
    assert target == "start"
    assert body == {
        "progress": 12.5,
        "movie": {"ids": {"trakt": 16662, "imdb": "tt1375666"}, "title": "Inception", "year": 2010},
        "app_version": "1.2.3",
        "app_date": "2024-02-09",
    }


def test_scrobble_episode_uses_episode_key():
    target, body = build_payload(SyncAction(ActionKind.SCROBBLE_STOP, 100.0), EPISODE, today=TODAY)
    assert target == "stop"
    assert body["episode"] == {"ids": {"trakt": 73482}}
    assert "movie" not in body


def test_rate_episode():
    target, body = build_payload(SyncAction(ActionKind.RATE, rating=8), EPISODE)
    assert target == "ratings"
    assert body == {"episodes": [{"ids": {"trakt": 73482}, "rating": 8}]}


def test_rate_show():
    _, body = build_payload(SyncAction(ActionKind.RATE, rating=10), SHOW)
    assert body == {"shows": [{"ids": {"trakt": 1388}, "title": "Breaking Bad", "year": 2008, "rating": 10}]}


def test_rate_remove():
    target, body = build_payload(SyncAction(ActionKind.RATE_REMOVE), MOVIE)
    assert target == "ratings/remove"
    assert list(body) == ["movies"]
    assert "rating" not in body["movies"][0]


def test_collect_with_metadata():
    media = MOVIE.with_collection_info(MediaMetadata("digital", "uhd_4k", "dolby_truehd", "7.1", ""), "2024-02-09T16:00:00Z")
    target, body = build_payload(SyncAction(ActionKind.COLLECT), media)
    assert target == "collection"
    item = body["movies"][0]
    assert item["media_type"] == "digital"
    assert item["resolution"] == "uhd_4k"
    assert item["audio_channels"] == "7.1"
    assert "hdr" not in item
    assert item["collected_at"] == "2024-02-09T16:00:00Z"


def test_collect_without_added_at():
    _, body = build_payload(SyncAction(ActionKind.COLLECT), EPISODE)
    assert body == {"episodes": [{"ids": {"trakt": 73482}}]}


def test_empty_ids_dropped():
    assert item_dict(MediaIdentity("movie", {"trakt": 1, "tmdb": 0, "imdb": ""}))["ids"] == {"trakt": 1}


def test_unserializable_payload():
    media = MediaIdentity("movie", {"trakt": object()})
    with pytest.raises(PayloadError):
        build_payload(SyncAction(ActionKind.RATE, rating=5), media)


@pytest.mark.parametrize("kind", [ActionKind.IGNORE, ActionKind.SCROBBLE_CANCEL])
def test_no_payload_for_non_dispatch_actions(kind):
    with pytest.raises(PayloadError):
        build_payload(SyncAction(kind), MOVIE)


def test_show_cannot_be_scrobbled():
    with pytest.raises(PayloadError):
        build_payload(SyncAction(ActionKind.SCROBBLE_START, 1.0), SHOW)
