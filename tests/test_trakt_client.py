# tests/test_trakt_client.py
from __future__ import annotations

import json
import threading

import pytest
import requests

from providers.trakt.client import (
    DeviceCodeError,
    InvalidCredential,
    PayloadError,
    TokenBucket,
    TraktClient,
    TraktDeadlineExceeded,
    TraktHTTPError,
    TraktUnavailable,
)


class FakeResponse:
    def __init__(self, status_code: int, body=None):
        self.status_code = status_code
        self.content = b"" if body is None else json.dumps(body).encode()
        self.text = self.content.decode()

    def json(self):
        return json.loads(self.content)


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "data": data, "headers": headers})
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def _client(session, **kw):
    sleeps: list[float] = []
    kw.setdefault("limiter", TokenBucket(1000.0, 1000))
    c = TraktClient("cid", "tok", session=session, sleep=sleeps.append, **kw)
    return c, sleeps


class TestRetryPolicy:
    def test_recovers_after_two_server_errors(self):
        s = FakeSession(FakeResponse(500), FakeResponse(502), FakeResponse(200, [{"movie": {}}]))
        c, sleeps = _client(s)
        assert c.get("/search/movie", {"query": "Heat"}) == [{"movie": {}}]
        assert len(s.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_three_server_errors_no_fourth_attempt(self):
        s = FakeSession(FakeResponse(500), FakeResponse(503), FakeResponse(500), FakeResponse(200, {}))
        c, sleeps = _client(s)
        with pytest.raises(TraktUnavailable):
            c.get("/search/movie")
        assert len(s.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_connection_errors_retry(self):
        s = FakeSession(requests.ConnectionError("boom"), FakeResponse(200, {"ok": 1}))
        c, sleeps = _client(s)
        assert c.get("/x") == {"ok": 1}
        assert sleeps == [1.0]

    def test_client_error_is_immediate(self):
        s = FakeSession(FakeResponse(404), FakeResponse(200, {}))
        c, sleeps = _client(s)
        with pytest.raises(TraktHTTPError) as ei:
            c.get("/search/tmdb/1")
        assert ei.value.status == 404
        assert len(s.calls) == 1
        assert sleeps == []

    def test_no_content(self):
        s = FakeSession(FakeResponse(204))
        c, _ = _client(s)
        assert c.sync("ratings", {"movies": []}) is None

    def test_unexpected_status_fails(self):
        s = FakeSession(FakeResponse(302))
        c, _ = _client(s)
        with pytest.raises(TraktHTTPError):
            c.get("/x")

    def test_deadline_stops_backoff(self):
        clock = FakeClock(0.0)
        s = FakeSession(FakeResponse(500), FakeResponse(200, {}))
        c, sleeps = _client(s, clock=clock, deadline=0.5)
        with pytest.raises(TraktDeadlineExceeded):
            c.get("/x")
        assert len(s.calls) == 1
        assert sleeps == []


class TestRequestShape:
    def test_headers(self):
        s = FakeSession(FakeResponse(201, {}))
        c, _ = _client(s)
        c.scrobble("start", {"progress": 1.0})
        h = s.calls[0]["headers"]
        assert h["Content-Type"] == "application/json"
        assert h["trakt-api-version"] == "2"
        assert h["trakt-api-key"] == "cid"
        assert h["Authorization"] == "Bearer tok"

    def test_no_bearer_without_token(self):
        c = TraktClient("cid", "", session=FakeSession())
        assert "Authorization" not in c.headers()

    def test_scrobble_path_and_body(self):
        s = FakeSession(FakeResponse(201, {"action": "start"}))
        c, _ = _client(s)
        c.scrobble("pause", {"progress": 42.0})
        call = s.calls[0]
        assert call["method"] == "POST"
        assert call["url"] == "https://api.trakt.tv/scrobble/pause"
        assert json.loads(call["data"]) == {"progress": 42.0}

    def test_unknown_scrobble_action(self):
        c, _ = _client(FakeSession())
        with pytest.raises(ValueError):
            c.scrobble("rewind", {})

    def test_unserializable_body(self):
        c, _ = _client(FakeSession())
        with pytest.raises(PayloadError):
            c.sync("collection", {"movies": [object()]})

    def test_delete_checkin_404_is_fine(self):
        s = FakeSession(FakeResponse(404))
        c, _ = _client(s)
        c.delete_checkin()
        assert s.calls[0]["method"] == "DELETE"
        assert s.calls[0]["url"].endswith("/checkin")

    def test_from_config(self):
        cfg = {"trakt": {"client_id": "abc", "api_base": "https://trakt.example/", "timeout": 5, "max_attempts": 2}}
        c = TraktClient.from_config(cfg, "tok", session=FakeSession())
        assert c.client_id == "abc"
        assert c.url("/sync/ratings") == "https://trakt.example/sync/ratings"
        assert c.max_attempts == 2


class TestOAuth:
    def test_rejected_refresh(self):
        c, _ = _client(FakeSession(FakeResponse(401, {"error": "invalid_grant"})))
        with pytest.raises(InvalidCredential):
            c.oauth_token({"refresh_token": "r"})

    @pytest.mark.parametrize("status,reason", [(404, "invalid_code"), (409, "already_used"), (410, "expired")])
    def test_device_code_errors(self, status, reason):
        c, _ = _client(FakeSession(FakeResponse(status)))
        with pytest.raises(DeviceCodeError) as ei:
            c.poll_device_token("dc", "secret")
        assert ei.value.reason == reason

    def test_device_code_pending(self):
        c, _ = _client(FakeSession(FakeResponse(400)))
        assert c.poll_device_token("dc", "secret") is None

    def test_device_code_approved(self):
        s = FakeSession(FakeResponse(200, {"access_token": "a", "refresh_token": "r"}))
        c, _ = _client(s)
        assert c.poll_device_token("dc", "secret")["access_token"] == "a"
        assert json.loads(s.calls[0]["data"]) == {"code": "dc", "client_id": "cid", "client_secret": "secret"}


def _take(bucket) -> bool:
    try:
        bucket.acquire(timeout=0.0)
    except TraktDeadlineExceeded:
        return False
    return True


class TestTokenBucket:
    def test_burst_then_rate(self):
        clock = FakeClock()
        b = TokenBucket(2.0, 5, clock=clock)
        granted = 0
        # 10 simulated seconds polled every 50ms
        for step in range(201):
            clock.t = step * 0.05
            while _take(b):
                granted += 1
        assert granted <= 5 + 2 * 10
        assert granted >= 5 + 2 * 10 - 1

    def test_acquire_times_out(self):
        clock = FakeClock()
        b = TokenBucket(2.0, 1, clock=clock)
        b.acquire()
        with pytest.raises(TraktDeadlineExceeded):
            b.acquire(timeout=0.0)

    def test_cancel(self):
        b = TokenBucket(0.001, 1)
        b.acquire()
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(TraktDeadlineExceeded):
            b.acquire(cancel=cancel)

    def test_shared_by_clients(self):
        clock = FakeClock()
        bucket = TokenBucket(2.0, 2, clock=clock)
        c1 = TraktClient("a", session=FakeSession(FakeResponse(200, {})), limiter=bucket)
        c2 = TraktClient("b", session=FakeSession(FakeResponse(200, {})), limiter=bucket)
        c1.get("/x")
        c2.get("/x")
        assert _take(bucket) is False
