# tests/test_webhook_api.py
from __future__ import annotations

import base64
import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

import plaxt
from api import webhookAPI
from providers.webhooks.plextrakt import user_lock
from px_platform.user_store import DiskUserStore, User

PAYLOAD = {
    "event": "media.play",
    "Account": {"title": "alice"},
    "Metadata": {"librarySectionType": "movie", "type": "movie", "title": "Inception", "year": 2010},
}


def _cfg(secret: str = "") -> dict:
    return {
        "trakt": {"client_id": "cid", "client_secret": "s", "rate_limit": {"rate": 2.0, "burst": 5}},
        "server": {"workers": 2, "run_timeout": 0, "webhook_secret": secret},
        "runtime": {"debug": False},
    }


@pytest.fixture
def runs(monkeypatch):
    calls: list[tuple] = []

    def fake_process(user_id, event, raw, **kw):
        calls.append((user_id, event, raw))
        user_lock(user_id).cancel(kw["ticket"])
        return {"ok": True, "state": "done"}

    monkeypatch.setattr(webhookAPI, "process_webhook", fake_process)
    return calls


@pytest.fixture
def store(tmp_path):
    s = DiskUserStore(tmp_path)
    s.save(User(id="u1", username="alice", plex_username="alice", access_token="a"))
    return s


def _client(store, secret: str = "") -> TestClient:
    return TestClient(plaxt.create_app(cfg=_cfg(secret), store=store))


def test_multipart_payload_is_scheduled(store, runs):
    with _client(store) as c:
        r = c.post("/api/webhook", params={"id": "u1"}, data={"payload": json.dumps(PAYLOAD)})
    assert r.status_code == 200
    assert r.json() == {"ok": True, "status": "processing in background"}
    webhookAPI.shutdown_executor(wait=True)
    assert len(runs) == 1
    user_id, event, _ = runs[0]
    assert user_id == "u1"
    assert event.event == "media.play"
    assert event.title == "Inception"


def test_raw_json_body(store, runs):
    with _client(store) as c:
        r = c.post("/api/webhook?id=u1", content=json.dumps(PAYLOAD), headers={"Content-Type": "application/json"})
    assert r.status_code == 200
    webhookAPI.shutdown_executor(wait=True)
    assert len(runs) == 1


def test_missing_id(store, runs):
    with _client(store) as c:
        r = c.post("/api/webhook", data={"payload": json.dumps(PAYLOAD)})
    assert r.status_code == 400
    assert runs == []


def test_unknown_user(store, runs):
    with _client(store) as c:
        r = c.post("/api/webhook", params={"id": "nobody"}, data={"payload": json.dumps(PAYLOAD)})
    assert r.status_code == 404


@pytest.mark.parametrize("payload", ["{not json", json.dumps({"Metadata": {}}), json.dumps([1])])
def test_invalid_payload(store, runs, payload):
    with _client(store) as c:
        r = c.post("/api/webhook", params={"id": "u1"}, data={"payload": payload})
    assert r.status_code == 400
    assert runs == []


def test_missing_payload_field(store, runs):
    with _client(store) as c:
        r = c.post("/api/webhook", params={"id": "u1"}, data={"other": "x"})
    assert r.status_code == 400


def test_signature_required_when_secret_set(store, runs):
    body = json.dumps(PAYLOAD).encode()
    sig = base64.b64encode(hmac.new(b"k", body, hashlib.sha1).digest()).decode()
    with _client(store, secret="k") as c:
        bad = c.post("/api/webhook?id=u1", content=body, headers={"Content-Type": "application/json"})
        good = c.post("/api/webhook?id=u1", content=body,
                      headers={"Content-Type": "application/json", "X-Plex-Signature": sig})
    assert bad.status_code == 401
    assert good.status_code == 200


def test_healthz(store):
    with _client(store) as c:
        r = c.get("/api/healthz")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.headers["Cache-Control"] == "no-store"


def test_user_config_round_trip(store):
    with _client(store) as c:
        assert c.get("/api/users/u1/config").json()["config"]["movie_collection"] is False
        r = c.put("/api/users/u1/config", json={"config": {"movie_collection": True}, "plex_username": "Alice2"})
        assert r.status_code == 200
        body = c.get("/api/users/u1/config").json()
    assert body["config"]["movie_collection"] is True
    assert body["plex_username"] == "Alice2"
    assert store.load("u1").access_token == "a"


def test_user_config_unknown_user(store):
    with _client(store) as c:
        assert c.put("/api/users/zz/config", json={"config": {}}).status_code == 404


@pytest.mark.parametrize("config", [[1, 2], "movie_rate", 5])
def test_user_config_rejects_non_object(store, config):
    with _client(store) as c:
        r = c.put("/api/users/u1/config", json={"config": config})
    assert r.status_code == 400
    assert store.load("u1").config.enabled("movie_rate") is True


def test_ticket_released_when_scheduling_fails(store, monkeypatch):
    class Closed:
        def submit(self, *a, **kw):
            raise RuntimeError("cannot schedule new futures after shutdown")

    monkeypatch.setattr(webhookAPI, "get_executor", lambda workers=8: Closed())
    with _client(store) as c:
        r = c.post("/api/webhook", params={"id": "u1"}, data={"payload": json.dumps(PAYLOAD)})
    assert r.status_code == 503
    assert user_lock("u1").acquire(timeout=1.0)
    user_lock("u1").release()
