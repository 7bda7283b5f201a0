# tests/test_redact_config.py
from __future__ import annotations

import copy
import json

from px_platform import config_base
from px_platform.config_base import _SECRET_PATHS, _REDACT, load_config, redact_config


def _build_cfg_with_secrets() -> dict:
    """Build a minimal config dict with a truthy value at every _SECRET_PATHS location."""
    cfg: dict = {}
    for path in _SECRET_PATHS:
        node = cfg
        for key in path[:-1]:
            node = node.setdefault(key, {})
        node[path[-1]] = "secret_value"
    return cfg


def test_all_secret_paths_redacted():
    cfg = _build_cfg_with_secrets()
    out = redact_config(cfg)
    for path in _SECRET_PATHS:
        node = out
        for key in path[:-1]:
            assert isinstance(node, dict)
            node = node[key]
        assert node[path[-1]] == _REDACT, f"Path {path} was not redacted"


def test_non_secrets_preserved():
    cfg = _build_cfg_with_secrets()
    cfg["trakt"]["api_base"] = "https://api.trakt.tv"
    cfg["server"]["port"] = 8000
    out = redact_config(cfg)
    assert out["trakt"]["api_base"] == "https://api.trakt.tv"
    assert out["server"]["port"] == 8000


def test_missing_fields_dont_crash():
    """redact_config should not crash on empty or partial configs."""
    assert redact_config({}) == {}
    assert redact_config({"trakt": {}}) == {"trakt": {}}
    assert redact_config({"server": None}) == {"server": None}


def test_empty_secret_not_redacted():
    """Empty-string secrets should stay empty, not get the redaction marker."""
    cfg = {"trakt": {"client_secret": ""}}
    out = redact_config(cfg)
    assert out["trakt"]["client_secret"] == ""


def test_original_not_mutated():
    cfg = _build_cfg_with_secrets()
    original = copy.deepcopy(cfg)
    redact_config(cfg)
    assert cfg == original


class TestLoadConfig:
    def _isolate(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
        for name in ("TRAKT_ID", "TRAKT_SECRET", "TRAKT_ID_FILE", "TRAKT_SECRET_FILE", "PLAXT_DEBUG"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults_without_file(self, monkeypatch, tmp_path):
        self._isolate(monkeypatch, tmp_path)
        cfg = load_config()
        assert cfg["trakt"]["rate_limit"] == {"rate": 2.0, "burst": 5}
        assert cfg["trakt"]["max_attempts"] == 3
        assert cfg["server"]["run_timeout"] == 300
        assert config_base.users_dir(cfg) == tmp_path / "users"

    def test_file_is_deep_merged(self, monkeypatch, tmp_path):
        self._isolate(monkeypatch, tmp_path)
        (tmp_path / "config.json").write_text(json.dumps({"trakt": {"client_id": " abc ", "rate_limit": {"burst": 9}}}))
        cfg = load_config()
        assert cfg["trakt"]["client_id"] == "abc"
        assert cfg["trakt"]["rate_limit"] == {"rate": 2.0, "burst": 9}
        assert cfg["trakt"]["api_base"] == "https://api.trakt.tv"

    def test_env_overrides_credentials(self, monkeypatch, tmp_path):
        self._isolate(monkeypatch, tmp_path)
        secret_file = tmp_path / "secret.txt"
        secret_file.write_text("from-file\n")
        monkeypatch.setenv("TRAKT_ID", "env-id")
        monkeypatch.setenv("TRAKT_SECRET_FILE", str(secret_file))
        cfg = load_config()
        assert cfg["trakt"]["client_id"] == "env-id"
        assert cfg["trakt"]["client_secret"] == "from-file"

    def test_unreadable_file_falls_back_to_defaults(self, monkeypatch, tmp_path):
        self._isolate(monkeypatch, tmp_path)
        (tmp_path / "config.json").write_text("{not json")
        cfg = load_config()
        assert cfg["server"]["port"] == 8000

