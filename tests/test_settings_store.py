from __future__ import annotations

import json

from gitea_desktop.app_paths import APP_DIR_ENV, default_app_dir
from gitea_desktop.settings_store import AppSettings, AppSettingsStore, JsonSettingsStore, dot_get, dot_set


def test_defaults_when_missing(tmp_path) -> None:
    assert AppSettingsStore(tmp_path).get_settings() == AppSettings()


def test_values_persist_across_instances(tmp_path) -> None:
    store = AppSettingsStore(tmp_path)
    store.set_dev_tools_enabled(True)
    store.set_oauth_client_id("cid")
    updated = store.set_oauth_client_secret("secret")

    assert updated == AppSettings(dev_tools_enabled=True, oauth_client_id="cid", oauth_client_secret="secret")
    assert AppSettingsStore(tmp_path).get_settings() == updated
    raw = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert raw["oauth"] == {"clientId": "cid", "clientSecret": "secret"}


def test_malformed_file_falls_back_to_defaults(tmp_path) -> None:
    (tmp_path / "settings.json").write_text("[1, 2", encoding="utf-8")
    store = JsonSettingsStore(tmp_path / "settings.json", {"a": {"b": 1}})

    data = store.load()

    assert data == {"a": {"b": 1}}
    assert not store.dirty
    assert AppSettingsStore(tmp_path).get_settings() == AppSettings()


def test_partial_file_is_merged_with_defaults(tmp_path) -> None:
    (tmp_path / "settings.json").write_text(json.dumps({"oauth": {"clientId": "x"}}), encoding="utf-8")

    settings = AppSettingsStore(tmp_path).get_settings()

    assert settings.oauth_client_id == "x"
    assert settings.oauth_client_secret == ""
    assert settings.dev_tools_enabled is False


def test_non_object_root_is_ignored(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("[1, 2]", encoding="utf-8")

    assert JsonSettingsStore(path, {"a": 1}).load() == {"a": 1}
    assert path.read_text(encoding="utf-8") == "[1, 2]"


def test_unchanged_value_is_not_written(tmp_path) -> None:
    AppSettingsStore(tmp_path).set_dev_tools_enabled(False)

    assert not (tmp_path / "settings.json").exists()


def test_dot_helpers() -> None:
    data: dict = {}
    dot_set(data, "a.b.c", 3)
    assert data == {"a": {"b": {"c": 3}}}
    assert dot_get(data, "a.b.c") == 3
    assert dot_get(data, "a.x", "fallback") == "fallback"
    assert dot_get(data, "a.b.c.d", "fallback") == "fallback"
    dot_set(data, "a.b", "flat")
    assert data == {"a": {"b": "flat"}}


def test_app_dir_override(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv(APP_DIR_ENV, str(tmp_path / "custom"))
    assert default_app_dir() == str(tmp_path / "custom")
    monkeypatch.delenv(APP_DIR_ENV)
    assert default_app_dir().endswith(".gitea-desktop")
