from __future__ import annotations

import json
import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class SettingsStoreError(RuntimeError):
    """Raised when a settings file cannot be saved."""


def overlay_defaults(defaults: Mapping[str, Any], stored: Mapping[str, Any]) -> dict[str, Any]:
    """Stored values win; nested objects present on both sides are overlaid key by key."""
    result = deepcopy(dict(defaults))
    for key, value in stored.items():
        base = result.get(key)
        if isinstance(base, dict) and isinstance(value, dict):
            result[key] = overlay_defaults(base, value)
        else:
            result[key] = deepcopy(value)
    return result


def dot_get(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    node: Any = data
    for part in key.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def dot_set(data: dict[str, Any], key: str, value: Any) -> None:
    *parents, leaf = key.split(".")
    node = data
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


class JsonSettingsStore:
    """A JSON object file read over a set of defaults and addressed by dotted keys."""

    def __init__(self, path: Path, defaults: Mapping[str, Any]) -> None:
        self.path = Path(path)
        self.defaults: dict[str, Any] = deepcopy(dict(defaults))
        self.data: dict[str, Any] = {}
        self.dirty = False

    def load(self) -> dict[str, Any]:
        stored: Any = {}
        if self.path.exists():
            try:
                stored = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable settings file %s: %s", self.path, exc)
        if not isinstance(stored, dict):
            logger.warning("Ignoring settings file %s: root is not a JSON object", self.path)
            stored = {}
        self.data = overlay_defaults(self.defaults, stored)
        self.dirty = False
        return self.data

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self.data, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            raise SettingsStoreError(f"Could not write settings file '{self.path}': {exc}") from exc
        self.dirty = False

    def get(self, key: str, default: Any = None) -> Any:
        return dot_get(self.data, key, default)

    def set(self, key: str, value: Any) -> None:
        if self.get(key) != value:
            dot_set(self.data, key, value)
            self.dirty = True


@dataclass(slots=True)
class AppSettings:
    dev_tools_enabled: bool = False
    oauth_client_id: str = ""
    oauth_client_secret: str = ""


APP_SETTINGS_DEFAULTS: dict[str, Any] = {
    "devToolsEnabled": False,
    "oauth": {
        "clientId": "",
        "clientSecret": "",
    },
}


class AppSettingsStore:
    """Plain (non-secret) application settings kept in ``settings.json``."""

    FILENAME = "settings.json"

    def __init__(self, app_dir: str | Path) -> None:
        self._store = JsonSettingsStore(Path(app_dir).expanduser() / self.FILENAME, APP_SETTINGS_DEFAULTS)

    @property
    def path(self) -> Path:
        return self._store.path

    def get_settings(self) -> AppSettings:
        self._store.load()
        client_id = self._store.get("oauth.clientId", "")
        client_secret = self._store.get("oauth.clientSecret", "")
        return AppSettings(
            dev_tools_enabled=bool(self._store.get("devToolsEnabled", False)),
            oauth_client_id=client_id if isinstance(client_id, str) else "",
            oauth_client_secret=client_secret if isinstance(client_secret, str) else "",
        )

    def set_dev_tools_enabled(self, enabled: bool) -> AppSettings:
        return self._update("devToolsEnabled", bool(enabled))

    def set_oauth_client_id(self, client_id: str) -> AppSettings:
        return self._update("oauth.clientId", str(client_id or ""))

    def set_oauth_client_secret(self, client_secret: str) -> AppSettings:
        return self._update("oauth.clientSecret", str(client_secret or ""))

    def _update(self, key: str, value: Any) -> AppSettings:
        self._store.load()
        self._store.set(key, value)
        if self._store.dirty:
            self._store.save()
        return self.get_settings()
