from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "Gitea Desktop"
APP_DIRNAME = ".gitea-desktop"
APP_DIR_ENV = "GITEA_DESKTOP_APP_DIR"


def default_app_dir() -> str:
    override = os.environ.get(APP_DIR_ENV, "").strip()
    if override:
        return str(Path(override).expanduser())
    return str(Path.home() / APP_DIRNAME)
