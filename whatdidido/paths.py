from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

APP_DIR_NAME = "WhatDidIDo"
HOME_ENV_VAR = "WHATDIDIDO_HOME"


def data_directory() -> Path:
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override)
    local_appdata = os.environ.get("LOCALAPPDATA")
    if local_appdata:
        base = Path(local_appdata)
    else:
        base = Path.home() / "AppData" / "Local"
    return base / APP_DIR_NAME


def thumbnails_directory() -> Path:
    return data_directory() / "thumbnails"


def logs_directory() -> Path:
    return data_directory() / "logs"


def database_path() -> Path:
    return data_directory() / "whatdidido.sqlite3"


def ensure_directories() -> None:
    thumbnails_directory().mkdir(parents=True, exist_ok=True)
    logs_directory().mkdir(parents=True, exist_ok=True)


def thumbnail_path(captured_at: datetime, root: Path | None = None) -> Path:
    day_folder = (root or thumbnails_directory()) / captured_at.strftime("%Y-%m-%d")
    day_folder.mkdir(parents=True, exist_ok=True)
    filename = captured_at.strftime("%Y%m%d_%H%M%S_%f") + ".jpg"
    return day_folder / filename
