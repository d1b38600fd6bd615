from __future__ import annotations

import os
from pathlib import Path

APP_DIR_NAME = "ClarityComfort"
HOME_ENV_VAR = "CLARITY_COMFORT_HOME"


def data_directory() -> Path:
    configured = os.environ.get(HOME_ENV_VAR)
    if configured:
        return Path(configured).expanduser()
    if os.name == "nt":
        local_appdata = os.environ.get("LOCALAPPDATA")
        base = Path(local_appdata) if local_appdata else Path.home() / "AppData" / "Local"
        return base / APP_DIR_NAME
    return Path.home() / ".local" / "share" / "clarity-comfort"


def storage_path(base: Path | None = None) -> Path:
    return (base or data_directory()) / "local_storage.sqlite3"


def config_path(base: Path | None = None) -> Path:
    return (base or data_directory()) / "config.json"


def ensure_directories(base: Path | None = None) -> Path:
    target = base or data_directory()
    target.mkdir(parents=True, exist_ok=True)
    return target
