"""
Configuration management for Clarity & Comfort
Settings live in config.json next to the local storage database
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from .paths import config_path

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")

DEFAULTS: dict[str, Any] = {
    "api_key": "",
    "chat_model": "gemini-2.5-flash",
    "vision_model": "gemini-3-pro-preview",
    "speech_model": "gemini-2.5-flash-preview-tts",
    "voice": "Kore",
    "request_timeout_seconds": 60,
    "appearance_mode": "light",
    "window_width": 1280,
    "window_height": 860,
}

logger = logging.getLogger(__name__)


class AppConfig:
    """Application settings merged over :data:`DEFAULTS`."""

    def __init__(self, config_file: Path | None = None, environ: dict[str, str] | None = None):
        self.config_file = Path(config_file) if config_file else config_path()
        self._environ = os.environ if environ is None else environ
        self._config = self._load_config()

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from file"""
        merged = dict(DEFAULTS)
        if not self.config_file.exists():
            return merged
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Error loading config %s: %s", self.config_file, exc)
            return merged
        if not isinstance(stored, dict):
            logger.warning("Ignoring config %s: expected a JSON object", self.config_file)
            return merged
        merged.update(stored)
        return merged

    def save(self) -> bool:
        """Save configuration to file"""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2)
        except OSError as exc:
            logger.error("Error saving config %s: %s", self.config_file, exc)
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value and save"""
        self._config[key] = value
        self.save()

    @property
    def api_key(self) -> str:
        for name in API_KEY_ENV_VARS:
            value = self._environ.get(name, "").strip()
            if value:
                return value
        return str(self._config.get("api_key") or "").strip()

    @property
    def request_timeout(self) -> float:
        try:
            value = float(self._config.get("request_timeout_seconds", DEFAULTS["request_timeout_seconds"]))
        except (TypeError, ValueError):
            return float(DEFAULTS["request_timeout_seconds"])
        return value if value > 0 else float(DEFAULTS["request_timeout_seconds"])


def configure_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)
