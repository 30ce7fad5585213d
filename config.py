"""Simple JSON-based config store and the settings consumed by the core."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

API_KEY_ENV = "SEGSCRIBE_API_KEY"
DEFAULT_BASE_URL = "https://api.lemonfox.ai/v1/audio"
# audio_format -> (soundfile container, subtype)
SUPPORTED_FORMATS = {
    "wav": ("WAV", "PCM_16"),
    "flac": ("FLAC", "PCM_16"),
    "ogg": ("OGG", "VORBIS"),
}


def container_for(audio_format: str) -> tuple[str, str]:
    return SUPPORTED_FORMATS.get(audio_format.lower(), SUPPORTED_FORMATS["wav"])


def _default_data_dir() -> str:
    return str(Path.home() / ".local" / "share" / "segscribe")


@dataclass
class AppSettings:
    audio_format: str = "wav"
    bit_rate: int = 128000
    sample_rate: int = 48000
    segment_duration_s: float = 30.0
    api_base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    max_retry: int = 5
    base_delay_s: float = 1.0
    request_timeout_s: float = 30.0
    level_history_size: int = 200
    recordings_dir: str = field(default_factory=_default_data_dir)
    vosk_model_path: str = ""
    hotkey: str = "Key.alt_l"

    @property
    def segments_dir(self) -> str:
        return str(Path(self.recordings_dir) / "segments")

    @property
    def store_path(self) -> str:
        return str(Path(self.recordings_dir) / "recordings.json")


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "segscribe" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "") or os.getenv(API_KEY_ENV, ""))

    def set_api_key(self, key: str) -> None:
        self.set("api_key", key)

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def load_settings(self) -> AppSettings:
        """Build settings from stored values, keeping defaults for bad ones."""
        settings = AppSettings()
        data = self._read_all()
        for f in fields(AppSettings):
            if f.name not in data:
                continue
            current = getattr(settings, f.name)
            try:
                value = type(current)(data[f.name])
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid setting %s=%r", f.name, data[f.name])
                continue
            setattr(settings, f.name, value)
        settings.api_key = self.get_api_key()
        return _sanitize(settings)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _sanitize(settings: AppSettings) -> AppSettings:
    defaults = AppSettings()
    settings.audio_format = settings.audio_format.lower()
    if settings.audio_format not in SUPPORTED_FORMATS:
        settings.audio_format = defaults.audio_format
    if settings.sample_rate <= 0:
        settings.sample_rate = defaults.sample_rate
    if settings.segment_duration_s <= 0:
        settings.segment_duration_s = defaults.segment_duration_s
    if settings.max_retry < 1:
        settings.max_retry = defaults.max_retry
    if settings.base_delay_s < 0:
        settings.base_delay_s = defaults.base_delay_s
    if settings.request_timeout_s <= 0:
        settings.request_timeout_s = defaults.request_timeout_s
    if settings.level_history_size < 1:
        settings.level_history_size = defaults.level_history_size
    return settings
