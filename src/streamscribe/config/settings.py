from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from streamscribe.config.paths import DEFAULT_MODEL_NAME


@dataclass(slots=True)
class AudioSettings:
    input_sample_rate_hz: int = 16000
    chunk_threshold_bytes: int = 192_000
    overlap_ratio: float = 0.25
    input_host_api: str = ""
    input_device: str = ""

    def validate(self) -> None:
        if self.input_sample_rate_hz <= 0:
            raise ValueError("input_sample_rate_hz must be > 0")
        if self.chunk_threshold_bytes <= 0:
            raise ValueError("chunk_threshold_bytes must be > 0")
        if self.chunk_threshold_bytes % 2:
            raise ValueError("chunk_threshold_bytes must be a whole number of 16-bit samples")
        if not (0.0 <= self.overlap_ratio < 1.0):
            raise ValueError("overlap_ratio must be in 0.0..1.0 (exclusive)")
        if self.input_host_api is None:
            raise ValueError("input_host_api must be a string")
        if self.input_device is None:
            raise ValueError("input_device must be a string")


@dataclass(slots=True)
class WhisperSettings:
    binary_path: str = ""
    model_path: str = ""
    model_name: str = DEFAULT_MODEL_NAME
    threads: int = 4
    language: str = "en"
    timeout_s: float = 30.0
    max_concurrent_processes: int = 1

    def validate(self) -> None:
        if not self.model_name:
            raise ValueError("model_name must be non-empty")
        if self.threads <= 0:
            raise ValueError("threads must be > 0")
        if not self.language:
            raise ValueError("language must be non-empty")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        if self.max_concurrent_processes <= 0:
            raise ValueError("max_concurrent_processes must be > 0")


@dataclass(slots=True)
class AppSettings:
    audio: AudioSettings = field(default_factory=AudioSettings)
    whisper: WhisperSettings = field(default_factory=WhisperSettings)

    def validate(self) -> None:
        self.audio.validate()
        self.whisper.validate()


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return {
        "audio": {
            "input_sample_rate_hz": settings.audio.input_sample_rate_hz,
            "chunk_threshold_bytes": settings.audio.chunk_threshold_bytes,
            "overlap_ratio": settings.audio.overlap_ratio,
            "input_host_api": settings.audio.input_host_api,
            "input_device": settings.audio.input_device,
        },
        "whisper": {
            "binary_path": settings.whisper.binary_path,
            "model_path": settings.whisper.model_path,
            "model_name": settings.whisper.model_name,
            "threads": settings.whisper.threads,
            "language": settings.whisper.language,
            "timeout_s": settings.whisper.timeout_s,
            "max_concurrent_processes": settings.whisper.max_concurrent_processes,
        },
    }


def from_dict(data: dict[str, Any]) -> AppSettings:
    audio_data = data.get("audio") or {}
    whisper_data = data.get("whisper") or {}

    input_host_api_raw = audio_data.get("input_host_api")
    input_device_raw = audio_data.get("input_device")

    settings = AppSettings(
        audio=AudioSettings(
            input_sample_rate_hz=int(audio_data.get("input_sample_rate_hz", 16000)),
            chunk_threshold_bytes=int(audio_data.get("chunk_threshold_bytes", 192_000)),
            overlap_ratio=float(audio_data.get("overlap_ratio", 0.25)),
            input_host_api=str(input_host_api_raw) if input_host_api_raw is not None else "",
            input_device=str(input_device_raw) if input_device_raw is not None else "",
        ),
        whisper=WhisperSettings(
            binary_path=str(whisper_data.get("binary_path", "") or ""),
            model_path=str(whisper_data.get("model_path", "") or ""),
            model_name=str(whisper_data.get("model_name", DEFAULT_MODEL_NAME)),
            threads=int(whisper_data.get("threads", 4)),
            language=str(whisper_data.get("language", "en")),
            timeout_s=float(whisper_data.get("timeout_s", 30.0)),
            max_concurrent_processes=int(whisper_data.get("max_concurrent_processes", 1)),
        ),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("settings file must contain a JSON object")
    return from_dict(raw)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
