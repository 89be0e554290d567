from __future__ import annotations

import os
import sys
from pathlib import Path

APP_DIR_NAME = "streamscribe"
SETTINGS_FILENAME = "settings.json"
WHISPER_DIR_NAME = "whisper.cpp"
DEFAULT_MODEL_NAME = "base.en"

# Oldest layout first; the CMake build puts whisper-cli under build/bin.
WHISPER_BINARY_CANDIDATES = (
    Path("main"),
    Path("build") / "main",
    Path("build") / "Release" / "main",
    Path("build") / "bin" / "whisper-cli",
)


def user_config_dir(*, app_dir_name: str = APP_DIR_NAME) -> Path:
    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA")
        if base:
            return Path(base) / app_dir_name
        return Path.home() / "AppData" / "Local" / app_dir_name

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / app_dir_name

    base = os.getenv("XDG_CONFIG_HOME")
    if base:
        return Path(base) / app_dir_name
    return Path.home() / ".config" / app_dir_name


def default_settings_path() -> Path:
    return user_config_dir() / SETTINGS_FILENAME


def default_whisper_dir() -> Path:
    return user_config_dir() / WHISPER_DIR_NAME


def resolve_whisper_binary(whisper_dir: Path | None = None) -> Path | None:
    base = whisper_dir or default_whisper_dir()
    for candidate in WHISPER_BINARY_CANDIDATES:
        path = base / candidate
        if path.is_file():
            return path
    return None


def default_model_path(model_name: str = DEFAULT_MODEL_NAME, *, whisper_dir: Path | None = None) -> Path:
    base = whisper_dir or default_whisper_dir()
    return base / "models" / f"ggml-{model_name}.bin"
