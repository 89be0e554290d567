from __future__ import annotations

from pathlib import Path

from streamscribe.config.paths import default_model_path, default_whisper_dir, resolve_whisper_binary
from streamscribe.config.settings import AppSettings, WhisperSettings
from streamscribe.core.stt.lifecycle import LifecycleManager
from streamscribe.core.stt.session import AudioSession
from streamscribe.providers.stt.whisper_cpp import WhisperCppRecognizer


def resolve_whisper_paths(settings: WhisperSettings, *, whisper_dir: Path | None = None) -> tuple[Path, Path]:
    whisper_dir = whisper_dir or default_whisper_dir()

    if settings.binary_path:
        binary = Path(settings.binary_path).expanduser()
    else:
        binary = resolve_whisper_binary(whisper_dir) or (whisper_dir / "build" / "bin" / "whisper-cli")

    if settings.model_path:
        model = Path(settings.model_path).expanduser()
    else:
        model = default_model_path(settings.model_name, whisper_dir=whisper_dir)

    return binary, model


def create_recognizer(settings: AppSettings, *, whisper_dir: Path | None = None) -> WhisperCppRecognizer:
    binary, model = resolve_whisper_paths(settings.whisper, whisper_dir=whisper_dir)
    return WhisperCppRecognizer(
        binary_path=binary,
        model_path=model,
        threads=settings.whisper.threads,
        language=settings.whisper.language,
        timeout_s=settings.whisper.timeout_s,
    )


def create_session(
    settings: AppSettings,
    *,
    whisper_dir: Path | None = None,
    lifecycle: LifecycleManager | None = None,
) -> AudioSession:
    recognizer = create_recognizer(settings, whisper_dir=whisper_dir)
    return AudioSession(
        recognizer=recognizer,
        input_sample_rate_hz=settings.audio.input_sample_rate_hz,
        chunk_threshold_bytes=settings.audio.chunk_threshold_bytes,
        overlap_ratio=settings.audio.overlap_ratio,
        max_concurrent_processes=settings.whisper.max_concurrent_processes,
        lifecycle=lifecycle or LifecycleManager(),
    )
