from __future__ import annotations

from pathlib import Path
from typing import Protocol

from streamscribe.core.stt.lifecycle import ProcessTracker


class RecognizerUnavailableError(FileNotFoundError):
    """The recognizer binary or model is missing; the session cannot be used."""


class RecognitionError(RuntimeError):
    def __init__(self, code: str, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.stderr = stderr


class Recognizer(Protocol):
    def name(self) -> str: ...

    async def transcribe(self, wav_path: Path, *, tracker: ProcessTracker) -> str:
        """Return the raw transcript of one WAV file, or raise RecognitionError."""
        ...

    def sidecar_paths(self, wav_path: Path) -> list[Path]:
        """Extra files the recognizer writes next to its input."""
        ...
