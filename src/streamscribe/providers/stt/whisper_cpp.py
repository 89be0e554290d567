from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import time
from dataclasses import dataclass
from pathlib import Path

from streamscribe.core.stt.backend import RecognitionError, RecognizerUnavailableError
from streamscribe.core.stt.lifecycle import ProcessTracker

logger = logging.getLogger(__name__)

_NON_SPEECH_RE = re.compile(r"\[[^\]]*\]")
_STDERR_LOG_LIMIT = 200


def ensure_whisper_available(binary_path: str | Path, model_path: str | Path) -> tuple[bool, str]:
    if not binary_path:
        return False, "whisper binary path is not configured"
    if not model_path:
        return False, "whisper model path is not configured"
    if not Path(binary_path).exists():
        return False, f"whisper binary not found: {binary_path}"
    if not Path(model_path).exists():
        return False, f"whisper model not found: {model_path}"
    return True, ""


def normalize_transcript(raw: str) -> str:
    """Collapse whitespace and drop bracketed non-speech markers such as [BLANK_AUDIO]."""
    return " ".join(_NON_SPEECH_RE.sub(" ", raw or "").split())


def recognizer_env(binary_path: str | Path, env: dict[str, str] | None = None) -> dict[str, str]:
    env_out = dict(os.environ) if env is None else dict(env)
    try:
        build_dir = Path(binary_path).resolve().parents[1]
    except (OSError, IndexError):
        return env_out

    candidates = [
        build_dir / "src",
        build_dir / "ggml" / "src",
        build_dir / "ggml" / "src" / "ggml-blas",
        build_dir / "ggml" / "src" / "ggml-metal",
    ]
    new_paths = [str(p) for p in candidates if p.exists()]
    if not new_paths:
        return env_out

    existing = env_out.get("DYLD_LIBRARY_PATH", "")
    joined = os.pathsep.join(new_paths)
    env_out["DYLD_LIBRARY_PATH"] = joined if not existing else f"{joined}{os.pathsep}{existing}"
    return env_out


@dataclass(slots=True)
class WhisperCppRecognizer:
    """Runs one whisper.cpp CLI process per audio file."""

    binary_path: Path
    model_path: Path
    threads: int = 4
    language: str = "en"
    timeout_s: float = 30.0

    def __post_init__(self) -> None:
        self.binary_path = Path(self.binary_path)
        self.model_path = Path(self.model_path)
        if not self.binary_path.exists():
            raise RecognizerUnavailableError(
                f"whisper binary not found at {self.binary_path}. Make sure whisper.cpp is built."
            )
        if not self.model_path.exists():
            raise RecognizerUnavailableError(f"whisper model not found at {self.model_path}")
        if self.threads <= 0:
            raise ValueError("threads must be > 0")
        if not self.language:
            raise ValueError("language must be non-empty")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")

    def name(self) -> str:
        return "whisper_cpp"

    def build_command(self, wav_path: Path) -> list[str]:
        return [
            str(self.binary_path),
            "-m",
            str(self.model_path),
            "-f",
            str(wav_path),
            "--output-txt",
            "--no-timestamps",
            "-t",
            str(self.threads),
            "--language",
            self.language,
        ]

    def sidecar_paths(self, wav_path: Path) -> list[Path]:
        # --output-txt writes "<input>.txt" next to the input file
        return [Path(f"{wav_path}.txt")]

    async def transcribe(self, wav_path: Path, *, tracker: ProcessTracker) -> str:
        wav_path = Path(wav_path)
        if not wav_path.is_file():
            raise RecognitionError("WHISPER_INPUT_MISSING", f"input audio not found: {wav_path}")

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(wav_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=recognizer_env(self.binary_path),
            )
        except OSError as exc:
            raise RecognitionError("WHISPER_SPAWN_FAILED", f"failed to start whisper: {exc}") from exc

        tracker.track_process(process)
        try:
            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_s)
            except asyncio.TimeoutError:
                logger.warning("[Whisper] Timed out after %.1fs, killing pid=%s", self.timeout_s, process.pid)
                await _kill(process)
                raise RecognitionError(
                    "WHISPER_TIMEOUT", f"whisper timed out after {self.timeout_s:.1f}s"
                ) from None
            except asyncio.CancelledError:
                await asyncio.shield(_kill(process))
                raise
        finally:
            tracker.untrack_process(process)

        stderr_text = stderr.decode("utf-8", "replace").strip()
        if process.returncode != 0:
            msg = stderr_text or f"exit_code={process.returncode}"
            if len(msg) > _STDERR_LOG_LIMIT:
                msg = msg[:_STDERR_LOG_LIMIT] + "..."
            raise RecognitionError(
                "WHISPER_EXIT_NONZERO",
                f"whisper exited with code {process.returncode}: {msg}",
                stderr=stderr_text,
            )

        text = normalize_transcript(stdout.decode("utf-8", "replace"))
        logger.debug(
            "[Whisper] Transcribed %s in %.2fs (%d chars)",
            wav_path.name,
            time.monotonic() - started,
            len(text),
        )
        return text


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
    with contextlib.suppress(Exception):
        await process.wait()
