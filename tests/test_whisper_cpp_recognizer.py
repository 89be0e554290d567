from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from streamscribe.core.audio.format import wrap_pcm16le_wav
from streamscribe.core.stt.backend import RecognitionError, RecognizerUnavailableError
from streamscribe.providers.stt.whisper_cpp import (
    WhisperCppRecognizer,
    ensure_whisper_available,
    normalize_transcript,
    recognizer_env,
)

pytestmark = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses POSIX shell scripts")


@dataclass(slots=True)
class FakeTracker:
    seen: list = field(default_factory=list)
    active: set = field(default_factory=set)

    def track_process(self, process) -> None:
        self.seen.append(process)
        self.active.add(process)

    def untrack_process(self, process) -> None:
        self.active.discard(process)


def _script(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "whisper-cli"
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def _model(tmp_path: Path) -> Path:
    path = tmp_path / "ggml-base.en.bin"
    path.write_bytes(b"model")
    return path


def _wav(tmp_path: Path) -> Path:
    path = tmp_path / "chunk.wav"
    path.write_bytes(wrap_pcm16le_wav(b"\x00\x00" * 160))
    return path


def test_transcribe_passes_expected_arguments_and_cleans_output(tmp_path):
    args_file = tmp_path / "args.txt"
    binary = _script(
        tmp_path,
        f"printf '%s\\n' \"$@\" > '{args_file}'\n"
        "echo ' Hello   world'\n"
        "echo '[BLANK_AUDIO]'",
    )
    model = _model(tmp_path)
    wav = _wav(tmp_path)
    rec = WhisperCppRecognizer(binary_path=binary, model_path=model, threads=2, language="de")
    tracker = FakeTracker()

    text = asyncio.run(rec.transcribe(wav, tracker=tracker))

    assert text == "Hello world"
    assert args_file.read_text(encoding="utf-8").splitlines() == [
        "-m",
        str(model),
        "-f",
        str(wav),
        "--output-txt",
        "--no-timestamps",
        "-t",
        "2",
        "--language",
        "de",
    ]
    assert len(tracker.seen) == 1
    assert tracker.active == set()


def test_nonzero_exit_raises_with_stderr(tmp_path):
    binary = _script(tmp_path, "echo 'failed to load model' >&2\nexit 3")
    rec = WhisperCppRecognizer(binary_path=binary, model_path=_model(tmp_path))

    with pytest.raises(RecognitionError) as excinfo:
        asyncio.run(rec.transcribe(_wav(tmp_path), tracker=FakeTracker()))

    assert excinfo.value.code == "WHISPER_EXIT_NONZERO"
    assert "failed to load model" in excinfo.value.stderr


def test_timeout_kills_process(tmp_path):
    binary = _script(tmp_path, "exec sleep 5")
    rec = WhisperCppRecognizer(binary_path=binary, model_path=_model(tmp_path), timeout_s=0.2)
    tracker = FakeTracker()

    started = time.monotonic()
    with pytest.raises(RecognitionError) as excinfo:
        asyncio.run(rec.transcribe(_wav(tmp_path), tracker=tracker))

    assert excinfo.value.code == "WHISPER_TIMEOUT"
    assert time.monotonic() - started < 3.0
    assert tracker.seen[0].returncode is not None
    assert tracker.active == set()


def test_cancellation_kills_process(tmp_path):
    binary = _script(tmp_path, "exec sleep 5")
    rec = WhisperCppRecognizer(binary_path=binary, model_path=_model(tmp_path))
    tracker = FakeTracker()

    async def run():
        task = asyncio.create_task(rec.transcribe(_wav(tmp_path), tracker=tracker))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert tracker.seen[0].returncode is not None
    assert tracker.active == set()


def test_missing_input_fails_without_spawning(tmp_path):
    args_file = tmp_path / "args.txt"
    binary = _script(tmp_path, f"touch '{args_file}'")
    rec = WhisperCppRecognizer(binary_path=binary, model_path=_model(tmp_path))
    tracker = FakeTracker()

    with pytest.raises(RecognitionError) as excinfo:
        asyncio.run(rec.transcribe(tmp_path / "missing.wav", tracker=tracker))

    assert excinfo.value.code == "WHISPER_INPUT_MISSING"
    assert tracker.seen == []
    assert not args_file.exists()


def test_missing_binary_is_fatal_at_construction(tmp_path):
    with pytest.raises(RecognizerUnavailableError):
        WhisperCppRecognizer(binary_path=tmp_path / "nope", model_path=_model(tmp_path))


def test_missing_model_is_fatal_at_construction(tmp_path):
    binary = _script(tmp_path, "exit 0")
    with pytest.raises(RecognizerUnavailableError):
        WhisperCppRecognizer(binary_path=binary, model_path=tmp_path / "nope.bin")


def test_sidecar_is_input_path_with_txt_suffix(tmp_path):
    rec = WhisperCppRecognizer(binary_path=_script(tmp_path, "exit 0"), model_path=_model(tmp_path))
    wav = tmp_path / "whisper_chunk_1_ab.wav"
    assert rec.sidecar_paths(wav) == [tmp_path / "whisper_chunk_1_ab.wav.txt"]


def test_normalize_transcript_strips_markers_and_whitespace():
    assert normalize_transcript("  [BLANK_AUDIO]\n") == ""
    assert normalize_transcript(" Hello\n  there [MUSIC] friend ") == "Hello there friend"


def test_ensure_whisper_available_reports_reason(tmp_path):
    binary = _script(tmp_path, "exit 0")
    ok, reason = ensure_whisper_available(binary, tmp_path / "missing.bin")
    assert not ok
    assert "model not found" in reason

    ok, reason = ensure_whisper_available(binary, _model(tmp_path))
    assert ok
    assert reason == ""


def test_recognizer_env_prepends_local_build_libraries(tmp_path):
    build = tmp_path / "build"
    (build / "bin").mkdir(parents=True)
    (build / "src").mkdir()
    env = recognizer_env(build / "bin" / "whisper-cli", env={"DYLD_LIBRARY_PATH": "/opt/lib"})
    assert env["DYLD_LIBRARY_PATH"].split(":")[0] == str((build / "src").resolve())
    assert env["DYLD_LIBRARY_PATH"].endswith("/opt/lib")
