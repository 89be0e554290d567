from __future__ import annotations

import asyncio

import httpx
import pytest

from streamscribe.app.provision import (
    ModelDownloadError,
    download_model,
    ensure_whisper_setup,
    model_url,
)
from streamscribe.config.settings import WhisperSettings


def _transport(body: bytes = b"ggml-model-bytes", status: int = 200, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(str(request.url))
        return httpx.Response(status, content=body)

    return httpx.MockTransport(handler)


def _binary(whisper_dir):
    binary = whisper_dir / "build" / "bin" / "whisper-cli"
    binary.parent.mkdir(parents=True)
    binary.write_text("#!/bin/sh\n", encoding="utf-8")
    return binary


def test_model_url_points_at_ggml_file():
    assert model_url("base.en", base_url="https://models.test/") == "https://models.test/ggml-base.en.bin"


def test_download_model_writes_destination(tmp_path):
    seen: list[str] = []
    dest = tmp_path / "models" / "ggml-tiny.bin"

    path = asyncio.run(
        download_model(
            "tiny",
            destination=dest,
            base_url="https://models.test",
            transport=_transport(seen=seen),
        )
    )

    assert path == dest
    assert dest.read_bytes() == b"ggml-model-bytes"
    assert seen == ["https://models.test/ggml-tiny.bin"]
    assert sorted(p.name for p in dest.parent.iterdir()) == ["ggml-tiny.bin"]


def test_download_model_http_error_leaves_nothing(tmp_path):
    dest = tmp_path / "models" / "ggml-nope.bin"

    with pytest.raises(ModelDownloadError, match="404"):
        asyncio.run(download_model("nope", destination=dest, transport=_transport(b"missing", status=404)))

    assert list(dest.parent.iterdir()) == []


def test_download_model_rejects_empty_body(tmp_path):
    dest = tmp_path / "ggml-empty.bin"

    with pytest.raises(ModelDownloadError):
        asyncio.run(download_model("empty", destination=dest, transport=_transport(b"")))

    assert list(tmp_path.iterdir()) == []


def test_download_model_wraps_transport_errors(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(ModelDownloadError, match="offline"):
        asyncio.run(
            download_model("tiny", destination=tmp_path / "ggml-tiny.bin", transport=httpx.MockTransport(handler))
        )
    assert list(tmp_path.iterdir()) == []


def test_setup_downloads_missing_model(tmp_path):
    _binary(tmp_path)

    report = asyncio.run(
        ensure_whisper_setup(WhisperSettings(model_name="small"), whisper_dir=tmp_path, transport=_transport())
    )

    assert report.downloaded is True
    assert report.ready is True
    assert report.model == tmp_path / "models" / "ggml-small.bin"
    assert report.model.read_bytes() == b"ggml-model-bytes"


def test_setup_skips_existing_model_unless_forced(tmp_path):
    _binary(tmp_path)
    model = tmp_path / "models" / "ggml-base.en.bin"
    model.parent.mkdir(parents=True)
    model.write_bytes(b"old")
    seen: list[str] = []

    report = asyncio.run(
        ensure_whisper_setup(WhisperSettings(), whisper_dir=tmp_path, transport=_transport(seen=seen))
    )
    assert report.downloaded is False
    assert seen == []
    assert model.read_bytes() == b"old"

    report = asyncio.run(
        ensure_whisper_setup(WhisperSettings(), whisper_dir=tmp_path, force=True, transport=_transport(seen=seen))
    )
    assert report.downloaded is True
    assert len(seen) == 1
    assert model.read_bytes() == b"ggml-model-bytes"


def test_setup_reports_missing_binary(tmp_path, caplog):
    report = asyncio.run(ensure_whisper_setup(WhisperSettings(), whisper_dir=tmp_path, transport=_transport()))

    assert report.binary_found is False
    assert report.model.is_file()
    assert report.ready is False
    assert "cmake" in caplog.text
