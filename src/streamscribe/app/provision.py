"""Recognizer provisioning: locate the whisper.cpp binary and fetch ggml models.

Models come from the whisper.cpp model repository on Hugging Face, the same
source as whisper.cpp's own ``models/download-ggml-model.sh``. Building the
binary is left to the user; a missing binary is reported with build hints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from streamscribe.app.wiring import resolve_whisper_paths
from streamscribe.config.settings import WhisperSettings

logger = logging.getLogger(__name__)

MODEL_BASE_URL = "https://huggingface.co/ggerganov/whisper.cpp/resolve/main"
DOWNLOAD_TIMEOUT_S = 30.0
DOWNLOAD_BLOCK_BYTES = 1024 * 1024

BUILD_HINT = (
    "git clone https://github.com/ggerganov/whisper.cpp {dir} && "
    "cmake -S {dir} -B {dir}/build && cmake --build {dir}/build --config Release"
)


class ModelDownloadError(RuntimeError):
    pass


@dataclass(slots=True)
class SetupReport:
    binary: Path
    model: Path
    binary_found: bool
    downloaded: bool = False

    @property
    def ready(self) -> bool:
        return self.binary_found and self.model.is_file()


def model_url(model_name: str, *, base_url: str = MODEL_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/ggml-{model_name}.bin"


async def download_model(
    model_name: str,
    *,
    destination: Path,
    base_url: str = MODEL_BASE_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Path:
    """Stream ``ggml-<model_name>.bin`` to ``destination``.

    The body goes to a ``.part`` file first and is renamed only once complete,
    so an interrupted download never looks like a usable model.
    """
    url = model_url(model_name, base_url=base_url)
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")

    logger.info("[Setup] Downloading %s", url)
    received = 0
    try:
        async with httpx.AsyncClient(
            timeout=DOWNLOAD_TIMEOUT_S, follow_redirects=True, transport=transport
        ) as client:
            async with client.stream("GET", url) as resp:
                if resp.status_code != 200:
                    raise ModelDownloadError(f"model download failed: {url} returned {resp.status_code}")
                with partial.open("wb") as fh:
                    async for block in resp.aiter_bytes(DOWNLOAD_BLOCK_BYTES):
                        fh.write(block)
                        received += len(block)
        if received == 0:
            raise ModelDownloadError(f"model download failed: {url} returned an empty body")
        partial.replace(destination)
    except httpx.HTTPError as exc:
        raise ModelDownloadError(f"model download failed: {exc}") from exc
    finally:
        partial.unlink(missing_ok=True)

    logger.info("[Setup] Saved %s (%d bytes)", destination, received)
    return destination


async def ensure_whisper_setup(
    settings: WhisperSettings,
    *,
    whisper_dir: Path | None = None,
    force: bool = False,
    base_url: str = MODEL_BASE_URL,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SetupReport:
    binary, model = resolve_whisper_paths(settings, whisper_dir=whisper_dir)
    report = SetupReport(binary=binary, model=model, binary_found=binary.is_file())

    if report.binary_found:
        logger.info("[Setup] whisper binary: %s", binary)
    else:
        build_dir = binary.parent.parent.parent if binary.parent.name == "bin" else binary.parent
        logger.warning("[Setup] whisper binary not found at %s", binary)
        logger.warning("[Setup] Build it with: %s", BUILD_HINT.format(dir=build_dir))

    if model.is_file() and not force:
        logger.info("[Setup] Model already present: %s", model)
        return report

    await download_model(settings.model_name, destination=model, base_url=base_url, transport=transport)
    report.downloaded = True
    return report
