from __future__ import annotations

import asyncio
import contextlib
import logging
import queue
import wave
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Protocol

import janus
import numpy as np

from streamscribe.core.audio.format import AudioFrameF32, pcm16le_bytes_to_float32

logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    async def frames(self) -> AsyncIterator[AudioFrameF32]: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class SoundDeviceAudioSource(AudioSource):
    """Microphone capture through PortAudio, delivered in ``block_ms`` blocks.

    The input stream is opened on the first call to ``frames()``. With
    ``sample_rate_hz`` left as None the device default rate is used and the
    caller resamples. Blocks that arrive while the queue is full are counted in
    ``dropped_blocks`` and discarded.
    """

    sample_rate_hz: int | None = None
    channels: int = 1
    device: int | str | None = None
    block_ms: int = 100
    max_queue_blocks: int = 64

    _queue: janus.Queue[np.ndarray | None] | None = field(init=False, default=None, repr=False)
    _stream: Any = field(init=False, default=None, repr=False)
    _closed: bool = field(init=False, default=False)
    _dropped_blocks: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        if self.sample_rate_hz is not None and self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0 or None")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.block_ms <= 0:
            raise ValueError("block_ms must be > 0")
        if self.max_queue_blocks <= 0:
            raise ValueError("max_queue_blocks must be > 0")

    @property
    def dropped_blocks(self) -> int:
        return self._dropped_blocks

    def _open(self) -> int:
        import sounddevice as sd  # type: ignore

        rate = self.sample_rate_hz
        if rate is None:
            info = sd.query_devices(self.device, "input")
            rate = int(info["default_samplerate"])

        q: janus.Queue[np.ndarray | None] = janus.Queue(maxsize=self.max_queue_blocks)

        def _on_block(indata, _frames, _time, status):  # PortAudio thread
            if self._closed:
                return
            if status:
                logger.warning("[Audio] Input status: %s", status)
            try:
                q.sync_q.put_nowait(np.array(indata, dtype=np.float32))
            except queue.Full:
                self._dropped_blocks += 1

        stream = sd.InputStream(
            samplerate=rate,
            channels=self.channels,
            dtype="float32",
            blocksize=max(1, rate * self.block_ms // 1000),
            device=self.device,
            callback=_on_block,
        )
        self._queue = q
        self._stream = stream
        stream.start()
        source_name = "default input" if self.device is None else self.device
        logger.info("[Audio] Capturing from %s at %d Hz", source_name, rate)
        return rate

    async def frames(self) -> AsyncIterator[AudioFrameF32]:
        if self._closed:
            return
        rate = self._open() if self._stream is None else int(self._stream.samplerate)
        assert self._queue is not None
        while True:
            block = await self._queue.async_q.get()
            if block is None:
                return
            yield AudioFrameF32(samples=block, sample_rate_hz=rate)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._stream is not None:
            with contextlib.suppress(Exception):
                self._stream.stop()
            with contextlib.suppress(Exception):
                self._stream.close()

        q = self._queue
        if q is None:
            return
        with contextlib.suppress(queue.Full, RuntimeError):
            q.sync_q.put_nowait(None)
        q.close()
        await q.wait_closed()
        if self._dropped_blocks:
            logger.info("[Audio] Dropped %d input block(s) on overflow", self._dropped_blocks)


@dataclass(slots=True)
class WavFileAudioSource(AudioSource):
    """Reads a 16-bit PCM WAV file in fixed-duration frames.

    With ``realtime`` set, frames are paced at their playback duration so the
    session sees the file as if it were a live stream.
    """

    path: Path
    frame_ms: int = 100
    realtime: bool = False

    def __post_init__(self) -> None:
        if self.frame_ms <= 0:
            raise ValueError("frame_ms must be > 0")

    async def frames(self) -> AsyncIterator[AudioFrameF32]:
        with wave.open(str(self.path), "rb") as wf:
            if wf.getsampwidth() != 2:
                raise ValueError(f"Expected 16-bit PCM WAV, got sampwidth={wf.getsampwidth()}")
            channels = wf.getnchannels()
            rate = wf.getframerate()
            frames_per_read = max(1, int(rate * self.frame_ms / 1000))

            while True:
                raw = wf.readframes(frames_per_read)
                if not raw:
                    return
                samples = pcm16le_bytes_to_float32(raw)
                if channels > 1:
                    samples = samples.reshape(-1, channels)
                yield AudioFrameF32(samples=samples, sample_rate_hz=rate)
                if self.realtime:
                    await asyncio.sleep(self.frame_ms / 1000)
                else:
                    await asyncio.sleep(0)

    async def close(self) -> None:
        return


def resolve_input_device(*, host_api: str = "", device: str = "") -> int | None:
    """Map configured host API / device names to a sounddevice input index.

    ``device`` may be an index or a case-insensitive name. Returns None to use
    the system default input.
    """
    host_api = (host_api or "").strip().lower()
    device = (device or "").strip()
    if not host_api and not device:
        return None

    import sounddevice as sd  # type: ignore

    hostapi_index: int | None = None
    for idx, item in enumerate(sd.query_hostapis()):
        if host_api and str(item.get("name", "")).lower() == host_api:
            hostapi_index = idx
            if not device:
                default_input = item.get("default_input_device")
                if isinstance(default_input, int) and default_input >= 0:
                    return default_input
            break

    for idx, info in enumerate(sd.query_devices()):
        if int(info.get("max_input_channels", 0) or 0) <= 0:
            continue
        if hostapi_index is not None and int(info.get("hostapi", -1)) != hostapi_index:
            continue
        if not device or device == str(idx) or str(info.get("name", "")).lower() == device.lower():
            return idx

    logger.warning("[Audio] Input device not found (host_api=%r, device=%r); using default", host_api, device)
    return None
