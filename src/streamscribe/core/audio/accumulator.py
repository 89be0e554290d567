from __future__ import annotations

import time
from dataclasses import dataclass, field

from streamscribe.domain.models import AudioChunk

DEFAULT_CHUNK_THRESHOLD_BYTES = 192_000  # ~6s of 16 kHz / 16-bit mono
DEFAULT_OVERLAP_RATIO = 0.25


@dataclass(slots=True)
class ChunkAccumulator:
    """Rolling PCM buffer that cuts overlapping windows once a size threshold is reached."""

    sample_rate_hz: int = 16000
    threshold_bytes: int = DEFAULT_CHUNK_THRESHOLD_BYTES
    overlap_ratio: float = DEFAULT_OVERLAP_RATIO
    sample_width: int = 2

    _buffer: bytearray = field(default_factory=bytearray)
    _next_sequence: int = 0

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.threshold_bytes <= 0:
            raise ValueError("threshold_bytes must be > 0")
        if not (0.0 <= self.overlap_ratio < 1.0):
            raise ValueError("overlap_ratio must be in 0.0..1.0 (exclusive)")
        if self.sample_width <= 0:
            raise ValueError("sample_width must be > 0")

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def buffered(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, data: bytes) -> AudioChunk | None:
        if not data:
            return None

        self._buffer.extend(data)
        if len(self._buffer) < self.threshold_bytes:
            return None

        snapshot = bytes(self._buffer)
        keep = int(len(snapshot) * self.overlap_ratio)
        keep -= keep % self.sample_width
        self._buffer = bytearray(snapshot[len(snapshot) - keep :]) if keep else bytearray()

        chunk = AudioChunk(
            sequence=self._next_sequence,
            pcm16le=snapshot,
            sample_rate_hz=self.sample_rate_hz,
            created_at=time.monotonic(),
        )
        self._next_sequence += 1
        return chunk

    def clear(self) -> None:
        self._buffer = bytearray()
        self._next_sequence = 0
