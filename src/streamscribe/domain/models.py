from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class AudioChunk:
    sequence: int
    pcm16le: bytes
    sample_rate_hz: int
    created_at: float  # monotonic seconds

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")

    @property
    def duration_s(self) -> float:
        return len(self.pcm16le) / 2 / self.sample_rate_hz


@dataclass(frozen=True, slots=True)
class TranscriptionResult:
    sequence: int
    text: str
    elapsed_s: float | None = None
