from __future__ import annotations

import math
import struct
from dataclasses import dataclass

import numpy as np

WAV_HEADER_BYTES = 44


@dataclass(frozen=True, slots=True)
class AudioFrameF32:
    samples: np.ndarray
    sample_rate_hz: int


@dataclass(frozen=True, slots=True)
class PcmFormat:
    sample_rate_hz: int = 16000
    channels: int = 1
    bits_per_sample: int = 16

    @property
    def bytes_per_sample(self) -> int:
        return self.bits_per_sample // 8

    @property
    def block_align(self) -> int:
        return self.channels * self.bytes_per_sample

    @property
    def byte_rate(self) -> int:
        return self.sample_rate_hz * self.block_align


# whisper.cpp only accepts 16 kHz mono 16-bit input.
WHISPER_PCM_FORMAT = PcmFormat(sample_rate_hz=16000, channels=1, bits_per_sample=16)


def mixdown_to_mono_f32(samples: np.ndarray) -> np.ndarray:
    if samples.ndim == 1:
        mono = samples
    elif samples.ndim == 2:
        mono = samples.mean(axis=1)
    else:
        raise ValueError("samples must be 1D (mono) or 2D (frames, channels)")

    return np.asarray(mono, dtype=np.float32)


def resample_f32_linear(samples: np.ndarray, *, from_rate_hz: int, to_rate_hz: int) -> np.ndarray:
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")
    if from_rate_hz == to_rate_hz:
        return np.asarray(samples, dtype=np.float32)

    samples = np.asarray(samples, dtype=np.float32)
    if samples.size == 0:
        return samples

    src_len = int(samples.shape[0])
    dst_len = int(math.floor(src_len * (to_rate_hz / from_rate_hz)))
    dst_len = max(dst_len, 1)

    x_old = np.arange(src_len, dtype=np.float32)
    x_new = np.linspace(0.0, src_len - 1, num=dst_len, dtype=np.float32)
    out = np.interp(x_new, x_old, samples).astype(np.float32)
    return out


def normalize_audio_f32(
    raw_samples: np.ndarray,
    *,
    input_sample_rate_hz: int,
    target_sample_rate_hz: int,
) -> AudioFrameF32:
    mono = mixdown_to_mono_f32(raw_samples)
    if input_sample_rate_hz != target_sample_rate_hz:
        mono = resample_f32_linear(
            mono, from_rate_hz=input_sample_rate_hz, to_rate_hz=target_sample_rate_hz
        )
    return AudioFrameF32(samples=mono, sample_rate_hz=target_sample_rate_hz)


def float32_to_pcm16le_bytes(samples: np.ndarray) -> bytes:
    samples = np.asarray(samples, dtype=np.float32)
    clipped = np.clip(samples, -1.0, 1.0)
    int16 = np.round(clipped * 32767.0).astype("<i2")
    return int16.tobytes()


def pcm16le_bytes_to_float32(data: bytes) -> np.ndarray:
    arr = np.frombuffer(data, dtype="<i2").astype(np.float32)
    return arr / 32768.0


def resample_pcm16le_linear(data: bytes, *, from_rate_hz: int, to_rate_hz: int) -> bytes:
    """Resample mono 16-bit PCM by interpolating between neighbouring samples.

    Output sample ``i`` is read at source position ``i * from / to`` and blended
    from the two adjacent input samples. Good enough for speech, not for music.
    """
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")
    if from_rate_hz == to_rate_hz:
        return bytes(data)

    src = np.frombuffer(data[: len(data) - (len(data) % 2)], dtype="<i2")
    if src.size == 0:
        return b""

    ratio = from_rate_hz / to_rate_hz
    dst_len = int(math.floor(src.size / ratio))
    if dst_len <= 0:
        return b""

    positions = np.arange(dst_len, dtype=np.float64) * ratio
    lower = np.floor(positions).astype(np.int64)
    upper = np.minimum(lower + 1, src.size - 1)
    fraction = positions - lower

    src_f = src.astype(np.float64)
    out = src_f[lower] + (src_f[upper] - src_f[lower]) * fraction
    return np.round(out).clip(-32768, 32767).astype("<i2").tobytes()


def build_wav_header(data_length: int, fmt: PcmFormat = WHISPER_PCM_FORMAT) -> bytes:
    if data_length < 0:
        raise ValueError("data_length must be >= 0")
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        WAV_HEADER_BYTES - 8 + data_length,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # PCM
        fmt.channels,
        fmt.sample_rate_hz,
        fmt.byte_rate,
        fmt.block_align,
        fmt.bits_per_sample,
        b"data",
        data_length,
    )


def wrap_pcm16le_wav(pcm16le: bytes, fmt: PcmFormat = WHISPER_PCM_FORMAT) -> bytes:
    return build_wav_header(len(pcm16le), fmt) + bytes(pcm16le)


def format_for_recognizer(
    pcm16le: bytes,
    *,
    source_sample_rate_hz: int,
    target: PcmFormat = WHISPER_PCM_FORMAT,
) -> bytes:
    """Turn a raw mono PCM window into a WAV container the recognizer can open."""
    if source_sample_rate_hz != target.sample_rate_hz:
        pcm16le = resample_pcm16le_linear(
            pcm16le, from_rate_hz=source_sample_rate_hz, to_rate_hz=target.sample_rate_hz
        )
    return wrap_pcm16le_wav(pcm16le, target)
