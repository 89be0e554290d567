from __future__ import annotations

import io
import struct
import wave

import numpy as np
import pytest

from streamscribe.core.audio.format import (
    WAV_HEADER_BYTES,
    WHISPER_PCM_FORMAT,
    PcmFormat,
    build_wav_header,
    float32_to_pcm16le_bytes,
    format_for_recognizer,
    mixdown_to_mono_f32,
    normalize_audio_f32,
    pcm16le_bytes_to_float32,
    resample_f32_linear,
    resample_pcm16le_linear,
    wrap_pcm16le_wav,
)


def _pcm(values: list[int]) -> bytes:
    return np.asarray(values, dtype="<i2").tobytes()


def test_mixdown_to_mono():
    stereo = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.float32)
    mono = mixdown_to_mono_f32(stereo)
    assert mono.shape == (2,)
    assert np.allclose(mono, np.array([0.5, 0.5], dtype=np.float32))


def test_float32_to_pcm16_stays_in_range():
    samples = np.array([-1.5, -0.5, 0.0, 0.5, 1.5], dtype=np.float32)
    restored = pcm16le_bytes_to_float32(float32_to_pcm16le_bytes(samples))
    assert restored.shape == samples.shape
    assert np.all(restored <= 1.0)
    assert np.all(restored >= -1.0)


def test_resample_f32_length_ratio():
    src = np.linspace(-1.0, 1.0, num=480, dtype=np.float32)
    dst = resample_f32_linear(src, from_rate_hz=48000, to_rate_hz=16000)
    assert dst.shape[0] == 160


def test_normalize_audio_resamples_only_when_needed():
    raw = np.linspace(-1.0, 1.0, num=480, dtype=np.float32)
    first = normalize_audio_f32(raw, input_sample_rate_hz=48000, target_sample_rate_hz=16000)
    second = normalize_audio_f32(first.samples, input_sample_rate_hz=16000, target_sample_rate_hz=16000)
    assert first.sample_rate_hz == 16000
    assert second.samples.shape == first.samples.shape


def test_wav_header_layout():
    header = build_wav_header(3200)
    assert len(header) == WAV_HEADER_BYTES

    riff, riff_size, wave_id, fmt_id, fmt_size = struct.unpack_from("<4sI4s4sI", header, 0)
    assert (riff, wave_id, fmt_id) == (b"RIFF", b"WAVE", b"fmt ")
    assert riff_size == 36 + 3200
    assert fmt_size == 16

    audio_format, channels, rate, byte_rate, block_align, bits = struct.unpack_from("<HHIIHH", header, 20)
    assert audio_format == 1
    assert channels == 1
    assert rate == 16000
    assert byte_rate == 32000
    assert block_align == 2
    assert bits == 16

    data_id, data_size = struct.unpack_from("<4sI", header, 36)
    assert data_id == b"data"
    assert data_size == 3200


def test_wrapped_wav_is_readable_by_wave_module():
    pcm = _pcm([0, 1000, -1000, 32767, -32768])
    data = wrap_pcm16le_wav(pcm, PcmFormat(sample_rate_hz=22050))

    with wave.open(io.BytesIO(data), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 22050
        assert wf.readframes(wf.getnframes()) == pcm


def test_resample_pcm16_is_identity_for_same_rate():
    pcm = _pcm([1, 2, 3])
    assert resample_pcm16le_linear(pcm, from_rate_hz=16000, to_rate_hz=16000) == pcm


def test_resample_pcm16_downsamples_by_picking_positions():
    pcm = _pcm([0, 10, 20, 30, 40, 50])
    out = np.frombuffer(resample_pcm16le_linear(pcm, from_rate_hz=48000, to_rate_hz=16000), dtype="<i2")
    assert out.tolist() == [0, 30]


def test_resample_pcm16_upsampling_interpolates_between_neighbours():
    pcm = _pcm([0, 100, 200])
    out = np.frombuffer(resample_pcm16le_linear(pcm, from_rate_hz=8000, to_rate_hz=16000), dtype="<i2")
    # last position clamps to the final sample
    assert out.tolist() == [0, 50, 100, 150, 200, 200]


def test_resample_pcm16_rejects_bad_rates():
    with pytest.raises(ValueError):
        resample_pcm16le_linear(b"\x00\x00", from_rate_hz=0, to_rate_hz=16000)


def test_format_for_recognizer_resamples_to_whisper_rate():
    pcm = _pcm([0] * 4800)  # 100ms at 48 kHz
    data = format_for_recognizer(pcm, source_sample_rate_hz=48000)

    with wave.open(io.BytesIO(data), "rb") as wf:
        assert wf.getframerate() == WHISPER_PCM_FORMAT.sample_rate_hz
        assert wf.getnframes() == 1600
