from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from streamscribe.app.wiring import create_session
from streamscribe.config.settings import AppSettings
from streamscribe.core.audio.format import float32_to_pcm16le_bytes, normalize_audio_f32
from streamscribe.core.audio.source import AudioSource, SoundDeviceAudioSource, resolve_input_device
from streamscribe.core.stt.session import AudioSession

logger = logging.getLogger(__name__)


def print_transcript(text: str) -> None:
    print(text, flush=True)


@dataclass(slots=True)
class HeadlessMicRunner:
    settings: AppSettings
    whisper_dir: Path | None = None
    source: AudioSource | None = field(default=None, repr=False)

    async def run(self) -> int:
        session = create_session(self.settings, whisper_dir=self.whisper_dir)
        session.on_transcription(print_transcript)

        source = self.source
        if source is None:
            device_idx = None
            with contextlib.suppress(Exception):
                device_idx = resolve_input_device(
                    host_api=self.settings.audio.input_host_api,
                    device=self.settings.audio.input_device,
                )
            # Device default rate; resampled to input_sample_rate_hz before feeding.
            source = SoundDeviceAudioSource(sample_rate_hz=None, channels=1, device=device_idx)

        await session.start()
        try:
            await run_audio_source_loop(
                source=source,
                session=session,
                target_sample_rate_hz=self.settings.audio.input_sample_rate_hz,
            )
        finally:
            with contextlib.suppress(Exception):
                await source.close()
            await session.stop()

        return 0


async def run_audio_source_loop(
    *,
    source: AudioSource,
    session: AudioSession,
    target_sample_rate_hz: int,
) -> int:
    fed = 0
    async for frame in source.frames():
        normalized = normalize_audio_f32(
            frame.samples,
            input_sample_rate_hz=frame.sample_rate_hz,
            target_sample_rate_hz=target_sample_rate_hz,
        )
        pcm = float32_to_pcm16le_bytes(normalized.samples)
        session.feed_audio(pcm)
        fed += len(pcm)
    return fed
