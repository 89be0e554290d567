from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from streamscribe.app.headless_mic import print_transcript, run_audio_source_loop
from streamscribe.app.wiring import create_session
from streamscribe.config.settings import AppSettings
from streamscribe.core.audio.source import WavFileAudioSource

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeadlessFileRunner:
    settings: AppSettings
    path: Path
    realtime: bool = False
    whisper_dir: Path | None = None

    async def run(self) -> int:
        if not self.path.is_file():
            logger.error("Audio file not found: %s", self.path)
            return 2

        session = create_session(self.settings, whisper_dir=self.whisper_dir)
        session.on_transcription(print_transcript)
        source = WavFileAudioSource(path=self.path, realtime=self.realtime)

        await session.start()
        try:
            fed = await run_audio_source_loop(
                source=source,
                session=session,
                target_sample_rate_hz=self.settings.audio.input_sample_rate_hz,
            )
            await session.wait_idle()
            logger.info(
                "Fed %d bytes from %s (%d chunk(s) dropped)", fed, self.path.name, session.dropped_chunks
            )
        finally:
            await session.stop()

        return 0
