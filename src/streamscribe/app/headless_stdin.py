from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from streamscribe.app.headless_mic import print_transcript
from streamscribe.app.wiring import create_session
from streamscribe.config.settings import AppSettings

READ_BLOCK_BYTES = 3200  # 100ms of 16 kHz / 16-bit mono


@dataclass(slots=True)
class HeadlessStdinRunner:
    """Transcribes raw mono 16-bit PCM piped to stdin at ``input_sample_rate_hz``."""

    settings: AppSettings
    whisper_dir: Path | None = None
    stream: BinaryIO | None = field(default=None, repr=False)

    async def run(self) -> int:
        session = create_session(self.settings, whisper_dir=self.whisper_dir)
        session.on_transcription(print_transcript)

        await session.start()
        try:
            await self._stdin_loop(session)
            await session.wait_idle()
        finally:
            await session.stop()

        return 0

    async def _stdin_loop(self, session) -> None:
        stream = self.stream or sys.stdin.buffer
        loop = asyncio.get_running_loop()
        while True:
            block = await loop.run_in_executor(None, stream.read, READ_BLOCK_BYTES)
            if not block:
                return
            session.feed_audio(block)
