from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from streamscribe.core.audio.accumulator import (
    DEFAULT_CHUNK_THRESHOLD_BYTES,
    DEFAULT_OVERLAP_RATIO,
    ChunkAccumulator,
)
from streamscribe.core.stt.backend import Recognizer
from streamscribe.core.stt.dispatcher import TranscriptionDispatcher
from streamscribe.core.stt.extractor import IncrementalTextExtractor
from streamscribe.core.stt.lifecycle import LifecycleManager
from streamscribe.domain.models import TranscriptionResult

logger = logging.getLogger(__name__)

TranscriptionCallback = Callable[[str], Union[None, Awaitable[Any]]]


@dataclass(slots=True)
class AudioSession:
    """Live speech-to-text session over a stream of mono 16-bit PCM.

    ``feed_audio`` never blocks and never raises for runtime conditions: audio
    fed while the session is stopped is ignored, chunks that arrive while the
    recognizer is saturated are dropped, and failed recognitions are only
    logged. Listeners registered with ``on_transcription`` receive each newly
    recognized piece of text once, in the order the audio was accepted.

    Must be used from a single event loop; ``feed_audio`` is called from the
    loop thread.
    """

    recognizer: Recognizer
    input_sample_rate_hz: int = 16000
    chunk_threshold_bytes: int = DEFAULT_CHUNK_THRESHOLD_BYTES
    overlap_ratio: float = DEFAULT_OVERLAP_RATIO
    max_concurrent_processes: int = 1
    lifecycle: LifecycleManager = field(default_factory=LifecycleManager)

    _accumulator: ChunkAccumulator = field(init=False, repr=False)
    _dispatcher: TranscriptionDispatcher = field(init=False, repr=False)
    _extractor: IncrementalTextExtractor = field(default_factory=IncrementalTextExtractor)
    _callbacks: list[TranscriptionCallback] = field(default_factory=list)
    _active: bool = False

    def __post_init__(self) -> None:
        self._accumulator = ChunkAccumulator(
            sample_rate_hz=self.input_sample_rate_hz,
            threshold_bytes=self.chunk_threshold_bytes,
            overlap_ratio=self.overlap_ratio,
        )
        self._dispatcher = TranscriptionDispatcher(
            recognizer=self.recognizer,
            lifecycle=self.lifecycle,
            on_result=self._handle_result,
            max_concurrent_processes=self.max_concurrent_processes,
        )

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def pending_chunks(self) -> int:
        return self._dispatcher.pending_chunks

    @property
    def dropped_chunks(self) -> int:
        return self._dispatcher.dropped_chunks

    @property
    def last_emitted_text(self) -> str:
        return self._extractor.last_emitted_text

    @property
    def buffered_bytes(self) -> int:
        return self._accumulator.buffered_bytes

    async def start(self) -> None:
        if self._active:
            logger.info("[Session] Already transcribing, ignoring start request")
            return
        self._accumulator.clear()
        self._extractor.reset()
        self._dispatcher.start()
        self._active = True
        logger.info(
            "[Session] Started (%s, rate=%dHz, threshold=%d bytes, max_concurrent=%d)",
            self.recognizer.name(),
            self.input_sample_rate_hz,
            self.chunk_threshold_bytes,
            self.max_concurrent_processes,
        )

    def feed_audio(self, pcm16le: bytes) -> None:
        if not self._active:
            return
        chunk = self._accumulator.feed(pcm16le)
        if chunk is not None:
            self._dispatcher.submit(chunk)

    def on_transcription(self, callback: TranscriptionCallback) -> None:
        self._callbacks.append(callback)

    def remove_transcription_callback(self, callback: TranscriptionCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def wait_idle(self) -> None:
        await self._dispatcher.join()

    async def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        discarded = self._accumulator.buffered_bytes
        await self._dispatcher.stop()
        self._accumulator.clear()
        logger.info("[Session] Stopped (discarded %d buffered bytes)", discarded)

    async def _handle_result(self, result: TranscriptionResult) -> None:
        if not result.text:
            logger.debug("[Session] Chunk #%d produced no text", result.sequence)
            return

        delta = self._extractor.extract_new_text(result.text)
        if not delta:
            return

        logger.info("[Session] #%d: %s", result.sequence, delta)
        for callback in list(self._callbacks):
            try:
                ret = callback(delta)
                if inspect.isawaitable(ret):
                    await ret
            except Exception:
                logger.exception("[Session] Transcription listener failed")
