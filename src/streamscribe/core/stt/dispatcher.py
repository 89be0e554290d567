from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

from streamscribe.core.audio.format import WHISPER_PCM_FORMAT, PcmFormat, format_for_recognizer
from streamscribe.core.stt.backend import RecognitionError, Recognizer
from streamscribe.core.stt.lifecycle import LifecycleManager
from streamscribe.domain.models import AudioChunk, TranscriptionResult

logger = logging.getLogger(__name__)

ResultHandler = Callable[[TranscriptionResult], Awaitable[None]]


@dataclass(slots=True)
class TranscriptionDispatcher:
    """Turns accepted chunks into transcripts, delivered strictly in acceptance order.

    Each accepted chunk gets its own recognition task (bounded by a semaphore of
    ``max_concurrent_processes``) while a single consumer task awaits them in
    FIFO order and hands results to ``on_result``. Chunks arriving while
    ``max_concurrent_processes`` are already pending are dropped.
    """

    recognizer: Recognizer
    lifecycle: LifecycleManager
    on_result: ResultHandler
    max_concurrent_processes: int = 1
    target_format: PcmFormat = WHISPER_PCM_FORMAT

    _queue: asyncio.Queue[asyncio.Task[TranscriptionResult | None]] = field(
        default_factory=asyncio.Queue
    )
    _inflight: set[asyncio.Task[TranscriptionResult | None]] = field(default_factory=set)
    _semaphore: asyncio.Semaphore | None = None
    _consumer_task: asyncio.Task[None] | None = None
    _pending: int = 0
    _running: bool = False
    _dropped: int = 0

    def __post_init__(self) -> None:
        if self.max_concurrent_processes <= 0:
            raise ValueError("max_concurrent_processes must be > 0")

    @property
    def pending_chunks(self) -> int:
        return self._pending

    @property
    def dropped_chunks(self) -> int:
        return self._dropped

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.Queue()
        self._semaphore = asyncio.Semaphore(self.max_concurrent_processes)
        self._pending = 0
        self._dropped = 0
        self._running = True
        self._consumer_task = asyncio.create_task(self._consume())

    def submit(self, chunk: AudioChunk) -> bool:
        """Accept a chunk without blocking. Returns False when it was dropped."""
        if not self._running:
            return False
        if self._pending >= self.max_concurrent_processes:
            self._dropped += 1
            logger.debug(
                "[Dispatcher] Dropping chunk #%d (%.1fs audio, %d pending, limit=%d)",
                chunk.sequence,
                chunk.duration_s,
                self._pending,
                self.max_concurrent_processes,
            )
            return False

        self._pending += 1
        task = asyncio.create_task(self._recognize(chunk))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        self._queue.put_nowait(task)
        return True

    async def join(self) -> None:
        """Wait until every accepted chunk has been handled."""
        if self._running:
            await self._queue.join()

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._pending = 0

        self.lifecycle.terminate_all()

        for task in list(self._inflight):
            task.cancel()
        await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()

        if self._consumer_task:
            self._consumer_task.cancel()
            await asyncio.gather(self._consumer_task, return_exceptions=True)
            self._consumer_task = None

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        self.lifecycle.release_all()

    async def _recognize(self, chunk: AudioChunk) -> TranscriptionResult | None:
        assert self._semaphore is not None
        async with self._semaphore:
            wav_path = self.lifecycle.new_temp_path(".wav")
            owned = [wav_path, *self.recognizer.sidecar_paths(wav_path)]
            for path in owned[1:]:
                self.lifecycle.track_temp_file(path)

            started = time.monotonic()
            text: str | None = None
            try:
                try:
                    data = format_for_recognizer(
                        chunk.pcm16le,
                        source_sample_rate_hz=chunk.sample_rate_hz,
                        target=self.target_format,
                    )
                    await _write_file(wav_path, data)
                    text = await self.recognizer.transcribe(wav_path, tracker=self.lifecycle)
                except RecognitionError as exc:
                    logger.warning(
                        "[Dispatcher] Chunk #%d failed (%s): %s", chunk.sequence, exc.code, exc.message
                    )
                    if exc.stderr:
                        logger.debug("[Dispatcher] recognizer stderr: %s", exc.stderr)
                except OSError as exc:
                    logger.warning("[Dispatcher] Chunk #%d failed: %s", chunk.sequence, exc)

                await asyncio.gather(*(self.lifecycle.release_async(path) for path in owned))
            finally:
                # no-op for paths already released above
                for path in owned:
                    self.lifecycle.release(path)

            if text is None:
                return None
            return TranscriptionResult(
                sequence=chunk.sequence,
                text=text,
                elapsed_s=time.monotonic() - started,
            )

    async def _consume(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                # asyncio.wait never cancels the awaited task nor raises its exception
                await asyncio.wait({task})
                result = _task_result(task, self.recognizer.name())
                if result is not None and self._running:
                    await self.on_result(result)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[Dispatcher] Result handler failed")
            finally:
                if self._pending > 0:
                    self._pending -= 1
                self._queue.task_done()


def _task_result(
    task: asyncio.Task[TranscriptionResult | None], recognizer_name: str
) -> TranscriptionResult | None:
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        logger.error("[Dispatcher] %s recognition crashed: %s", recognizer_name, exc)
        return None
    return task.result()


async def _write_file(path: Path, data: bytes) -> None:
    loop = asyncio.get_running_loop()
    write = loop.run_in_executor(None, path.write_bytes, data)
    try:
        await asyncio.shield(write)
    except asyncio.CancelledError:
        # An executor write cannot be interrupted; the file must exist before it is released.
        await asyncio.gather(write, return_exceptions=True)
        raise
