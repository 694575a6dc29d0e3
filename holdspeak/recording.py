from __future__ import annotations

import asyncio
import time
from asyncio import CancelledError
from collections.abc import Callable
from contextlib import suppress

import janus
import sounddevice as sd
from janus import SyncQueueShutDown

from holdspeak.audio import SAMPLE_RATE, CapturedAudio, apply_gain, feedback_tone, has_significant_audio, level
from holdspeak.console import debug, errprint
from holdspeak.orchestrator import Recorder


class RecordingSession(Recorder):
    """Microphone capture for one press-to-release cycle.

    The PortAudio callback runs on its own thread and only pushes raw blocks into a janus queue; a task on
    the event loop collects them and reports the input level.
    """

    BLOCK_MS = 40

    def __init__(self, gain: float = 1.0, on_level: Callable[[float], None] | None = None):
        self.gain = gain
        self.on_level = on_level
        self._stream: sd.RawInputStream | None = None
        self._queue: janus.Queue[bytes | None] | None = None
        self._collector: asyncio.Task | None = None
        self._blocks: list[bytes] = []
        self._started_at = 0.0

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    async def start(self):
        if self._stream is not None:
            self.abort()
        self._blocks = []
        self._queue = janus.Queue()
        self._stream = sd.RawInputStream(
            samplerate=SAMPLE_RATE,
            blocksize=int(SAMPLE_RATE * self.BLOCK_MS / 1000),
            dtype="int16",
            channels=1,
            callback=self._callback,
        )
        self._collector = asyncio.create_task(self._collect(self._queue))
        try:
            await asyncio.to_thread(self._stream.start)
        except Exception:
            self.abort()
            raise
        self._started_at = time.perf_counter()
        debug("[REC] started")

    def _callback(self, indata, frames, timeinfo, status):  # pragma: no cover - sounddevice callback
        if status:
            debug(f"[REC] stream status: {status}")
        queue = self._queue
        if queue is None:
            return
        try:
            data = apply_gain(bytes(indata), self.gain)
            with suppress(SyncQueueShutDown, RuntimeError):
                queue.sync_q.put_nowait(data)
        except Exception as exc:
            errprint(f"Error in microphone callback: {exc}")

    async def _collect(self, queue: janus.Queue[bytes | None]):
        try:
            while (block := await queue.async_q.get()) is not None:
                self._blocks.append(block)
                if self.on_level is not None:
                    self.on_level(level(block))
        except CancelledError:
            pass

    async def stop(self) -> CapturedAudio:
        stream, queue, collector = self._stream, self._queue, self._collector
        self._stream = None
        recording_ms = int((time.perf_counter() - self._started_at) * 1000)
        if stream is not None:
            try:
                await asyncio.to_thread(stream.stop)
            finally:
                stream.close()
        if queue is not None:
            with suppress(SyncQueueShutDown, RuntimeError):
                queue.sync_q.put_nowait(None)
        if collector is not None:
            await collector
        if queue is not None:
            queue.close()
            await queue.wait_closed()
        self._queue = self._collector = None
        buffer = b"".join(self._blocks)
        self._blocks = []
        debug(f"[REC] stopped: {len(buffer)} bytes, {recording_ms}ms")
        return CapturedAudio(buffer=buffer, duration_ms=recording_ms, has_signal=has_significant_audio(buffer, recording_ms))

    def abort(self):
        stream, queue, collector = self._stream, self._queue, self._collector
        self._stream = self._queue = self._collector = None
        self._blocks = []
        if stream is not None:
            try:
                stream.abort()
            except sd.PortAudioError as exc:
                errprint(f"WARNING: Unable to abort input stream: {exc}")
            finally:
                stream.close()
        if collector is not None:
            collector.cancel()
        if queue is not None:
            queue.close()
        debug("[REC] aborted")

    def beep(self):
        try:
            sd.play(feedback_tone(), SAMPLE_RATE)
        except sd.PortAudioError as exc:
            debug(f"[REC] feedback tone failed: {exc}")
