"""One push-to-talk cycle at a time: record, transcribe, classify, route, deliver.

The `state` field is the only lock. A key press while a cycle is running is dropped, never queued.
Every await is followed by a check that the cycle is still the current one (`hard_cancel` bumps the
generation), so a late answer from a cancelled cycle is never delivered.
"""

from __future__ import annotations

import asyncio
import time
from asyncio import CancelledError
from collections.abc import Callable
from contextlib import suppress
from enum import Enum

from rich.text import Text

from holdspeak.agent import DictationPostTreatment
from holdspeak.assistant import AssistantRouter
from holdspeak.audio import CapturedAudio
from holdspeak.automation import Notifier
from holdspeak.classifier import CommandClassifier, CommandKind
from holdspeak.console import ConsoleWithLogging, debug, errprint
from holdspeak.delivery import DeliveryChain
from holdspeak.errors import CaptureFailure, TranscriptionFailure
from holdspeak.transcription import ChunkedTranscription


class PushToTalkState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    PROCESSING = "processing"
    DELIVERING = "delivering"


class Recorder:
    async def start(self):
        raise NotImplementedError

    async def stop(self) -> CapturedAudio:
        raise NotImplementedError

    def abort(self):
        raise NotImplementedError

    def beep(self):
        pass


class PushToTalkOrchestrator:
    MIN_BUFFER_BYTES = 4_000
    MIN_DURATION_MS = 150
    START_TIMEOUT_SECONDS = 3.0
    # routing and post-treatment, on top of the transcription and delivery timeouts
    PROCESSING_BUDGET_SECONDS = 60.0
    WATCHDOG_SLACK_SECONDS = 10.0

    def __init__(
        self,
        recorder: Recorder,
        transcription: ChunkedTranscription,
        classifier: CommandClassifier,
        delivery: DeliveryChain,
        notifier: Notifier,
        router: AssistantRouter | None = None,
        post_treatment: DictationPostTreatment | None = None,
        audio_feedback: bool = False,
        console: ConsoleWithLogging | None = None,
        on_state_change: Callable[[PushToTalkState], None] | None = None,
    ):
        self.recorder = recorder
        self.transcription = transcription
        self.classifier = classifier
        self.delivery = delivery
        self.notifier = notifier
        self.router = router
        self.post_treatment = post_treatment
        self.audio_feedback = audio_feedback
        self.console = console
        self.on_state_change = on_state_change
        self.force_assistant = False
        self._state = PushToTalkState.IDLE
        self._generation = 0
        self._kind: CommandKind | None = None
        self._task: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None

    @property
    def state(self) -> PushToTalkState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._state is PushToTalkState.IDLE

    def is_dictation_active(self) -> bool:
        """Whether the user is dictating right now, i.e. an assistant answer must not pop up"""
        if self._state in (PushToTalkState.RECORDING, PushToTalkState.TRANSCRIBING):
            return True
        return not self.is_idle and self._kind is CommandKind.DICTATION

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _set_state(self, state: PushToTalkState):
        if state is self._state:
            return
        debug(f"[PTT] {self._state.value} -> {state.value}")
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _reset(self):
        if self._watchdog is not None and self._watchdog is not asyncio.current_task():
            self._watchdog.cancel()
        self._watchdog = None
        self._task = None
        self._kind = None
        self.force_assistant = False
        self._set_state(PushToTalkState.IDLE)

    async def key_down(self):
        if not self.is_idle:
            debug(f"[PTT] key down ignored while {self._state.value}")
            return
        self._generation += 1
        generation = self._generation
        self._set_state(PushToTalkState.RECORDING)
        try:
            try:
                await asyncio.wait_for(self.recorder.start(), timeout=self.START_TIMEOUT_SECONDS)
            except TimeoutError as exc:
                raise CaptureFailure("input stream did not start in time") from exc
            except CaptureFailure:
                raise
            except Exception as exc:
                raise CaptureFailure(str(exc)) from exc
        except CaptureFailure as exc:
            if self._is_current(generation):
                errprint(f"WARNING: Unable to start recording: {exc}")
                self.recorder.abort()
                self._reset()
            return
        if not self._is_current(generation):
            # cancelled while the stream was starting
            self.recorder.abort()
            return
        if self.audio_feedback:
            self.recorder.beep()

    async def key_up(self):
        if self._state is not PushToTalkState.RECORDING:
            return
        self._set_state(PushToTalkState.TRANSCRIBING)
        self._task = asyncio.create_task(self._run_cycle(self._generation))

    def hard_cancel(self):
        """Stop everything now: release the microphone, drop in-flight work, back to idle"""
        if self.is_idle:
            return
        errprint(f"WARNING: Cancelled while {self._state.value}")
        self._generation += 1
        self.recorder.abort()
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._reset()

    async def wait_idle(self):
        """Wait for the running cycle, if any, to finish"""
        if self._task is not None:
            with suppress(CancelledError):
                await self._task

    def cycle_budget(self, audio: CapturedAudio) -> float:
        """Longest time the work after the key release may take, derived from every per-call timeout"""
        return (
            self.transcription.timeout_for(audio.buffer)
            + self.PROCESSING_BUDGET_SECONDS
            + self.delivery.time_budget
            + self.WATCHDOG_SLACK_SECONDS
        )

    async def _watch(self, generation: int, budget: float):
        await asyncio.sleep(budget)
        if self._is_current(generation) and not self.is_idle:
            message = f"Push-to-talk cycle stuck in {self._state.value} for {budget:.0f}s, forcing reset"
            errprint(f"FATAL: {message}")
            if self.console:
                self.console.log(f"FATAL: {message}")
            self.hard_cancel()

    def _is_usable(self, audio: CapturedAudio) -> bool:
        if len(audio.buffer) < self.MIN_BUFFER_BYTES or audio.duration_ms < self.MIN_DURATION_MS:
            debug(f"[PTT] Recording too short ({len(audio.buffer)} bytes, {audio.duration_ms}ms), ignored")
            return False
        if not audio.has_signal:
            debug("[PTT] Recording is silent, ignored")
            return False
        return True

    async def _run_cycle(self, generation: int):
        started_at = time.perf_counter()
        try:
            try:
                audio = await self.recorder.stop()
            except Exception as exc:
                errprint(f"WARNING: Unable to stop recording cleanly: {exc}")
                return
            if not self._is_current(generation) or not self._is_usable(audio):
                return
            # armed only once recording is over: holding the key is never timed
            self._watchdog = asyncio.create_task(self._watch(generation, self.cycle_budget(audio)))

            try:
                transcript = await self.transcription.transcribe(audio.buffer, audio.duration_ms)
            except TranscriptionFailure as exc:
                if self._is_current(generation):
                    errprint(f"ERROR: {exc}")
                    await self.notifier.transcription_failed(str(exc).capitalize())
                return
            if not self._is_current(generation) or not transcript:
                return

            self._set_state(PushToTalkState.PROCESSING)
            text = await self._process(transcript)
            if not self._is_current(generation) or not text:
                return

            self._set_state(PushToTalkState.DELIVERING)
            result = await self.delivery.deliver(text)
            debug(f"[PTT] Cycle done in {time.perf_counter() - started_at:.2f}s: {result.outcome.value}")
        except CancelledError:
            debug("[PTT] Cycle cancelled")
            raise
        except Exception as exc:
            errprint(f"ERROR: Push-to-talk cycle failed: {exc}")
            if self.console:
                self.console.log(f"ERROR: Push-to-talk cycle failed: {exc!r}")
        finally:
            if self._is_current(generation) and not self.is_idle:
                self._reset()

    async def _process(self, transcript: str) -> str:
        classification = self.classifier.classify(transcript, force_assistant=self.force_assistant)
        if classification.kind.is_command and self.router is None:
            classification = classification._replace(kind=CommandKind.DICTATION)
        self._kind = classification.kind
        if self.console:
            label = "Command" if classification.kind.is_command else "Dictation"
            self.console.print_and_log(Text.assemble((f"{label}: ", "bold cyan"), transcript))

        if classification.kind.is_command:
            result = await self.router.route(classification)
            if not result.is_assistant:
                self._kind = CommandKind.DICTATION
            return result.text

        if self.post_treatment is not None:
            return await self.post_treatment.process(transcript)
        return transcript
