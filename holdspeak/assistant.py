from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import NamedTuple

from holdspeak.agent import Agent, SessionTracker
from holdspeak.automation import AutomationBackend, Script
from holdspeak.classifier import Classification, CommandClassifier, CommandKind
from holdspeak.console import ConsoleWithLogging, debug, errprint
from holdspeak.errors import RoutingFailure
from holdspeak.focus import FocusDetector
from holdspeak.overlay import Overlay


class RouteResult(NamedTuple):
    text: str
    is_assistant: bool
    shown_in_overlay: bool = False


class SelectedTextCache:
    """Text currently selected in the focused application, remembered for a very short time"""

    TTL_SECONDS = 1.0
    RETRY_DELAYS = (0.2, 0.5)
    QUERY_TIMEOUT_SECONDS = 1.0

    def __init__(
        self,
        backend: AutomationBackend,
        ttl: float = TTL_SECONDS,
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.ttl = ttl
        self.retry_delays = retry_delays
        self._clock = clock
        self._value: str | None = None
        self._timestamp = 0.0

    async def _query(self) -> str | None:
        try:
            result = await asyncio.wait_for(self.backend.run(Script.SELECTED_TEXT), timeout=self.QUERY_TIMEOUT_SECONDS)
        except TimeoutError:
            return None
        return result.output.strip() if result.ok else None

    async def get(self) -> str:
        if self._value is not None and self._clock() - self._timestamp < self.ttl:
            return self._value
        selection = await self._query()
        for delay in self.retry_delays:
            if selection is not None:
                break
            await asyncio.sleep(delay)
            selection = await self._query()
        self._value = selection or ""
        self._timestamp = self._clock()
        return self._value

    def invalidate(self):
        self._value = None


class AssistantRouter:
    """Runs a command through the agent and decides where the answer goes.

    Answers are typed where the user is typing, otherwise shown in the overlay. When the agent fails, the
    transcript is handed back to be delivered as plain dictation.
    """

    def __init__(
        self,
        agent: Agent,
        classifier: CommandClassifier,
        sessions: SessionTracker,
        focus: FocusDetector,
        overlay: Overlay,
        selection: SelectedTextCache,
        is_dictation_active: Callable[[], bool],
        console: ConsoleWithLogging | None = None,
    ):
        self.agent = agent
        self.classifier = classifier
        self.sessions = sessions
        self.focus = focus
        self.overlay = overlay
        self.selection = selection
        self.is_dictation_active = is_dictation_active
        self.console = console

    async def _ask(self, classification: Classification, selection: str) -> str:
        command = self.classifier.strip_address(classification.transcript) or classification.transcript
        try:
            if classification.kind is CommandKind.TEXT_EDIT:
                debug(f"[ROUTE] Editing {len(selection)} selected chars: {command!r}")
                answer = await self.agent.edit_text(command, selection)
            else:
                message = f'Voice command: "{command}"\nSelected text: "{selection}"' if selection else command
                application = await self.focus.active_application()
                answer = await self.agent.process_query(message, self.sessions.session_id(), {"application": application})
        except Exception as exc:
            raise RoutingFailure(f"{type(exc).__name__}: {exc}") from exc
        if not answer.strip():
            raise RoutingFailure("empty answer")
        return answer

    async def route(self, classification: Classification) -> RouteResult:
        selection = await self.selection.get()
        classification = self.classifier.refine_with_selection(classification, len(selection))
        try:
            answer = await self._ask(classification, selection)
        except RoutingFailure as exc:
            errprint(f"WARNING: Assistant unavailable ({exc}), delivering the transcript as dictation")
            return RouteResult(classification.transcript, False)
        finally:
            self.selection.invalidate()

        if self.console:
            self.console.log(f"Assistant ({classification.kind.value}): {answer}")

        if classification.kind is CommandKind.TEXT_EDIT:
            return RouteResult(answer, True)

        if self.is_dictation_active():
            errprint("WARNING: Dictation in progress, typing the answer instead of showing it")
            return RouteResult(answer, True)

        if await self.focus.is_typing_context():
            return RouteResult(answer, True)

        try:
            await self.overlay.show_overlay("", False)
            await self.overlay.send_result(answer, True)
        except Exception as exc:
            errprint(f"WARNING: Unable to show the answer ({exc}), typing it instead")
            return RouteResult(answer, True)
        return RouteResult("", True, shown_in_overlay=True)

    def clear_memory(self):
        self.sessions.reset()
        self.agent.clear_memory()
