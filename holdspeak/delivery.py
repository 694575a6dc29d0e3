"""Getting text into whatever application has the focus.

`DeliveryChain` tries an ordered list of strategies, one after the other, each under its own timeout,
until one reports success. Strategies that borrow the clipboard give it back, whatever happens.
"""

from __future__ import annotations

import asyncio
import os
import re
import tempfile
import time
from collections.abc import Callable, Sequence
from contextlib import suppress
from enum import Enum
from typing import NamedTuple

import pyperclipfix as pyperclip

from holdspeak.automation import AutomationBackend, Notifier, PermissionCache, Script
from holdspeak.console import ConsoleWithLogging, debug, errprint

TERMINAL_APPS_RE = re.compile(r"terminal|kitty|alacritty|konsole|xterm|foot|wezterm|tilix|terminator|ghostty", re.IGNORECASE)


class DeliveryOutcome(Enum):
    DELIVERED = "delivered"
    PERMISSION_DENIED = "permission_denied"
    EXHAUSTED = "exhausted"
    EMPTY = "empty"


class DeliveryResult(NamedTuple):
    outcome: DeliveryOutcome
    strategy: str | None = None
    attempts: tuple[str, ...] = ()

    @property
    def delivered(self) -> bool:
        return self.outcome is DeliveryOutcome.DELIVERED


class DeliveryContext(NamedTuple):
    application: str
    use_shift_to_paste: bool = False


class Clipboard:
    """System clipboard, through pyperclip, off the event loop"""

    async def read(self) -> str | None:
        try:
            content = await asyncio.to_thread(pyperclip.paste)
        except pyperclip.PyperclipException as exc:
            debug(f"[CLIP] Cannot read clipboard: {exc}")
            return None
        return "" if content is None else content

    async def write(self, text: str):
        await asyncio.to_thread(pyperclip.copy, text)


class ClipboardGuard:
    """Saves the clipboard on entry and puts it back on exit, on success and failure alike"""

    def __init__(self, clipboard: Clipboard):
        self.clipboard = clipboard
        self._saved: str | None = None

    async def __aenter__(self) -> ClipboardGuard:
        self._saved = await self.clipboard.read()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._saved is None:
            return
        try:
            await self.clipboard.write(self._saved)
        except Exception as restore_exc:
            errprint(f"WARNING: Unable to restore clipboard: {restore_exc}")


class DeliveryStrategy:
    name = "strategy"
    timeout = 5.0
    app_pattern: re.Pattern | None = None

    def __init__(self, backend: AutomationBackend, clipboard: Clipboard, settle_delay: float = 0.15):
        self.backend = backend
        self.clipboard = clipboard
        self.settle_delay = settle_delay

    @property
    def is_app_specific(self) -> bool:
        return self.app_pattern is not None

    def matches(self, application: str) -> bool:
        return self.app_pattern is not None and bool(self.app_pattern.search(application))

    async def attempt(self, payload: str, context: DeliveryContext) -> bool:
        raise NotImplementedError

    async def _paste(self, context: DeliveryContext) -> bool:
        result = await self.backend.run(Script.PASTE, {"shift": context.use_shift_to_paste})
        if not result.ok:
            debug(f"[DELIVER] {self.name}: paste failed: {result.error}")
            return False
        # leave the target application time to read the clipboard before it is restored
        await asyncio.sleep(self.settle_delay)
        return True


class NativePasteStrategy(DeliveryStrategy):
    """Clipboard written in-process, then a paste key combination"""

    name = "native-paste"
    timeout = 2.0

    async def attempt(self, payload: str, context: DeliveryContext) -> bool:
        async with ClipboardGuard(self.clipboard):
            await self.clipboard.write(payload)
            return await self._paste(context)


class StagedPasteStrategy(DeliveryStrategy):
    """Payload staged in a temporary file and loaded by the desktop clipboard tool before pasting"""

    name = "staged-paste"
    timeout = 10.0

    async def attempt(self, payload: str, context: DeliveryContext) -> bool:
        fd, path = tempfile.mkstemp(prefix="holdspeak-", suffix=".txt")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as staged:
                staged.write(payload)
            async with ClipboardGuard(self.clipboard):
                result = await self.backend.run(Script.CLIPBOARD_FROM_FILE, {"path": path})
                if not result.ok:
                    debug(f"[DELIVER] {self.name}: staging failed: {result.error}")
                    return False
                return await self._paste(context)
        finally:
            with suppress(OSError):
                os.unlink(path)


class FocusVerifiedPasteStrategy(DeliveryStrategy):
    """Pastes only if the frontmost application did not change while the clipboard was being prepared"""

    name = "focus-verified-paste"
    timeout = 10.0

    async def _frontmost(self) -> str | None:
        result = await self.backend.run(Script.FRONTMOST_APP)
        return result.output if result.ok else None

    async def attempt(self, payload: str, context: DeliveryContext) -> bool:
        expected = await self._frontmost()
        if expected is None:
            return False
        async with ClipboardGuard(self.clipboard):
            await self.clipboard.write(payload)
            await asyncio.sleep(self.settle_delay)
            current = await self._frontmost()
            if current != expected:
                errprint(f"WARNING: Focus moved from {expected!r} to {current!r}, not pasting")
                return False
            return await self._paste(context)


class NotesAppPasteStrategy(DeliveryStrategy):
    """Note-taking applications drop pastes that arrive too soon after the clipboard changes"""

    name = "notes-app-paste"
    timeout = 8.0
    app_pattern = re.compile(r"notes|obsidian|joplin|zim|xournal|standard ?notes|logseq", re.IGNORECASE)

    def __init__(self, backend: AutomationBackend, clipboard: Clipboard, settle_delay: float = 0.5):
        super().__init__(backend, clipboard, settle_delay)

    async def attempt(self, payload: str, context: DeliveryContext) -> bool:
        async with ClipboardGuard(self.clipboard):
            await self.clipboard.write(payload)
            await asyncio.sleep(self.settle_delay)
            return await self._paste(context)


class TypingStrategy(DeliveryStrategy):
    """Types ASCII characters one by one, pasting the runs of non-ASCII ones"""

    name = "typing"
    timeout = 15.0

    async def attempt(self, payload: str, context: DeliveryContext) -> bool:
        async with ClipboardGuard(self.clipboard):
            for is_ascii, run in self._runs(payload):
                if is_ascii:
                    result = await self.backend.run(Script.TYPE_TEXT, {"text": run})
                    if not result.ok:
                        return False
                else:
                    await self.clipboard.write(run)
                    if not await self._paste(context):
                        return False
        return True

    @staticmethod
    def _runs(text: str) -> list[tuple[bool, str]]:
        runs: list[tuple[bool, str]] = []
        for char in text:
            is_ascii = ord(char) <= 127
            if runs and runs[-1][0] is is_ascii:
                runs[-1] = (is_ascii, runs[-1][1] + char)
            else:
                runs.append((is_ascii, char))
        return runs


class SmartSpacer:
    """Joins consecutive dictations: a leading space, and no capital when continuing a sentence"""

    WINDOW_SECONDS = 10.0
    SENTENCE_END_RE = re.compile(r"[.!?][\"']?\s*$")
    KEEP_CAPITALIZED = frozenset(
        {
            "I", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
            "January", "February", "March", "April", "May", "June", "July", "August", "September",
            "October", "November", "December", "Google", "Apple", "Microsoft", "Amazon", "Linux",
            "GitHub", "OpenAI", "ChatGPT", "Jarvis",
        }
    )  # fmt: skip

    def __init__(self, window: float = WINDOW_SECONDS):
        self.window = window
        self._last_time: float | None = None
        self._last_text = ""

    def apply(self, text: str, now: float) -> str:
        if self._last_time is None or now - self._last_time >= self.window or text[:1].isspace():
            return text
        if self.SENTENCE_END_RE.search(self._last_text):
            return " " + text
        return " " + self._continue_sentence(text)

    def record(self, text: str, now: float):
        self._last_time = now
        self._last_text = text

    def _continue_sentence(self, text: str) -> str:
        if not text[:1].isupper() or text.startswith(("\"", "'")):
            return text
        first_word = re.split(r"[\s,.!?;:]+", text, maxsplit=1)[0]
        if first_word in self.KEEP_CAPITALIZED:
            return text
        if len(first_word) > 1 and first_word.isupper():
            return text
        return text[0].lower() + text[1:]


class DeliveryChain:
    IDLE_REFRESH_SECONDS = 30 * 60
    FRONTMOST_TIMEOUT_SECONDS = 2.0

    def __init__(
        self,
        backend: AutomationBackend,
        strategies: Sequence[DeliveryStrategy],
        permissions: PermissionCache,
        notifier: Notifier,
        spacer: SmartSpacer | None = None,
        console: ConsoleWithLogging | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.strategies = list(strategies)
        self.permissions = permissions
        self.notifier = notifier
        self.spacer = spacer
        self.console = console
        self._clock = clock
        self._last_delivery = clock()

    @property
    def time_budget(self) -> float:
        """Worst case duration of one `deliver` call: every strategy timing out in turn"""
        return (
            PermissionCache.CHECK_TIMEOUT_SECONDS
            + self.FRONTMOST_TIMEOUT_SECONDS
            + sum(strategy.timeout for strategy in self.strategies)
        )

    def ordered_strategies(self, application: str) -> list[DeliveryStrategy]:
        specific = [strategy for strategy in self.strategies if strategy.is_app_specific and strategy.matches(application)]
        generic = [strategy for strategy in self.strategies if not strategy.is_app_specific]
        return specific + generic

    async def _query_permission(self) -> bool:
        result = await asyncio.wait_for(self.backend.run(Script.CHECK_PERMISSION), timeout=PermissionCache.CHECK_TIMEOUT_SECONDS)
        return result.ok

    async def _frontmost_application(self) -> str:
        try:
            result = await asyncio.wait_for(self.backend.run(Script.FRONTMOST_APP), timeout=self.FRONTMOST_TIMEOUT_SECONDS)
        except TimeoutError:
            return "unknown"
        return result.output if result.ok and result.output else "unknown"

    async def deliver(self, text: str) -> DeliveryResult:
        if not text.strip():
            return DeliveryResult(DeliveryOutcome.EMPTY)

        now = self._clock()
        if now - self._last_delivery > self.IDLE_REFRESH_SECONDS:
            debug("[DELIVER] Long idle, refreshing automation permission")
            self.permissions.force_refresh()

        if not await self.permissions.check(self._query_permission):
            errprint("ERROR: Input automation is not available, text not delivered")
            await self.notifier.permission_missing()
            return DeliveryResult(DeliveryOutcome.PERMISSION_DENIED)

        application = await self._frontmost_application()
        context = DeliveryContext(application=application, use_shift_to_paste=bool(TERMINAL_APPS_RE.search(application)))
        payload = self.spacer.apply(text, now) if self.spacer else text

        attempts: list[str] = []
        for strategy in self.ordered_strategies(application):
            attempts.append(strategy.name)
            try:
                delivered = await asyncio.wait_for(strategy.attempt(payload, context), timeout=strategy.timeout)
            except TimeoutError:
                errprint(f"WARNING: Delivery via {strategy.name} timed out after {strategy.timeout}s")
                continue
            except Exception as exc:
                errprint(f"WARNING: Delivery via {strategy.name} failed: {exc}")
                continue
            if delivered:
                self._last_delivery = self._clock()
                if self.spacer:
                    self.spacer.record(payload, self._last_delivery)
                if self.console:
                    self.console.log(f"Delivered {len(payload)} chars to {application} via {strategy.name}")
                return DeliveryResult(DeliveryOutcome.DELIVERED, strategy.name, tuple(attempts))
            debug(f"[DELIVER] {strategy.name} did not deliver, trying next")

        errprint(f"ERROR: Every delivery strategy failed ({', '.join(attempts)})")
        await self.notifier.delivery_failed(text)
        return DeliveryResult(DeliveryOutcome.EXHAUSTED, None, tuple(attempts))
