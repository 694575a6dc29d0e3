"""The narrow boundary between the pipeline and desktop automation.

Everything that touches another application (clipboard, key injection, focus queries, notifications)
goes through `AutomationBackend.run(script, params)`. Parameters travel as structured data and are never
interpolated into a command string.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any, NamedTuple

from holdspeak.console import debug, errprint


class Script(Enum):
    CHECK_PERMISSION = "check_permission"
    FRONTMOST_APP = "frontmost_app"
    FOCUSED_ELEMENT = "focused_element"
    SELECTED_TEXT = "selected_text"
    CLIPBOARD_FROM_FILE = "clipboard_from_file"
    PASTE = "paste"
    TYPE_TEXT = "type_text"
    NOTIFY = "notify"


class AutomationResult(NamedTuple):
    ok: bool
    output: str = ""
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> AutomationResult:
        return cls(ok=False, error=error)


class AutomationBackend:
    """Runs one automation script. Implementations never raise for script failures, they return them"""

    async def run(self, script: Script, params: Mapping[str, Any] | None = None) -> AutomationResult:
        raise NotImplementedError


class PermissionCache:
    """Memoised answer of the (slow) automation permission query"""

    TTL_SECONDS = 300.0
    CHECK_TIMEOUT_SECONDS = 3.0

    def __init__(self, ttl: float = TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self.status: bool | None = None
        self.timestamp = 0.0

    @property
    def is_fresh(self) -> bool:
        return self.status is not None and self._clock() - self.timestamp < self.ttl

    async def check(self, query: Callable[[], Awaitable[bool]]) -> bool:
        if self.is_fresh:
            return bool(self.status)
        try:
            status = bool(await query())
        except Exception as exc:
            errprint(f"WARNING: Automation permission check failed: {exc}")
            status = False
        self.status = status
        self.timestamp = self._clock()
        debug(f"[PERM] permission={status}")
        return status

    def force_refresh(self):
        self.status = None
        self.timestamp = 0.0


class Notifier:
    """User-facing notifications, through the desktop notification script"""

    APP_NAME = "HoldSpeak"

    def __init__(self, backend: AutomationBackend):
        self.backend = backend

    async def notify(self, title: str, message: str, urgent: bool = False):
        result = await self.backend.run(
            Script.NOTIFY,
            {"app_name": self.APP_NAME, "title": title, "message": message, "urgent": urgent},
        )
        if not result.ok:
            errprint(f"WARNING: {title}: {message}")

    async def delivery_failed(self, preview: str):
        preview = preview if len(preview) <= 60 else preview[:57] + "..."
        await self.notify("Could not insert text", f'The text was not delivered: "{preview}"', urgent=True)

    async def permission_missing(self):
        await self.notify(
            "Input automation unavailable",
            "Cannot send keystrokes to other applications. Check that ydotoold is running and its socket is reachable.",
            urgent=True,
        )

    async def transcription_failed(self, reason: str):
        await self.notify("Transcription failed", f"{reason}. Please record again.")
