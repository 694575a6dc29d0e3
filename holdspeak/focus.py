from __future__ import annotations

import asyncio
import re
from typing import NamedTuple

from holdspeak.automation import AutomationBackend, Script
from holdspeak.console import debug

TEXT_INPUT_ROLES = ("text", "entry", "paragraph", "document text", "editbar", "combo box", "terminal", "password text")
LIKELY_TEXT_APPS_RE = re.compile(
    r"notes|gedit|gnome-text-editor|kate|kwrite|mousepad|libreoffice|writer|word|slack|messages|mail|thunderbird|gmail"
    r"|chrome|chromium|firefox|notion|obsidian|evernote|telegram|whatsapp|teams|discord|signal|element|vscode|code"
    r"|codium|zed|electron|terminal|kitty|alacritty|konsole|emacs|vim",
    re.IGNORECASE,
)


class FocusInfo(NamedTuple):
    is_text_input: bool
    role: str
    application: str

    @property
    def is_undetermined(self) -> bool:
        return self.role in ("error", "unknown") or self.application == "unknown"


class FocusDetector:
    """Answers "is the user typing somewhere right now?" through the automation backend.

    `FOCUSED_ELEMENT` answers `application|role|is_text_input`; any failure is reported as an
    undetermined focus so callers can fall back to heuristics.
    """

    FOCUS_TIMEOUT_SECONDS = 1.5
    FAST_TIMEOUT_SECONDS = 0.9
    APP_TIMEOUT_SECONDS = 2.0

    def __init__(self, backend: AutomationBackend):
        self.backend = backend

    async def get_focused_element_info(self) -> FocusInfo:
        try:
            result = await asyncio.wait_for(self.backend.run(Script.FOCUSED_ELEMENT), timeout=self.FOCUS_TIMEOUT_SECONDS)
        except TimeoutError:
            return FocusInfo(False, "error", "unknown")
        if not result.ok:
            debug(f"[FOCUS] query failed: {result.error}")
            return FocusInfo(False, "error", "unknown")
        application, _, rest = result.output.partition("|")
        role, _, flag = rest.partition("|")
        role = role.strip().lower() or "unknown"
        is_text_input = flag.strip().lower() == "true" or role in TEXT_INPUT_ROLES
        return FocusInfo(is_text_input, role, application.strip() or "unknown")

    async def is_in_text_input_fast(self) -> bool:
        try:
            result = await asyncio.wait_for(self.backend.run(Script.FOCUSED_ELEMENT, {"fast": True}), timeout=self.FAST_TIMEOUT_SECONDS)
        except TimeoutError:
            return False
        return result.ok and result.output.strip().lower() == "true"

    async def active_application(self) -> str | None:
        try:
            result = await asyncio.wait_for(self.backend.run(Script.FRONTMOST_APP), timeout=self.APP_TIMEOUT_SECONDS)
        except TimeoutError:
            return None
        return result.output if result.ok and result.output else None

    async def is_typing_context(self) -> bool:
        info = await self.get_focused_element_info()
        debug(f"[FOCUS] {info}")
        if info.is_text_input:
            return True
        if "notes" in info.application.lower() and info.role in ("scroll pane", "panel", "filler"):
            return True
        if not info.is_undetermined:
            return False
        if await self.is_in_text_input_fast():
            return True
        application = await self.active_application()
        return bool(application and LIKELY_TEXT_APPS_RE.search(application))
