"""Desktop automation for Linux: ydotool for key injection, the usual command line tools for the rest."""

from __future__ import annotations

import asyncio
import os
import shutil
import stat
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from pydotool import KEY_LEFTCTRL, KEY_LEFTSHIFT, KEY_V, key_combination, type_string

from holdspeak.automation import AutomationBackend, AutomationResult, Script
from holdspeak.console import debug

DEFAULT_YDOTOOL_SOCKET = "/tmp/.ydotool_socket"


class LinuxDesktopAutomation(AutomationBackend):
    COMMAND_TIMEOUT_SECONDS = 2.0

    def __init__(self, keyboard_delay_ms: int = 20):
        self.keyboard_delay_ms = keyboard_delay_ms

    @property
    def is_wayland(self) -> bool:
        return bool(os.getenv("WAYLAND_DISPLAY"))

    @property
    def ydotool_socket(self) -> Path:
        return Path(os.getenv("YDOTOOL_SOCKET") or DEFAULT_YDOTOOL_SOCKET)

    async def _command(self, args: Sequence[str], stdin_path: str | None = None, capture: bool = True) -> AutomationResult:
        if shutil.which(args[0]) is None:
            return AutomationResult.failed(f"{args[0]} is not installed")
        stdin = open(stdin_path, "rb") if stdin_path else asyncio.subprocess.DEVNULL
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=stdin,
                # clipboard owners keep running in the background: never wait on their output
                stdout=asyncio.subprocess.PIPE if capture else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE if capture else asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            return AutomationResult.failed(str(exc))
        finally:
            if stdin_path:
                stdin.close()
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.COMMAND_TIMEOUT_SECONDS)
        except TimeoutError:
            process.kill()
            await process.wait()
            return AutomationResult.failed(f"{args[0]} timed out")
        if process.returncode != 0:
            return AutomationResult.failed((stderr or b"").decode(errors="replace").strip() or f"{args[0]} exited with {process.returncode}")
        return AutomationResult(ok=True, output=(stdout or b"").decode(errors="replace"))

    async def run(self, script: Script, params: Mapping[str, Any] | None = None) -> AutomationResult:
        params = params or {}
        debug(f"[AUTO] {script.value}")
        match script:
            case Script.CHECK_PERMISSION:
                return self._check_ydotool()
            case Script.FRONTMOST_APP:
                return await self._frontmost_app()
            case Script.FOCUSED_ELEMENT:
                return await self._focused_element(bool(params.get("fast")))
            case Script.SELECTED_TEXT:
                if self.is_wayland:
                    return await self._command(["wl-paste", "--primary", "--no-newline"])
                return await self._command(["xclip", "-o", "-selection", "primary"])
            case Script.CLIPBOARD_FROM_FILE:
                if self.is_wayland:
                    return await self._command(["wl-copy", "--type", "text/plain"], stdin_path=params["path"], capture=False)
                return await self._command(["xclip", "-selection", "clipboard", "-in", params["path"]], capture=False)
            case Script.PASTE:
                combo = [KEY_LEFTCTRL, KEY_LEFTSHIFT, KEY_V] if params.get("shift") else [KEY_LEFTCTRL, KEY_V]
                return await self._ydotool(key_combination, combo, each_delay_ms=self.keyboard_delay_ms, press_ms=self.keyboard_delay_ms)
            case Script.TYPE_TEXT:
                return await self._ydotool(
                    type_string,
                    params["text"],
                    hold_delay_ms=self.keyboard_delay_ms,
                    each_char_delay_ms=self.keyboard_delay_ms,
                )
            case Script.NOTIFY:
                args = ["notify-send", "--app-name", params.get("app_name", "HoldSpeak")]
                if params.get("urgent"):
                    args += ["--urgency", "critical"]
                return await self._command([*args, "--", params["title"], params["message"]])
        return AutomationResult.failed(f"Unsupported script: {script.value}")

    def _check_ydotool(self) -> AutomationResult:
        socket_path = self.ydotool_socket
        try:
            mode = socket_path.stat().st_mode
        except OSError as exc:
            return AutomationResult.failed(f"ydotool socket {socket_path} unavailable: {exc}")
        if not stat.S_ISSOCK(mode) or not os.access(socket_path, os.W_OK):
            return AutomationResult.failed(f"{socket_path} is not a writable socket")
        return AutomationResult(ok=True)

    async def _frontmost_app(self) -> AutomationResult:
        if self.is_wayland and shutil.which("xdotool") is None:
            return AutomationResult.failed("no way to query the active window")
        result = await self._command(["xdotool", "getactivewindow", "getwindowclassname"])
        return result._replace(output=result.output.strip())

    async def _focused_element(self, fast: bool) -> AutomationResult:
        # No accessibility bridge: the role is unknown, only the application can be told
        if fast:
            return AutomationResult.failed("fast focus check unavailable")
        app = await self._frontmost_app()
        if not app.ok:
            return app
        return AutomationResult(ok=True, output=f"{app.output}|unknown|false")

    @staticmethod
    async def _ydotool(func, *args, **kwargs) -> AutomationResult:
        try:
            await asyncio.to_thread(func, *args, **kwargs)
        except (OSError, RuntimeError) as exc:
            return AutomationResult.failed(f"ydotool: {exc}")
        return AutomationResult(ok=True)
