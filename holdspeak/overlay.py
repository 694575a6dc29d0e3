from __future__ import annotations

import asyncio
import json
import os
import struct
from pathlib import Path

from rich.panel import Panel

from holdspeak.console import ConsoleWithLogging, debug

DATA_DIR = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share")) / "holdspeak"
SOCKET_PATH = DATA_DIR / "overlay.sock"


class OverlayProtocol:
    """Length-prefixed JSON message protocol over Unix sockets."""

    @staticmethod
    def encode_message(msg: dict) -> bytes:
        payload = json.dumps(msg, default=str).encode("utf-8")
        return struct.pack("!I", len(payload)) + payload

    @staticmethod
    def decode_messages(buffer: bytes) -> tuple[list[dict], bytes]:
        messages = []
        offset = 0
        while offset + 4 <= len(buffer):
            (length,) = struct.unpack("!I", buffer[offset : offset + 4])
            if offset + 4 + length > len(buffer):
                break  # incomplete message
            payload = buffer[offset + 4 : offset + 4 + length]
            try:
                messages.append(json.loads(payload.decode("utf-8")))
            except (json.JSONDecodeError, UnicodeDecodeError):
                pass  # skip malformed
            offset += 4 + length
        return messages, buffer[offset:]


class Overlay:
    async def show_overlay(self, text: str, is_loading: bool, loading_message: str | None = None):
        raise NotImplementedError

    async def send_result(self, text: str, is_conversational: bool):
        raise NotImplementedError

    async def hide(self):
        raise NotImplementedError


class SocketOverlay(Overlay):
    """Client of an on-screen display listening on a Unix socket.

    A connection is opened lazily and reopened after a failure; errors are raised to the caller, which
    decides what to do with the text instead.
    """

    CONNECT_TIMEOUT_SECONDS = 1.0

    def __init__(self, socket_path: Path = SOCKET_PATH):
        self.socket_path = socket_path
        self._writer: asyncio.StreamWriter | None = None

    async def _send(self, msg: dict):
        if self._writer is None or self._writer.is_closing():
            _, self._writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.socket_path)),
                timeout=self.CONNECT_TIMEOUT_SECONDS,
            )
        try:
            self._writer.write(OverlayProtocol.encode_message(msg))
            await asyncio.wait_for(self._writer.drain(), timeout=self.CONNECT_TIMEOUT_SECONDS)
        except (OSError, TimeoutError):
            await self.close()
            raise
        debug(f"[OVERLAY] sent {msg.get('type')}")

    async def show_overlay(self, text: str, is_loading: bool, loading_message: str | None = None):
        await self._send({"type": "show", "text": text, "loading": is_loading, "loading_message": loading_message})

    async def send_result(self, text: str, is_conversational: bool):
        await self._send({"type": "result", "text": text, "conversational": is_conversational})

    async def hide(self):
        await self._send({"type": "hide"})

    async def close(self):
        if self._writer is None:
            return
        writer, self._writer = self._writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


class ConsoleOverlay(Overlay):
    """Shows assistant answers in the terminal, used when no display server socket is configured"""

    def __init__(self, console: ConsoleWithLogging, assistant_name: str = "Jarvis"):
        self.console = console
        self.assistant_name = assistant_name

    async def show_overlay(self, text: str, is_loading: bool, loading_message: str | None = None):
        if is_loading:
            self.console.print(f"[dim]{loading_message or 'Thinking...'}[/dim]")
        elif text:
            self.console.print(text)

    async def send_result(self, text: str, is_conversational: bool):
        title = f"[bold]{self.assistant_name}[/bold]" if is_conversational else "[bold]Result[/bold]"
        self.console.print_and_log(Panel(text, title=title, border_style="magenta"), log_max_width=150)

    async def hide(self):
        pass
