"""Pytest configuration helpers, and fakes standing in for the desktop and the network."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()

from holdspeak.agent import Agent  # noqa: E402
from holdspeak.automation import AutomationBackend, AutomationResult, Script  # noqa: E402
from holdspeak.delivery import Clipboard  # noqa: E402
from holdspeak.overlay import Overlay  # noqa: E402


class FakeClipboard(Clipboard):
    def __init__(self, content: str = "original clipboard"):
        self.content = content
        self.writes: list[str] = []

    async def read(self) -> str | None:
        return self.content

    async def write(self, text: str):
        self.writes.append(text)
        self.content = text


class FakeBackend(AutomationBackend):
    """Records every script run. A response is either an `AutomationResult` or an async callable returning one"""

    def __init__(self, clipboard: FakeClipboard | None = None, responses: dict | None = None):
        self.clipboard = clipboard
        self.responses = dict(responses or {})
        self.calls: list[tuple[Script, dict]] = []
        self.pasted: list[str] = []

    def scripts(self) -> list[Script]:
        return [script for script, _ in self.calls]

    async def run(self, script, params=None):
        params = dict(params or {})
        self.calls.append((script, params))
        response = self.responses.get(script, AutomationResult(True))
        if callable(response):
            response = await response(params)
        if script is Script.PASTE and response.ok and self.clipboard is not None:
            self.pasted.append(self.clipboard.content)
        return response


class FakeAgent(Agent):
    def __init__(self, answer: str = "It is sunny.", edit_answer: str = "Edited text.", error: Exception | None = None):
        self.answer = answer
        self.edit_answer = edit_answer
        self.error = error
        self.queries: list[tuple[str, str, dict | None]] = []
        self.edits: list[tuple[str, str]] = []
        self.cleared = 0

    async def process_query(self, message, session_id, user_context=None):
        self.queries.append((message, session_id, user_context))
        if self.error:
            raise self.error
        return self.answer

    async def edit_text(self, instruction, selection):
        self.edits.append((instruction, selection))
        if self.error:
            raise self.error
        return self.edit_answer

    def clear_memory(self, session_id=None):
        self.cleared += 1


class FakeOverlay(Overlay):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.messages: list[tuple] = []

    async def show_overlay(self, text, is_loading, loading_message=None):
        if self.error:
            raise self.error
        self.messages.append(("show", text, is_loading))

    async def send_result(self, text, is_conversational):
        if self.error:
            raise self.error
        self.messages.append(("result", text, is_conversational))

    async def hide(self):
        self.messages.append(("hide",))


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


async def hang(params):
    await asyncio.sleep(3600)


@pytest.fixture()
def clipboard():
    return FakeClipboard()


@pytest.fixture()
def clock():
    return FakeClock()
