from __future__ import annotations

import time
from asyncio import CancelledError
from contextlib import suppress
from typing import NamedTuple

import evdev
from evdev import InputDevice, categorize, ecodes

from holdspeak.console import errprint
from holdspeak.orchestrator import PushToTalkOrchestrator

F_KEY_CODES = {
    "f1": ecodes.KEY_F1,
    "f2": ecodes.KEY_F2,
    "f3": ecodes.KEY_F3,
    "f4": ecodes.KEY_F4,
    "f5": ecodes.KEY_F5,
    "f6": ecodes.KEY_F6,
    "f7": ecodes.KEY_F7,
    "f8": ecodes.KEY_F8,
    "f9": ecodes.KEY_F9,
    "f10": ecodes.KEY_F10,
    "f11": ecodes.KEY_F11,
    "f12": ecodes.KEY_F12,
}


def parse_hotkey(name: str) -> int:
    key = name.strip().lower()
    if key not in F_KEY_CODES:
        raise ValueError(f"Unsupported key: {name}. Use F1-F12")
    return F_KEY_CODES[key]


class HotKeyTask:
    """Turns evdev events of the push-to-talk key into `key_down`/`key_up` calls.

    Hold the key to talk, or double tap it to keep recording until the next press. Holding Alt while
    recording sends the utterance to the assistant; Escape cancels the running cycle.
    """

    ALT_CODES = {ecodes.KEY_LEFTALT, ecodes.KEY_RIGHTALT}
    CANCEL_CODES = {ecodes.KEY_ESC}
    KEY_DOWN = evdev.KeyEvent.key_down
    KEY_UP = evdev.KeyEvent.key_up
    TOGGLE_COOLDOWN = 0.5

    class Settings(NamedTuple):
        device: InputDevice
        code: int
        double_tap_window: float

    def __init__(self, orchestrator: PushToTalkOrchestrator, settings: HotKeyTask.Settings):
        self.orchestrator = orchestrator
        self.settings = settings
        self._pressed = False
        self._toggle_mode = False
        self._last_release = 0.0
        self._toggle_stop = 0.0

    async def handle(self, code: int, keystate: int, now: float):
        if code == self.settings.code:
            await self._handle_hotkey(keystate, now)
        elif code in self.ALT_CODES and keystate == self.KEY_DOWN and not self.orchestrator.is_idle:
            self.orchestrator.force_assistant = True
        elif code in self.CANCEL_CODES and keystate == self.KEY_DOWN and not self.orchestrator.is_idle:
            self._pressed = self._toggle_mode = False
            self.orchestrator.hard_cancel()

    async def _handle_hotkey(self, keystate: int, now: float):
        match keystate:
            case self.KEY_DOWN if not self._pressed and not self._toggle_mode:
                if now - self._toggle_stop < self.TOGGLE_COOLDOWN:
                    return
                self._pressed = True
                self._toggle_mode = now - self._last_release < self.settings.double_tap_window
                if self._toggle_mode and self.orchestrator.console:
                    self.orchestrator.console.print("[dim]Toggle mode: press again to stop[/dim]")
                await self.orchestrator.key_down()

            case self.KEY_UP if self._pressed and not self._toggle_mode:
                self._last_release = now
                self._pressed = False
                await self.orchestrator.key_up()

            case self.KEY_UP if self._toggle_mode:
                self._last_release = now
                self._pressed = False

            case self.KEY_DOWN if self._toggle_mode:
                self._toggle_mode = False
                self._pressed = False
                self._toggle_stop = now
                await self.orchestrator.key_up()

    async def run(self):
        device = self.settings.device
        received_event = False
        try:
            async for event in device.async_read_loop():
                received_event = True
                if event.type != ecodes.EV_KEY:
                    continue
                key_event = categorize(event)
                await self.handle(key_event.scancode, key_event.keystate, time.perf_counter())
        except CancelledError:
            pass
        except Exception as exc:
            if not received_event:
                errprint(f"Error while listening for hotkey events: {exc}")
            raise
        finally:
            with suppress(Exception):
                device.close()
