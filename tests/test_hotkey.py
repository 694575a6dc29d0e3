import asyncio

from evdev import ecodes

from holdspeak.hotkey import HotKeyTask, parse_hotkey

DOWN, UP = 1, 0


class FakeOrchestrator:
    console = None

    def __init__(self):
        self.events = []
        self.force_assistant = False
        self.is_idle = True

    async def key_down(self):
        self.events.append("down")
        self.is_idle = False

    async def key_up(self):
        self.events.append("up")

    def hard_cancel(self):
        self.events.append("cancel")
        self.is_idle = True


def _task(orchestrator):
    return HotKeyTask(orchestrator, HotKeyTask.Settings(device=None, code=ecodes.KEY_F9, double_tap_window=0.5))


def _press(task, events):
    async def scenario():
        for code, state, now in events:
            await task.handle(code, state, now)

    asyncio.run(scenario())


def test_parse_hotkey():
    assert parse_hotkey(" F9 ") == ecodes.KEY_F9
    try:
        parse_hotkey("space")
    except ValueError as exc:
        assert "F1-F12" in str(exc)
    else:
        raise AssertionError("space is not a supported hotkey")


def test_hold_to_talk():
    orchestrator = FakeOrchestrator()
    _press(_task(orchestrator), [(ecodes.KEY_F9, DOWN, 10.0), (ecodes.KEY_F9, UP, 12.0)])
    assert orchestrator.events == ["down", "up"]


def test_double_tap_toggles_recording():
    orchestrator = FakeOrchestrator()
    task = _task(orchestrator)
    _press(
        task,
        [
            (ecodes.KEY_F9, DOWN, 10.0),
            (ecodes.KEY_F9, UP, 10.1),
            (ecodes.KEY_F9, DOWN, 10.3),
            (ecodes.KEY_F9, UP, 10.4),
            (ecodes.KEY_F9, DOWN, 15.0),
            (ecodes.KEY_F9, UP, 15.1),
        ],
    )
    # the quick first tap makes a short recording of its own, dropped by the orchestrator
    assert orchestrator.events == ["down", "up", "down", "up"]


def test_alt_forces_the_assistant_while_recording():
    orchestrator = FakeOrchestrator()
    task = _task(orchestrator)
    _press(task, [(ecodes.KEY_LEFTALT, DOWN, 9.0)])
    assert orchestrator.force_assistant is False
    _press(task, [(ecodes.KEY_F9, DOWN, 10.0), (ecodes.KEY_RIGHTALT, DOWN, 10.5)])
    assert orchestrator.force_assistant is True


def test_escape_cancels():
    orchestrator = FakeOrchestrator()
    task = _task(orchestrator)
    _press(task, [(ecodes.KEY_F9, DOWN, 10.0), (ecodes.KEY_ESC, DOWN, 11.0), (ecodes.KEY_F9, UP, 11.5)])
    assert orchestrator.events == ["down", "cancel"]
