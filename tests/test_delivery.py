import asyncio

from conftest import FakeBackend, FakeClock, hang

from holdspeak.automation import AutomationResult, Notifier, PermissionCache, Script
from holdspeak.delivery import (
    DeliveryChain,
    DeliveryContext,
    DeliveryOutcome,
    FocusVerifiedPasteStrategy,
    NativePasteStrategy,
    NotesAppPasteStrategy,
    SmartSpacer,
    StagedPasteStrategy,
    TypingStrategy,
)


def _chain(backend, strategies, clock=None):
    kwargs = {"clock": clock} if clock is not None else {}
    return DeliveryChain(backend, strategies, PermissionCache(), Notifier(backend), **kwargs)


def test_falls_back_after_a_timeout_and_restores_clipboard(clipboard):
    paste_calls = 0

    async def paste(params):
        nonlocal paste_calls
        paste_calls += 1
        if paste_calls == 1:
            await asyncio.sleep(3600)
        return AutomationResult(True)

    backend = FakeBackend(clipboard, {Script.PASTE: paste, Script.FRONTMOST_APP: AutomationResult(True, "gedit")})
    first = NativePasteStrategy(backend, clipboard, settle_delay=0)
    first.timeout = 0.05
    second = FocusVerifiedPasteStrategy(backend, clipboard, settle_delay=0)

    result = asyncio.run(_chain(backend, [first, second]).deliver("Hello world"))

    assert result.outcome is DeliveryOutcome.DELIVERED
    assert result.strategy == "focus-verified-paste"
    assert result.attempts == ("native-paste", "focus-verified-paste")
    assert backend.pasted == ["Hello world"]
    assert clipboard.content == "original clipboard"


def test_missing_permission_stops_before_any_paste(clipboard):
    backend = FakeBackend(clipboard, {Script.CHECK_PERMISSION: AutomationResult.failed("no socket")})
    strategy = NativePasteStrategy(backend, clipboard, settle_delay=0)

    result = asyncio.run(_chain(backend, [strategy]).deliver("Hello"))

    assert result.outcome is DeliveryOutcome.PERMISSION_DENIED
    assert Script.PASTE not in backend.scripts()
    assert Script.NOTIFY in backend.scripts()
    assert clipboard.writes == []


def test_every_strategy_failing_notifies_the_user(clipboard):
    backend = FakeBackend(clipboard, {Script.PASTE: AutomationResult.failed("refused"), Script.CLIPBOARD_FROM_FILE: AutomationResult(True)})
    strategies = [NativePasteStrategy(backend, clipboard, settle_delay=0), StagedPasteStrategy(backend, clipboard, settle_delay=0)]

    result = asyncio.run(_chain(backend, strategies).deliver("Some dictated text"))

    assert result.outcome is DeliveryOutcome.EXHAUSTED
    assert result.attempts == ("native-paste", "staged-paste")
    notifications = [params for script, params in backend.calls if script is Script.NOTIFY]
    assert len(notifications) == 1
    assert "Some dictated text" in notifications[0]["message"]
    assert clipboard.content == "original clipboard"


def test_staged_paste_loads_the_clipboard_from_a_file(clipboard):
    staged = []

    async def from_file(params):
        with open(params["path"], encoding="utf-8") as staged_file:
            staged.append(staged_file.read())
        return AutomationResult(True)

    backend = FakeBackend(clipboard, {Script.CLIPBOARD_FROM_FILE: from_file})
    result = asyncio.run(_chain(backend, [StagedPasteStrategy(backend, clipboard, settle_delay=0)]).deliver("Ça marche"))

    assert result.delivered
    assert staged == ["Ça marche"]


def test_blank_text_is_not_delivered(clipboard):
    backend = FakeBackend(clipboard)
    result = asyncio.run(_chain(backend, [NativePasteStrategy(backend, clipboard)]).deliver("   "))
    assert result.outcome is DeliveryOutcome.EMPTY
    assert backend.calls == []


def test_app_specific_strategy_goes_first(clipboard):
    backend = FakeBackend(clipboard)
    native = NativePasteStrategy(backend, clipboard)
    notes = NotesAppPasteStrategy(backend, clipboard)
    chain = _chain(backend, [native, notes])

    assert chain.ordered_strategies("Obsidian") == [notes, native]
    assert chain.ordered_strategies("firefox") == [native]


def test_terminal_gets_shift_paste(clipboard):
    backend = FakeBackend(clipboard, {Script.FRONTMOST_APP: AutomationResult(True, "kitty")})
    asyncio.run(_chain(backend, [NativePasteStrategy(backend, clipboard, settle_delay=0)]).deliver("ls -la"))
    assert (Script.PASTE, {"shift": True}) in backend.calls


def test_focus_change_aborts_the_paste(clipboard):
    apps = iter(["gedit", "firefox"])

    async def frontmost(params):
        return AutomationResult(True, next(apps, "firefox"))

    backend = FakeBackend(clipboard, {Script.FRONTMOST_APP: frontmost})
    strategy = FocusVerifiedPasteStrategy(backend, clipboard, settle_delay=0)

    assert asyncio.run(strategy.attempt("secret", DeliveryContext("gedit"))) is False
    assert backend.pasted == []
    assert clipboard.content == "original clipboard"


def test_typing_pastes_non_ascii_runs(clipboard):
    backend = FakeBackend(clipboard)
    result = asyncio.run(_chain(backend, [TypingStrategy(backend, clipboard, settle_delay=0)]).deliver("café au lait"))

    assert result.delivered
    typed = [params["text"] for script, params in backend.calls if script is Script.TYPE_TEXT]
    assert typed == ["caf", " au lait"]
    assert backend.pasted == ["é"]
    assert clipboard.content == "original clipboard"


def test_long_idle_refreshes_permission(clipboard):
    clock = FakeClock()
    backend = FakeBackend(clipboard)
    chain = _chain(backend, [NativePasteStrategy(backend, clipboard, settle_delay=0)], clock=clock)

    asyncio.run(chain.deliver("one"))
    asyncio.run(chain.deliver("two"))
    assert backend.scripts().count(Script.CHECK_PERMISSION) == 1

    clock.advance(DeliveryChain.IDLE_REFRESH_SECONDS + 1)
    asyncio.run(chain.deliver("three"))
    assert backend.scripts().count(Script.CHECK_PERMISSION) == 2


def test_timed_out_strategy_does_not_block_the_next(clipboard):
    backend = FakeBackend(clipboard, {Script.CLIPBOARD_FROM_FILE: hang})
    staged = StagedPasteStrategy(backend, clipboard, settle_delay=0)
    staged.timeout = 0.05
    native = NativePasteStrategy(backend, clipboard, settle_delay=0)

    result = asyncio.run(_chain(backend, [staged, native]).deliver("fallback"))

    assert result.strategy == "native-paste"
    assert backend.pasted == ["fallback"]


def test_time_budget_covers_every_strategy_timing_out(clipboard):
    backend = FakeBackend(clipboard)
    staged = StagedPasteStrategy(backend, clipboard, settle_delay=0)
    native = NativePasteStrategy(backend, clipboard, settle_delay=0)
    chain = _chain(backend, [staged, native])

    assert chain.time_budget == (
        PermissionCache.CHECK_TIMEOUT_SECONDS + DeliveryChain.FRONTMOST_TIMEOUT_SECONDS + staged.timeout + native.timeout
    )


def test_spacer_continues_a_sentence():
    spacer = SmartSpacer(window=10)
    assert spacer.apply("Hello", 0.0) == "Hello"
    spacer.record("Hello", 0.0)
    assert spacer.apply("There it is", 2.0) == " there it is"
    assert spacer.apply("I think so", 2.0) == " I think so"
    assert spacer.apply("NASA called", 2.0) == " NASA called"


def test_spacer_after_sentence_end_and_window():
    spacer = SmartSpacer(window=10)
    spacer.record("Done.", 0.0)
    assert spacer.apply("Next one", 1.0) == " Next one"
    assert spacer.apply("Next one", 11.0) == "Next one"


def test_spacer_applied_between_deliveries(clipboard):
    clock = FakeClock()
    backend = FakeBackend(clipboard)
    chain = DeliveryChain(
        backend,
        [NativePasteStrategy(backend, clipboard, settle_delay=0)],
        PermissionCache(),
        Notifier(backend),
        spacer=SmartSpacer(),
        clock=clock,
    )
    asyncio.run(chain.deliver("First part"))
    clock.advance(2)
    asyncio.run(chain.deliver("Second part."))
    assert backend.pasted == ["First part", " second part."]
