import asyncio

from conftest import FakeBackend, FakeClock

from holdspeak.automation import AutomationResult, Notifier, PermissionCache, Script


def test_permission_is_queried_once_within_ttl():
    clock = FakeClock()
    cache = PermissionCache(ttl=300, clock=clock)
    queries = []

    async def query():
        queries.append(clock())
        return True

    assert asyncio.run(cache.check(query))
    clock.advance(299)
    assert asyncio.run(cache.check(query))
    assert len(queries) == 1

    clock.advance(2)
    assert not cache.is_fresh
    asyncio.run(cache.check(query))
    assert len(queries) == 2


def test_failing_query_counts_as_denied():
    cache = PermissionCache(clock=FakeClock())

    async def query():
        raise TimeoutError

    assert asyncio.run(cache.check(query)) is False
    assert cache.status is False


def test_force_refresh_queries_again():
    cache = PermissionCache(clock=FakeClock())
    answers = iter([False, True])

    async def query():
        return next(answers)

    assert not asyncio.run(cache.check(query))
    cache.force_refresh()
    assert asyncio.run(cache.check(query))


def test_notification_parameters_are_structured():
    backend = FakeBackend()
    asyncio.run(Notifier(backend).delivery_failed('say "hi"; rm -rf ~ ' + "x" * 80))

    script, params = backend.calls[0]
    assert script is Script.NOTIFY
    assert params["urgent"] is True
    assert params["app_name"] == "HoldSpeak"
    assert params["message"].endswith('..."')
    assert 'say "hi"; rm -rf ~' in params["message"]


def test_failed_notification_falls_back_to_stderr(capsys):
    backend = FakeBackend(responses={Script.NOTIFY: AutomationResult.failed("no daemon")})
    asyncio.run(Notifier(backend).transcription_failed("Timed out"))
    assert "Transcription failed: Timed out. Please record again." in capsys.readouterr().err
