import asyncio
from types import SimpleNamespace

from conftest import FakeClock

from holdspeak.agent import OPENROUTER_EXTRA_HEADERS, ChatAgent, DictationPostTreatment, Provider, SessionTracker, render_template


class FakeCompletions:
    def __init__(self, answers):
        self.answers = list(answers)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=answer))])


def _client(*answers):
    completions = FakeCompletions(answers)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_session_expires_after_inactivity():
    clock = FakeClock()
    tracker = SessionTracker(timeout=300, clock=clock)
    first = tracker.session_id()
    assert first.startswith("session_1000000_")

    clock.advance(200)
    assert tracker.session_id() == first
    clock.advance(299)
    assert tracker.session_id() == first
    clock.advance(300)
    assert tracker.session_id() != first


def test_reset_forgets_the_session():
    tracker = SessionTracker(clock=FakeClock())
    first = tracker.session_id()
    assert tracker.reset() == first
    assert tracker.reset() is None


def test_template_rendering_tolerates_missing_values():
    assert render_template("Hi ${name}, ${missing}", {"name": None}) == "Hi , ${missing}"


def test_chat_agent_keeps_history_per_session():
    client, completions = _client("Paris.", "About 2 million.")
    agent = ChatAgent(client, "gpt-4o-mini")

    assert asyncio.run(agent.process_query("capital of France?", "s1", {"application": "firefox"})) == "Paris."
    assert asyncio.run(agent.process_query("population?", "s1")) == "About 2 million."

    messages = completions.requests[1]["messages"]
    assert [message["role"] for message in messages] == ["system", "user", "assistant", "user"]
    assert "application: firefox" in completions.requests[0]["messages"][0]["content"]

    agent.clear_memory("s1")
    assert agent._memory == {}


def test_chat_agent_history_is_bounded():
    client, _ = _client(*["ok"] * 15)
    agent = ChatAgent(client, "gpt-4o-mini")
    for index in range(15):
        asyncio.run(agent.process_query(f"question {index}", "s1"))
    assert len(agent._memory["s1"]) == ChatAgent.MAX_HISTORY_MESSAGES


def test_chat_agent_drops_expired_sessions():
    client, completions = _client("Paris.", "Blue.", "Noon.")
    agent = ChatAgent(client, "gpt-4o-mini")

    asyncio.run(agent.process_query("capital of France?", "s1"))
    asyncio.run(agent.process_query("color of the sky?", "s2"))
    assert list(agent._memory) == ["s2"]
    assert len(completions.requests[1]["messages"]) == 2

    asyncio.run(agent.process_query("what time is it?", "s3"))
    assert list(agent._memory) == ["s3"]


def test_edit_text_sends_instruction_and_selection():
    client, completions = _client("Dear Sir,")
    agent = ChatAgent(client, "model", provider=Provider.OPENROUTER)

    assert asyncio.run(agent.edit_text("make it formal", "hey dude")) == "Dear Sir,"
    prompt = completions.requests[0]["messages"][0]["content"]
    assert "Command: make it formal" in prompt
    assert "hey dude" in prompt
    assert completions.requests[0]["extra_headers"] == OPENROUTER_EXTRA_HEADERS


def test_post_treatment_returns_correction():
    client, completions = _client("Hello, world.")
    treatment = DictationPostTreatment(client, "model", "Add punctuation")

    assert asyncio.run(treatment.process("hello world")) == "Hello, world."
    system, user = completions.requests[0]["messages"]
    assert "Add punctuation" in system["content"]
    assert "<text-to-correct>\nhello world\n</text-to-correct>" == user["content"]


def test_post_treatment_retries_then_keeps_raw_text(monkeypatch):
    monkeypatch.setattr(DictationPostTreatment, "RETRY_DELAY_SECONDS", 0)
    client, completions = _client(RuntimeError("503"), RuntimeError("503"), RuntimeError("503"))
    treatment = DictationPostTreatment(client, "model", "Fix it")

    assert asyncio.run(treatment.process("raw words")) == "raw words"
    assert len(completions.requests) == DictationPostTreatment.MAX_RETRIES


def test_post_treatment_recovers_on_retry(monkeypatch):
    monkeypatch.setattr(DictationPostTreatment, "RETRY_DELAY_SECONDS", 0)
    client, _ = _client(RuntimeError("503"), "Fixed.")
    assert asyncio.run(DictationPostTreatment(client, "model", "Fix it").process("fixed")) == "Fixed."
