import asyncio

import pytest

from holdspeak.audio import BYTES_PER_SECOND
from holdspeak.chunker import ChunkingOptions
from holdspeak.errors import TranscriptionFailure
from holdspeak.transcription import ChunkedTranscription, DeepgramTranscriber, TranscriptionGateway, TranscriptValidator


class SecondsGateway(TranscriptionGateway):
    """Answers according to the second of audio a chunk starts at, each second being filled with its own index"""

    def __init__(self, texts):
        self.texts = texts
        self.calls = 0

    async def transcribe(self, buffer):
        self.calls += 1
        return self.texts[buffer[0]]


class SlowGateway(TranscriptionGateway):
    async def transcribe(self, buffer):
        await asyncio.sleep(3600)


def _numbered_seconds(count: int) -> bytes:
    return b"".join(bytes([second]) * BYTES_PER_SECOND for second in range(count))


@pytest.mark.parametrize(
    "text",
    [
        "Thanks for watching!",
        "thank you for watching",
        "www.example.com",
        "aaaaaah",
        "a b c d e f",
        "Learn English for free at our website",
        "Subtitles by the community",
        "   ",
    ],
)
def test_garbage_transcripts_are_invalid(text):
    assert not TranscriptValidator.is_valid(text)


@pytest.mark.parametrize("text", ["Hello world", "Thanks for watching the kids tonight", "Meeting at 3 pm"])
def test_real_transcripts_are_valid(text):
    assert TranscriptValidator.is_valid(text)


def test_long_recording_is_transcribed_in_chunks():
    gateway = SecondsGateway({0: "one two three", 1: "three four five", 3: "five six"})
    transcription = ChunkedTranscription(gateway, ChunkingOptions(max_chunk_duration_ms=2_000, overlap_ms=500))

    text = asyncio.run(transcription.transcribe(_numbered_seconds(5)))

    assert gateway.calls == 3
    assert text == "one two three four five six"


def test_short_recording_is_one_call():
    gateway = SecondsGateway({0: "  just this  "})
    assert asyncio.run(ChunkedTranscription(gateway).transcribe(_numbered_seconds(1), 1_000)) == "just this"
    assert gateway.calls == 1


def test_garbage_result_becomes_empty():
    gateway = SecondsGateway({0: "Thanks for watching!"})
    assert asyncio.run(ChunkedTranscription(gateway).transcribe(_numbered_seconds(1))) == ""


def test_timeout_grows_with_audio_length():
    transcription = ChunkedTranscription(SlowGateway())
    assert transcription.timeout_for(bytes(BYTES_PER_SECOND * 10)) == pytest.approx(25.0)


def test_slow_backend_raises_transcription_failure(monkeypatch):
    monkeypatch.setattr(ChunkedTranscription, "TIMEOUT_BASE_SECONDS", 0.01)
    monkeypatch.setattr(ChunkedTranscription, "TIMEOUT_PER_AUDIO_SECOND", 0.0)
    with pytest.raises(TranscriptionFailure, match="timed out"):
        asyncio.run(ChunkedTranscription(SlowGateway()).transcribe(_numbered_seconds(1)))


def test_failing_chunk_cancels_the_other_requests():
    class FirstChunkFails(TranscriptionGateway):
        def __init__(self):
            self.cancelled = 0

        async def transcribe(self, buffer):
            if buffer[0] == 0:
                await asyncio.sleep(0.01)
                raise RuntimeError("bad request")
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise

    gateway = FirstChunkFails()
    transcription = ChunkedTranscription(gateway, ChunkingOptions(max_chunk_duration_ms=2_000, overlap_ms=500))

    async def scenario():
        with pytest.raises(TranscriptionFailure, match="bad request"):
            await transcription.transcribe(_numbered_seconds(5))
        return gateway.cancelled

    assert asyncio.run(scenario()) == 2


def test_deepgram_url_carries_audio_format():
    transcriber = DeepgramTranscriber("key", DeepgramTranscriber.Model.NOVA_3, language="fr")
    assert transcriber.ws_url.startswith("wss://api.deepgram.com/v1/listen?model=nova-3")
    assert "encoding=linear16" in transcriber.ws_url
    assert "sample_rate=16000" in transcriber.ws_url
    assert "language=fr" in transcriber.ws_url
    assert transcriber.ws_headers == {"Authorization": "Token key"}
