from __future__ import annotations

import asyncio
import json
import re
import urllib.parse
from enum import Enum

import websockets
from openai import AsyncOpenAI

from holdspeak.audio import SAMPLE_RATE, duration_ms, to_wav
from holdspeak.chunker import DEFAULT_OPTIONS, ChunkingOptions, TranscriptChunkResult, chunk_audio, combine_transcription_results
from holdspeak.console import debug
from holdspeak.errors import TranscriptionFailure


class Backend(Enum):
    OPENAI = "openai"
    DEEPGRAM = "deepgram"


class TranscriptionGateway:
    async def transcribe(self, buffer: bytes) -> str:
        raise NotImplementedError


class OpenAITranscriber(TranscriptionGateway):
    class Model(Enum):
        GPT_4O_TRANSCRIBE = "gpt-4o-transcribe"
        GPT_4O_MINI_TRANSCRIBE = "gpt-4o-mini-transcribe"
        WHISPER_1 = "whisper-1"

    def __init__(self, client: AsyncOpenAI, model: OpenAITranscriber.Model, language: str | None = None):
        self.client = client
        self.model = model
        self.language = language

    async def transcribe(self, buffer: bytes) -> str:
        kwargs = {"model": self.model.value, "file": ("speech.wav", to_wav(buffer), "audio/wav")}
        if self.language:
            kwargs["language"] = self.language
        result = await self.client.audio.transcriptions.create(**kwargs)
        return result.text.strip()


class DeepgramTranscriber(TranscriptionGateway):
    class Model(Enum):
        NOVA_2 = "nova-2"
        NOVA_2_GENERAL = "nova-2-general"
        NOVA_3 = "nova-3"
        NOVA_3_GENERAL = "nova-3-general"

    WS_URL = "wss://api.deepgram.com/v1/listen"
    SEND_BLOCK_BYTES = 8_000

    def __init__(self, api_key: str, model: DeepgramTranscriber.Model, language: str | None = None):
        self.api_key = api_key
        self.model = model
        self.language = language

    @property
    def ws_url(self) -> str:
        params = {
            "model": self.model.value,
            "encoding": "linear16",
            "sample_rate": str(SAMPLE_RATE),
            "channels": "1",
            "smart_format": "true",
        }
        if self.language:
            params["language"] = self.language
        return self.WS_URL + "?" + urllib.parse.urlencode(params)

    @property
    def ws_headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self.api_key}"}

    async def _send(self, ws, buffer: bytes):
        for offset in range(0, len(buffer), self.SEND_BLOCK_BYTES):
            await ws.send(buffer[offset : offset + self.SEND_BLOCK_BYTES])
        await ws.send(json.dumps({"type": "CloseStream"}))

    async def transcribe(self, buffer: bytes) -> str:
        pieces: list[str] = []
        async with websockets.connect(self.ws_url, additional_headers=self.ws_headers, max_size=None) as ws:
            sender = asyncio.create_task(self._send(ws, buffer))
            try:
                async for raw in ws:
                    event = json.loads(raw)
                    if event.get("type") != "Results" or not event.get("is_final"):
                        continue
                    alternatives = event.get("channel", {}).get("alternatives", []) or [{}]
                    if transcript := alternatives[0].get("transcript", "").strip():
                        pieces.append(transcript)
            finally:
                if not sender.done():
                    sender.cancel()
            await sender
        return " ".join(pieces)


class TranscriptValidator:
    """Recognises what speech-to-text backends produce out of silence or noise"""

    GARBAGE_PATTERNS = [
        re.compile(pattern, re.IGNORECASE)
        for pattern in (
            r"^learn english for free",
            r"^www\.",
            r"^a{4,}",
            r"^[a-z]{1,2}(\s[a-z]{1,2}){4,}$",
            r"^\s*$",
            r"^(thanks|thank you) for watching[.!]?$",
            r"^subtitles by",
            r"this audio may contain these terms:",
        )
    ]

    @classmethod
    def is_valid(cls, text: str) -> bool:
        trimmed = text.strip()
        for pattern in cls.GARBAGE_PATTERNS:
            if pattern.search(trimmed):
                debug(f"[TRANS] Discarding transcript matching {pattern.pattern!r}: {trimmed!r}")
                return False
        return True


class ChunkedTranscription:
    """Transcribes a whole recording, in concurrent chunks when it is too long for one call"""

    TIMEOUT_BASE_SECONDS = 20.0
    TIMEOUT_PER_AUDIO_SECOND = 0.5

    def __init__(self, gateway: TranscriptionGateway, options: ChunkingOptions = DEFAULT_OPTIONS):
        self.gateway = gateway
        self.options = options

    def timeout_for(self, buffer: bytes) -> float:
        return self.TIMEOUT_BASE_SECONDS + duration_ms(buffer) / 1000 * self.TIMEOUT_PER_AUDIO_SECOND

    async def _transcribe_one(self, buffer: bytes) -> str:
        try:
            return await asyncio.wait_for(self.gateway.transcribe(buffer), timeout=self.timeout_for(buffer))
        except TimeoutError as exc:
            raise TranscriptionFailure("transcription timed out") from exc
        except TranscriptionFailure:
            raise
        except Exception as exc:
            raise TranscriptionFailure(f"transcription failed: {exc}") from exc

    async def transcribe(self, buffer: bytes, recording_ms: int | None = None) -> str:
        if recording_ms is None:
            recording_ms = duration_ms(buffer)
        chunks = chunk_audio(buffer, recording_ms, self.options)
        if len(chunks) == 1:
            text = await self._transcribe_one(chunks[0].buffer)
        else:
            debug(f"[TRANS] Transcribing {len(chunks)} chunks concurrently")
            try:
                async with asyncio.TaskGroup() as group:
                    tasks = [group.create_task(self._transcribe_one(chunk.buffer)) for chunk in chunks]
            except ExceptionGroup as failures:
                # the first failing chunk already cancelled its siblings
                raise failures.exceptions[0]
            texts = [task.result() for task in tasks]
            text = combine_transcription_results(
                TranscriptChunkResult(text, chunk.start_ms, chunk.end_ms) for text, chunk in zip(texts, chunks, strict=True)
            )
        if not TranscriptValidator.is_valid(text):
            return ""
        return text.strip()
