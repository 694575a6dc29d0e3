"""Splitting long recordings for size-limited transcription backends, and stitching the results back.

Audio is always mono 16-bit PCM at 16 kHz, so positions in the buffer map directly to time.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import NamedTuple

from holdspeak.audio import BYTES_PER_SECOND
from holdspeak.console import debug, errprint

MAX_CHUNKS = 10
MAX_OVERLAP_WORDS = 3

_PUNCTUATION_RE = re.compile(r"[.,!?]")


class ChunkingOptions(NamedTuple):
    max_chunk_size_bytes: int = 20 * 1024 * 1024
    max_chunk_duration_ms: int = 120_000
    overlap_ms: int = 1_000


class AudioChunk(NamedTuple):
    buffer: bytes
    start_ms: int
    end_ms: int
    index: int


class TranscriptChunkResult(NamedTuple):
    text: str
    start_ms: int
    end_ms: int


DEFAULT_OPTIONS = ChunkingOptions()


def _aligned(byte_count: float) -> int:
    return int(byte_count) // 2 * 2


def _offset_to_ms(offset: int) -> int:
    return offset * 1000 // BYTES_PER_SECOND


def needs_chunking(buffer: bytes, duration_ms: int | None = None, options: ChunkingOptions = DEFAULT_OPTIONS) -> bool:
    if len(buffer) > options.max_chunk_size_bytes:
        debug(f"[CHUNK] {len(buffer)} bytes > {options.max_chunk_size_bytes} bytes, chunking needed")
        return True
    if duration_ms and duration_ms > options.max_chunk_duration_ms:
        debug(f"[CHUNK] {duration_ms}ms > {options.max_chunk_duration_ms}ms, chunking needed")
        return True
    return False


def chunk_audio(buffer: bytes, duration_ms: int, options: ChunkingOptions = DEFAULT_OPTIONS) -> list[AudioChunk]:
    """Split `buffer` into overlapping chunks no longer than the configured duration.

    A buffer within the limits, or a configuration whose overlap is not smaller than a chunk, gives one
    chunk holding the whole buffer. A tail shorter than one second is dropped, and at most `MAX_CHUNKS`
    chunks are produced: anything after that is lost (and reported as such).
    """
    whole = [AudioChunk(buffer=buffer, start_ms=0, end_ms=duration_ms, index=0)]
    if not needs_chunking(buffer, duration_ms, options):
        return whole

    chunk_size = _aligned(options.max_chunk_duration_ms / 1000 * BYTES_PER_SECOND)
    chunk_size = min(chunk_size, _aligned(options.max_chunk_size_bytes))
    overlap = _aligned(options.overlap_ms / 1000 * BYTES_PER_SECOND)
    if chunk_size <= 0 or overlap >= chunk_size:
        errprint(f"WARNING: Audio overlap ({overlap} bytes) is not smaller than a chunk ({chunk_size} bytes), not splitting")
        return whole

    step = max(chunk_size - overlap, BYTES_PER_SECOND)
    debug(f"[CHUNK] Splitting {len(buffer)} bytes: chunk={chunk_size} overlap={overlap} step={step}")

    chunks: list[AudioChunk] = []
    position = 0
    while position < len(buffer) and len(chunks) < MAX_CHUNKS:
        size = min(chunk_size, len(buffer) - position)
        if size < BYTES_PER_SECOND:
            debug(f"[CHUNK] Dropping {size} bytes tail at {position}")
            break
        chunks.append(
            AudioChunk(
                buffer=buffer[position : position + size],
                start_ms=_offset_to_ms(position),
                end_ms=_offset_to_ms(position + size),
                index=len(chunks),
            )
        )
        position += step

    if len(chunks) >= MAX_CHUNKS and position < len(buffer):
        lost_ms = _offset_to_ms(len(buffer) - position)
        errprint(f"WARNING: Recording too long, only {MAX_CHUNKS} chunks transcribed, about {lost_ms}ms of audio dropped")

    return chunks or whole


def estimated_chunk_count(buffer: bytes, duration_ms: int, options: ChunkingOptions = DEFAULT_OPTIONS) -> int:
    if not needs_chunking(buffer, duration_ms, options):
        return 1
    chunk_duration_ms = min(options.max_chunk_duration_ms, duration_ms)
    return min(MAX_CHUNKS, -(-duration_ms // chunk_duration_ms))


def _comparable(word: str) -> str:
    return _PUNCTUATION_RE.sub("", word.lower())


def _overlap_length(previous_words: list[str], words: list[str]) -> int:
    """Number of leading `words` repeating the tail of `previous_words`, at most `MAX_OVERLAP_WORDS`"""
    for size in range(min(MAX_OVERLAP_WORDS, len(previous_words), len(words)), 0, -1):
        tail = [_comparable(word) for word in previous_words[-size:]]
        head = [_comparable(word) for word in words[:size]]
        if tail == head:
            return size
    return 0


def combine_transcription_results(results: Iterable[TranscriptChunkResult]) -> str:
    """Join chunk transcripts in time order, dropping the words repeated at each seam"""
    ordered = sorted(results, key=lambda result: result.start_ms)
    combined: list[str] = []
    previous: list[str] = []
    for result in ordered:
        words = result.text.split()
        # seams are only between adjacent chunks: an empty chunk breaks the chain
        combined.extend(words[_overlap_length(previous, words) :])
        previous = words
    return " ".join(combined)
