from __future__ import annotations

import io
import wave
from typing import NamedTuple

import numpy as np

SAMPLE_RATE = 16_000
CHANNELS = 1
SAMPLE_WIDTH = 2
BYTES_PER_SECOND = SAMPLE_RATE * CHANNELS * SAMPLE_WIDTH

# Normalised (0-100) RMS and peak thresholds, by recording length
SHORT_RECORDING_MS = 1_000
LONG_RECORDING_MS = 5_000
SHORT_THRESHOLDS = (0.12, 0.2)
DEFAULT_THRESHOLDS = (0.08, 0.15)
LONG_THRESHOLDS = (0.05, 0.1)


class CapturedAudio(NamedTuple):
    buffer: bytes
    duration_ms: int
    has_signal: bool


def duration_ms(buffer: bytes) -> int:
    return len(buffer) * 1000 // BYTES_PER_SECOND


def samples(buffer: bytes) -> np.ndarray:
    usable = len(buffer) - len(buffer) % SAMPLE_WIDTH
    return np.frombuffer(buffer[:usable], dtype="<i2")


def apply_gain(data: bytes, gain: float) -> bytes:
    if gain == 1.0:
        return data
    amplified = np.clip(samples(data).astype(np.float32) * gain, -32768, 32767)
    return amplified.astype("<i2").tobytes()


def level(data: bytes) -> float:
    """Peak level of a block, between 0 and 1, for the recording meter"""
    block = samples(data)
    if not block.size:
        return 0.0
    return min(1.0, float(np.max(np.abs(block.astype(np.int32)))) / 32768)


def has_significant_audio(buffer: bytes, recording_ms: int) -> bool:
    """Whether the recording holds anything louder than background noise.

    Thresholds are very low so whispered speech passes; short recordings need a bit more signal,
    long ones a bit less.
    """
    data = samples(buffer).astype(np.float64)
    if not data.size:
        return False
    rms = min(100.0, float(np.sqrt(np.mean(data * data))) / 32768 * 100)
    peak = min(100.0, float(np.max(np.abs(data))) / 32768 * 100)
    if recording_ms < SHORT_RECORDING_MS:
        rms_threshold, peak_threshold = SHORT_THRESHOLDS
    elif recording_ms > LONG_RECORDING_MS:
        rms_threshold, peak_threshold = LONG_THRESHOLDS
    else:
        rms_threshold, peak_threshold = DEFAULT_THRESHOLDS
    return rms > rms_threshold or peak > peak_threshold


def to_wav(buffer: bytes) -> bytes:
    output = io.BytesIO()
    with wave.open(output, "wb") as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(SAMPLE_WIDTH)
        wav.setframerate(SAMPLE_RATE)
        wav.writeframes(buffer)
    return output.getvalue()


def feedback_tone(frequency: float = 880.0, length_ms: int = 60, volume: float = 0.2) -> np.ndarray:
    """Short sine beep with a fade-out, played when recording starts"""
    count = SAMPLE_RATE * length_ms // 1000
    t = np.arange(count) / SAMPLE_RATE
    envelope = np.linspace(1.0, 0.0, count)
    return (np.sin(2 * np.pi * frequency * t) * envelope * volume).astype(np.float32)
