from __future__ import annotations


class HoldSpeakError(Exception):
    """Base class of the failures a push-to-talk cycle can hit"""


class CaptureFailure(HoldSpeakError):
    """The input stream could not start, or the recording was too short to be speech"""


class TranscriptionFailure(HoldSpeakError):
    """A transcription call errored or timed out; the audio of the cycle is dropped"""


class RoutingFailure(HoldSpeakError):
    """The agent could not answer a command; the raw transcript is delivered instead"""
