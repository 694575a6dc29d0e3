"""Telling dictation apart from commands addressed to the assistant.

A wrong "command" verdict swallows what the user meant to type, so only an explicit address at the very
start of the transcript counts: an attention word followed by the wake name ("hey jarvis, ..."), or the
wake name used as a vocative ("Jarvis, ...").
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from enum import Enum
from typing import NamedTuple

ADDRESS_WINDOW = 50
TEXT_EDIT_MIN_SELECTION = 20
ATTENTION_WORDS = ("hey", "hi", "hello", "okay", "ok")
DEFAULT_WAKE_NAMES = ("jarvis",)


class CommandKind(Enum):
    DICTATION = "dictation"
    ASSISTANT = "assistant"
    TEXT_EDIT = "text_edit"

    @property
    def is_command(self) -> bool:
        return self is not CommandKind.DICTATION


class Classification(NamedTuple):
    kind: CommandKind
    transcript: str
    addressed: bool


class CommandClassifier:
    def __init__(self, wake_names: Sequence[str] = DEFAULT_WAKE_NAMES):
        names = "|".join(re.escape(name.strip().lower()) for name in wake_names if name.strip())
        attention = "|".join(ATTENTION_WORDS)
        self._address_re = re.compile(
            rf"^\s*(?:(?:{attention})[\s,.\-]*(?:{names})\b|(?:{names})\s*[,.\-])[\s,.\-!?:]*",
            re.IGNORECASE,
        )

    def is_addressed(self, transcript: str) -> bool:
        return self._address_re.match(transcript[:ADDRESS_WINDOW]) is not None

    def strip_address(self, transcript: str) -> str:
        """The command itself, without the "hey jarvis" part"""
        if match := self._address_re.match(transcript[:ADDRESS_WINDOW]):
            return transcript[match.end() :].strip()
        return transcript.strip()

    def classify(self, transcript: str, force_assistant: bool = False, selection_length: int = 0) -> Classification:
        transcript = transcript.strip()
        addressed = self.is_addressed(transcript)
        if not addressed and not force_assistant:
            return Classification(CommandKind.DICTATION, transcript, False)
        kind = CommandKind.TEXT_EDIT if selection_length > TEXT_EDIT_MIN_SELECTION else CommandKind.ASSISTANT
        return Classification(kind, transcript, addressed)

    @staticmethod
    def refine_with_selection(classification: Classification, selection_length: int) -> Classification:
        """Turn an assistant command into a text edit once a long enough selection is known"""
        if not classification.kind.is_command:
            return classification
        kind = CommandKind.TEXT_EDIT if selection_length > TEXT_EDIT_MIN_SELECTION else CommandKind.ASSISTANT
        return classification._replace(kind=kind)
