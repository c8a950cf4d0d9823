from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator


def now_ms() -> int:
    return int(time.time() * 1000)


def new_message_id() -> str:
    return str(uuid.uuid4())


class SocraticMode(str, Enum):
    TUTOR = "TUTOR"
    CRITIC = "CRITIC"


@dataclass(frozen=True, slots=True)
class SessionConfig:
    student_name: str
    topic: str
    mode: SocraticMode = SocraticMode.TUTOR


@dataclass(frozen=True, slots=True)
class Message:
    role: str
    text: str
    id: str = field(default_factory=new_message_id)
    timestamp: int = field(default_factory=now_ms)
    response_time_ms: int | None = None
    strategy: str | None = None
    phase: int | None = None
    requirement: str | None = None
    failure_condition: str | None = None
    opening: bool = False


class Transcript:
    """Append-only, chronologically ordered list of messages."""

    def __init__(self, messages: list[Message] | None = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def append(self, message: Message) -> None:
        if message.role not in {"user", "model"}:
            raise ValueError(f"Unknown message role: {message.role}")
        self._messages.append(message)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def visible(self) -> list[Message]:
        return [m for m in self._messages if not m.opening]

    def last_model_message(self) -> Message | None:
        for message in reversed(self._messages):
            if message.role == "model":
                return message
        return None

    def model_reply_count(self) -> int:
        return sum(1 for m in self._messages if m.role == "model")

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transcript):
            return NotImplemented
        return self._messages == other._messages


@dataclass(frozen=True, slots=True)
class Trailer:
    requirement: str | None
    failure_condition: str | None


@dataclass(slots=True)
class ArgumentMap:
    claim: str
    definitions: list[str]
    assumptions: list[str]
    evidence: list[str]
    objections: list[str]
    rebuttals: list[str]
    falsifier: str


@dataclass(slots=True)
class PivotalMoment:
    quote: str
    analysis: str
    impact: str
    why_it_matters: str


@dataclass(slots=True)
class AnalysisData:
    summary: str
    scores: dict[str, int]
    key_strengths: list[str]
    weaknesses: list[str]
    ai_usage_analysis: str = ""
    argument_map: ArgumentMap | None = None
    pivotal_moments: list[PivotalMoment] = field(default_factory=list)

    @property
    def global_score(self) -> int:
        if not self.scores:
            return 0
        return round(sum(self.scores.values()) / len(self.scores))


@dataclass(slots=True)
class TurnResult:
    user_message: Message | None
    reply: Message | None
    phase: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.reply is not None and self.error is None


@dataclass(slots=True)
class ImportedSession:
    config: SessionConfig
    transcript: Transcript
    declaration: str
    analysis: AnalysisData | None = None


@dataclass(slots=True)
class ReportArtifacts:
    payload: dict[str, Any]
    markdown: str
    export_path: str
