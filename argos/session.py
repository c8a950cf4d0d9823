from __future__ import annotations

import logging
from enum import Enum

from .constants import DEFAULT_DECLARATION
from .models import AnalysisData, ImportedSession, Message, SessionConfig, Transcript

logger = logging.getLogger(__name__)


class AppMode(str, Enum):
    LOGIN = "LOGIN"
    SETUP = "SETUP"
    CHAT = "CHAT"
    REPORT = "REPORT"


TRANSITIONS: dict[AppMode, set[AppMode]] = {
    AppMode.LOGIN: {AppMode.SETUP},
    AppMode.SETUP: {AppMode.CHAT},
    AppMode.CHAT: {AppMode.REPORT},
    AppMode.REPORT: {AppMode.SETUP},
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, source: AppMode, target: AppMode, reason: str | None = None) -> None:
        message = f"Invalid transition {source.value} -> {target.value}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.source = source
        self.target = target


class SetupError(ValueError):
    pass


class SessionStateMachine:
    """Owns the state of one student's session across the four screens.

    Every mutation of config, transcript, declaration and analysis goes
    through this object; other components only read it.
    """

    def __init__(self) -> None:
        self.mode = AppMode.LOGIN
        self.config: SessionConfig | None = None
        self.transcript = Transcript()
        self.declaration = ""
        self.error: str | None = None
        self.analysis: AnalysisData | None = None
        self.analysis_error: str | None = None
        self.analysis_error_kind: str | None = None
        self.analysis_loading = False

    def _transition(self, target: AppMode, reason: str | None = None) -> None:
        if target not in TRANSITIONS[self.mode]:
            raise InvalidTransitionError(self.mode, target, reason)
        logger.debug("Session transition %s -> %s", self.mode.value, target.value)
        self.mode = target

    def _require_mode(self, mode: AppMode, action: str) -> None:
        if self.mode != mode:
            raise InvalidTransitionError(self.mode, mode, f"{action} requires {mode.value}")

    def _reset_session(self) -> None:
        self.config = None
        self.transcript = Transcript()
        self.declaration = ""
        self.error = None
        self.analysis = None
        self.analysis_error = None
        self.analysis_error_kind = None
        self.analysis_loading = False

    def require_config(self) -> SessionConfig:
        if self.config is None:
            raise InvalidTransitionError(self.mode, self.mode, "no session config")
        return self.config

    def login(self) -> None:
        self._require_mode(AppMode.LOGIN, "login")
        self._transition(AppMode.SETUP)

    def start(self, config: SessionConfig) -> None:
        self._require_mode(AppMode.SETUP, "start")

        name = config.student_name.strip()
        topic = config.topic.strip()
        if not name or not topic:
            raise SetupError("Student name and topic are required")

        self._transition(AppMode.CHAT)
        self.config = SessionConfig(student_name=name, topic=topic, mode=config.mode)
        self.transcript = Transcript()
        self.declaration = ""
        self.error = None

    def resume(self, imported: ImportedSession) -> None:
        self._require_mode(AppMode.SETUP, "resume")
        self._transition(AppMode.CHAT)
        self.config = imported.config
        self.transcript = Transcript(list(imported.transcript.messages))
        self.declaration = imported.declaration
        self.analysis = imported.analysis
        self.error = None

    def finish(self, declaration: str) -> None:
        if self.config is None:
            raise InvalidTransitionError(self.mode, AppMode.REPORT, "no session config")
        self._transition(AppMode.REPORT)
        self.declaration = declaration.strip() or DEFAULT_DECLARATION

    def restart(self) -> None:
        self._require_mode(AppMode.REPORT, "restart")
        self._transition(AppMode.SETUP)
        self._reset_session()

    def fail_setup(self, message: str) -> None:
        self._require_mode(AppMode.SETUP, "setup error")
        self.error = message

    def dismiss_error(self) -> None:
        self.error = None

    def append_message(self, message: Message) -> None:
        self._require_mode(AppMode.CHAT, "append message")
        self.transcript.append(message)

    def begin_analysis(self) -> None:
        self._require_mode(AppMode.REPORT, "analysis")
        self.analysis = None
        self.analysis_error = None
        self.analysis_error_kind = None
        self.analysis_loading = True

    def set_analysis(self, analysis: AnalysisData) -> None:
        self._require_mode(AppMode.REPORT, "analysis")
        self.analysis = analysis
        self.analysis_error = None
        self.analysis_error_kind = None
        self.analysis_loading = False

    def fail_analysis(self, kind: str, message: str) -> None:
        self._require_mode(AppMode.REPORT, "analysis")
        self.analysis = None
        self.analysis_error = message
        self.analysis_error_kind = kind
        self.analysis_loading = False
