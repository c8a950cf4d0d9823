from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .analysis import dump_analysis, parse_analysis
from .constants import DEFAULT_STUDENT_NAME, DEFAULT_TOPIC, PROTOCOL_PHASES
from .models import (
    AnalysisData,
    ImportedSession,
    Message,
    SessionConfig,
    SocraticMode,
    Transcript,
    new_message_id,
)
from .openai_service import AnalysisShapeError

logger = logging.getLogger(__name__)


class ArchiveError(ValueError):
    pass


def message_to_dict(message: Message) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "text": message.text,
        "timestamp": message.timestamp,
    }
    if message.response_time_ms is not None:
        item["responseTimeMs"] = message.response_time_ms
    if message.strategy is not None:
        item["strategy"] = message.strategy
    if message.phase is not None:
        item["phase"] = message.phase
    if message.requirement is not None:
        item["requirement"] = message.requirement
    if message.failure_condition is not None:
        item["failureCondition"] = message.failure_condition
    if message.opening:
        item["opening"] = True
    return item


def _optional_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError, OverflowError):
        return None


def _optional_phase(raw: Any) -> int | None:
    phase = _optional_int(raw)
    if phase is None or not 0 <= phase < len(PROTOCOL_PHASES):
        return None
    return phase


def _optional_text(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def message_from_dict(raw: Any, index: int) -> Message:
    if not isinstance(raw, dict):
        raise ArchiveError(f"Transcript entry {index} is not an object")

    role = raw.get("role")
    if role not in {"user", "model"}:
        raise ArchiveError(f"Transcript entry {index} has an invalid role: {role!r}")

    text = raw.get("text")
    if not isinstance(text, str):
        raise ArchiveError(f"Transcript entry {index} has no text")

    return Message(
        role=role,
        text=text,
        id=str(raw.get("id") or new_message_id()),
        timestamp=_optional_int(raw.get("timestamp")) or 0,
        response_time_ms=_optional_int(raw.get("responseTimeMs")),
        strategy=_optional_text(raw.get("strategy")),
        phase=_optional_phase(raw.get("phase")),
        requirement=_optional_text(raw.get("requirement")),
        failure_condition=_optional_text(raw.get("failureCondition")),
        opening=bool(raw.get("opening", False)),
    )


def build_export_payload(
    config: SessionConfig,
    transcript: Transcript,
    declaration: str,
    analysis: AnalysisData | None = None,
    exported_at: datetime | None = None,
) -> dict[str, Any]:
    exported_at = exported_at or datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "metadata": {
            "student": config.student_name,
            "topic": config.topic,
            "mode": config.mode.value,
            "date": exported_at.isoformat(),
        },
        "transcript": [message_to_dict(m) for m in transcript],
        "aiDeclaration": declaration or "",
    }
    if analysis is not None:
        payload["analysis"] = dump_analysis(analysis)
    return payload


def dumps_archive(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _parse_mode(raw: Any) -> SocraticMode:
    try:
        return SocraticMode(str(raw).upper())
    except ValueError:
        return SocraticMode.TUTOR


def load_archive(raw: str | bytes | bytearray) -> ImportedSession:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ArchiveError("Archive is not UTF-8 text") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ArchiveError(f"Archive is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ArchiveError("Archive must be a JSON object")

    transcript_raw = data.get("transcript")
    if not isinstance(transcript_raw, list):
        raise ArchiveError("Archive has no transcript")

    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    config = SessionConfig(
        student_name=_optional_text(metadata.get("student")) or DEFAULT_STUDENT_NAME,
        topic=_optional_text(metadata.get("topic")) or DEFAULT_TOPIC,
        mode=_parse_mode(metadata.get("mode")) if metadata.get("mode") else SocraticMode.TUTOR,
    )

    transcript = Transcript([message_from_dict(item, idx) for idx, item in enumerate(transcript_raw)])

    declaration = data.get("aiDeclaration")
    if not isinstance(declaration, str):
        declaration = ""

    analysis: AnalysisData | None = None
    if data.get("analysis") is not None:
        try:
            analysis = parse_analysis(data["analysis"])
        except AnalysisShapeError as exc:
            logger.warning("Dropping invalid analysis block from archive: %s", exc)

    return ImportedSession(
        config=config,
        transcript=transcript,
        declaration=declaration,
        analysis=analysis,
    )
