from __future__ import annotations

import logging
from typing import Any

from .constants import IMPACTS, SCORE_KEYS
from .models import AnalysisData, ArgumentMap, PivotalMoment
from .openai_service import AnalysisShapeError, OpenAIService, OpenAIServiceError
from .session import SessionStateMachine

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["summary", *[f"{key}Score" for key in SCORE_KEYS], "keyStrengths", "weaknesses"]


def _coerce_score(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool):
        raise AnalysisShapeError(f"Score '{field_name}' must be a number")
    try:
        score = int(round(float(raw)))
    except (TypeError, ValueError, OverflowError) as exc:
        raise AnalysisShapeError(f"Score '{field_name}' must be a number") from exc
    return min(max(score, 0), 100)


def _coerce_text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def _coerce_text_list(raw: Any, field_name: str) -> list[str]:
    if isinstance(raw, str):
        return [raw.strip()] if raw.strip() else []
    if not isinstance(raw, list):
        raise AnalysisShapeError(f"Field '{field_name}' must be a list of strings")
    return [str(item).strip() for item in raw if str(item).strip()]


def _parse_argument_map(raw: Any) -> ArgumentMap | None:
    if not isinstance(raw, dict):
        return None

    claim = _coerce_text(raw.get("claim"))
    if not claim:
        return None

    return ArgumentMap(
        claim=claim,
        definitions=_coerce_text_list(raw.get("definitions", []), "argumentMap.definitions"),
        assumptions=_coerce_text_list(raw.get("assumptions", []), "argumentMap.assumptions"),
        evidence=_coerce_text_list(raw.get("evidence", []), "argumentMap.evidence"),
        objections=_coerce_text_list(raw.get("objections", []), "argumentMap.objections"),
        rebuttals=_coerce_text_list(raw.get("rebuttals", []), "argumentMap.rebuttals"),
        falsifier=_coerce_text(raw.get("falsifier")),
    )


def _parse_pivotal_moments(raw: Any) -> list[PivotalMoment]:
    if not isinstance(raw, list):
        return []

    moments: list[PivotalMoment] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        quote = _coerce_text(item.get("quote"))
        if not quote:
            continue
        impact = _coerce_text(item.get("impact")).lower()
        moments.append(
            PivotalMoment(
                quote=quote,
                analysis=_coerce_text(item.get("analysis")),
                impact=impact if impact in IMPACTS else "neutral",
                why_it_matters=_coerce_text(item.get("whyItMatters")),
            )
        )
    return moments


def parse_analysis(payload: Any) -> AnalysisData:
    if not isinstance(payload, dict):
        raise AnalysisShapeError("Analysis payload must be a JSON object")

    missing = [name for name in REQUIRED_FIELDS if name not in payload]
    if missing:
        raise AnalysisShapeError(f"Analysis payload missing fields: {', '.join(missing)}")

    summary = _coerce_text(payload["summary"])
    if not summary:
        raise AnalysisShapeError("Analysis summary is empty")

    return AnalysisData(
        summary=summary,
        scores={key: _coerce_score(payload[f"{key}Score"], f"{key}Score") for key in SCORE_KEYS},
        key_strengths=_coerce_text_list(payload["keyStrengths"], "keyStrengths"),
        weaknesses=_coerce_text_list(payload["weaknesses"], "weaknesses"),
        ai_usage_analysis=_coerce_text(payload.get("aiUsageAnalysis")),
        argument_map=_parse_argument_map(payload.get("argumentMap")),
        pivotal_moments=_parse_pivotal_moments(payload.get("pivotalMoments")),
    )


def dump_analysis(analysis: AnalysisData) -> dict[str, Any]:
    payload: dict[str, Any] = {"summary": analysis.summary}
    for key in SCORE_KEYS:
        payload[f"{key}Score"] = analysis.scores.get(key, 0)
    payload["keyStrengths"] = list(analysis.key_strengths)
    payload["weaknesses"] = list(analysis.weaknesses)
    payload["aiUsageAnalysis"] = analysis.ai_usage_analysis

    if analysis.argument_map is not None:
        amap = analysis.argument_map
        payload["argumentMap"] = {
            "claim": amap.claim,
            "definitions": list(amap.definitions),
            "assumptions": list(amap.assumptions),
            "evidence": list(amap.evidence),
            "objections": list(amap.objections),
            "rebuttals": list(amap.rebuttals),
            "falsifier": amap.falsifier,
        }

    payload["pivotalMoments"] = [
        {
            "quote": moment.quote,
            "analysis": moment.analysis,
            "impact": moment.impact,
            "whyItMatters": moment.why_it_matters,
        }
        for moment in analysis.pivotal_moments
    ]
    return payload


class ReportGenerator:
    """Runs the end-of-session analysis call for one session."""

    def __init__(self, openai_service: OpenAIService) -> None:
        self.openai_service = openai_service
        self.busy = False

    async def run(self, state: SessionStateMachine) -> AnalysisData | None:
        if self.busy:
            return None

        config = state.require_config()
        state.begin_analysis()
        self.busy = True

        try:
            payload = await self.openai_service.generate_analysis(
                transcript=state.transcript.messages,
                topic=config.topic,
                declaration=state.declaration,
            )
            analysis = parse_analysis(payload)
        except AnalysisShapeError as exc:
            logger.warning("Analysis response rejected: %s", exc)
            state.fail_analysis("shape", str(exc))
            return None
        except OpenAIServiceError as exc:
            logger.warning("Analysis request failed: %s", exc)
            state.fail_analysis("gateway", str(exc))
            return None
        finally:
            self.busy = False

        state.set_analysis(analysis)
        return analysis
