from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Iterable

from openai import APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from .config import ConfigError
from .constants import IMPACTS, SCORE_KEYS
from .models import Message
from .prompts import build_analysis_prompt

logger = logging.getLogger(__name__)


class OpenAIServiceError(RuntimeError):
    pass


class AnalysisShapeError(OpenAIServiceError):
    """The analysis response is not JSON or does not match the expected shape."""


def _score_field(key: str) -> str:
    return f"{key}Score"


def _string_list() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


ARGUMENT_MAP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "claim",
        "definitions",
        "assumptions",
        "evidence",
        "objections",
        "rebuttals",
        "falsifier",
    ],
    "properties": {
        "claim": {"type": "string"},
        "definitions": _string_list(),
        "assumptions": _string_list(),
        "evidence": _string_list(),
        "objections": _string_list(),
        "rebuttals": _string_list(),
        "falsifier": {"type": "string"},
    },
}

ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "summary",
        *[_score_field(key) for key in SCORE_KEYS],
        "keyStrengths",
        "weaknesses",
        "aiUsageAnalysis",
        "argumentMap",
        "pivotalMoments",
    ],
    "properties": {
        "summary": {"type": "string", "description": "120-170 mots, commence par les insuffisances."},
        **{
            _score_field(key): {"type": "integer", "minimum": 0, "maximum": 100}
            for key in SCORE_KEYS
        },
        "keyStrengths": _string_list(),
        "weaknesses": _string_list(),
        "aiUsageAnalysis": {"type": "string"},
        "argumentMap": ARGUMENT_MAP_SCHEMA,
        "pivotalMoments": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["quote", "analysis", "impact", "whyItMatters"],
                "properties": {
                    "quote": {"type": "string"},
                    "analysis": {"type": "string"},
                    "impact": {"type": "string", "enum": IMPACTS},
                    "whyItMatters": {"type": "string"},
                },
            },
        },
    },
}


class OpenAIService:
    def __init__(
        self,
        api_key: str,
        chat_model: str = "gpt-4.1-mini",
        analysis_model: str = "gpt-4.1",
        chat_temperature: float = 0.6,
        analysis_temperature: float = 0.3,
        client: Any | None = None,
    ) -> None:
        if not (api_key or "").strip():
            raise ConfigError("Missing OPENAI_API_KEY in environment/.env")

        self.client = client if client is not None else AsyncOpenAI(api_key=api_key)
        self.chat_model = chat_model
        self.analysis_model = analysis_model
        self.chat_temperature = chat_temperature
        self.analysis_temperature = analysis_temperature

    async def _responses_create_with_retry(self, **kwargs: Any) -> Any:
        delay = 1.0
        last_error: Exception | None = None

        for attempt in range(5):
            try:
                return await self.client.responses.create(**kwargs)
            except (RateLimitError, APITimeoutError) as exc:
                last_error = exc
                logger.warning(
                    "OpenAI transient error (%s), retry %s/5",
                    exc.__class__.__name__,
                    attempt + 1,
                )
                if attempt == 4:
                    break
                await asyncio.sleep(delay)
                delay *= 2
            except APIError as exc:
                last_error = exc
                retriable = (getattr(exc, "status_code", None) or 500) >= 500
                if not retriable or attempt == 4:
                    break
                logger.warning("OpenAI APIError retry %s/5: %s", attempt + 1, exc)
                await asyncio.sleep(delay)
                delay *= 2

        raise OpenAIServiceError(f"OpenAI request failed after retries: {last_error}")

    @staticmethod
    def _extract_text(response: Any) -> str:
        output_text = getattr(response, "output_text", None)
        if isinstance(output_text, str) and output_text.strip():
            return output_text.strip()

        parts: list[str] = []
        output = getattr(response, "output", None)
        if output:
            for item in output:
                for content in getattr(item, "content", []) or []:
                    text = getattr(content, "text", None)
                    if isinstance(text, str) and text.strip():
                        parts.append(text.strip())
                        continue

                    if isinstance(content, dict):
                        maybe_text = content.get("text")
                        if isinstance(maybe_text, str) and maybe_text.strip():
                            parts.append(maybe_text.strip())

        return "\n".join(parts)

    @staticmethod
    def _extract_json(raw_text: str) -> dict[str, Any]:
        raw_text = raw_text.strip()
        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError:
            match = re.search(r"\{.*\}", raw_text, re.DOTALL)
            if not match:
                raise AnalysisShapeError("Model output was not valid JSON")
            try:
                payload = json.loads(match.group(0))
            except json.JSONDecodeError as exc:
                raise AnalysisShapeError(f"Model output JSON parse failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise AnalysisShapeError("Model output JSON must be an object")
        return payload

    @staticmethod
    def _extract_parsed_json(response: Any) -> dict[str, Any] | None:
        output_parsed = getattr(response, "output_parsed", None)
        if isinstance(output_parsed, dict):
            return output_parsed
        return None

    def _extract_payload(self, response: Any) -> dict[str, Any]:
        parsed = self._extract_parsed_json(response)
        if parsed is not None:
            return parsed
        return self._extract_json(self._extract_text(response))

    @staticmethod
    def build_history_input(history: Iterable[Message]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for message in history:
            if message.role == "model":
                items.append(
                    {
                        "role": "assistant",
                        "content": [{"type": "output_text", "text": message.text}],
                    }
                )
            else:
                items.append(
                    {
                        "role": "user",
                        "content": [{"type": "input_text", "text": message.text}],
                    }
                )
        return items

    async def send_chat_turn(
        self,
        system_prompt: str,
        history: Iterable[Message],
        message: str,
    ) -> str:
        response = await self._responses_create_with_retry(
            model=self.chat_model,
            input=[
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
                *self.build_history_input(history),
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": message}],
                },
            ],
            temperature=self.chat_temperature,
        )

        text = self._extract_text(response)
        if not text:
            raise OpenAIServiceError("Model returned an empty reply")
        return text

    async def generate_analysis(
        self,
        transcript: Iterable[Message],
        topic: str,
        declaration: str,
    ) -> dict[str, Any]:
        system_prompt = (
            "Tu es un évaluateur de pensée critique. "
            "Tu analyses le processus de raisonnement d'un·e étudiant·e, pas ses conclusions. "
            "Tous les champs textuels sont en français."
        )

        response = await self._responses_create_with_retry(
            model=self.analysis_model,
            input=[
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "input_text",
                            "text": build_analysis_prompt(transcript, topic, declaration),
                        }
                    ],
                },
            ],
            text={
                "format": {
                    "type": "json_schema",
                    "name": "argos_analysis_payload",
                    "schema": ANALYSIS_SCHEMA,
                    "strict": True,
                }
            },
            temperature=self.analysis_temperature,
        )

        return self._extract_payload(response)
