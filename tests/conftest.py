"""Shared fixtures: a scripted stand-in for the OpenAI gateway."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from argos.models import SessionConfig, SocraticMode
from argos.session import SessionStateMachine


class FakeGateway:
    """Replays scripted replies; an Exception in the script is raised instead."""

    def __init__(self, replies: list[Any] | None = None, analyses: list[Any] | None = None) -> None:
        self.replies = list(replies or [])
        self.analyses = list(analyses or [])
        self.chat_calls: list[dict[str, Any]] = []
        self.analysis_calls: list[dict[str, Any]] = []
        self.gate: asyncio.Event | None = None

    async def send_chat_turn(self, system_prompt: str, history: Any, message: str) -> str:
        self.chat_calls.append(
            {"system_prompt": system_prompt, "history": list(history), "message": message}
        )
        if self.gate is not None:
            await self.gate.wait()
        reply = self.replies.pop(0) if self.replies else "Phase: 1\nQue veux-tu dire exactement ?"
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate_analysis(self, transcript: Any, topic: str, declaration: str) -> dict[str, Any]:
        self.analysis_calls.append(
            {"transcript": list(transcript), "topic": topic, "declaration": declaration}
        )
        item = self.analyses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def analysis_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "summary": "Le raisonnement reste flou sur les critères de justice.",
        "reasoningScore": 55,
        "clarityScore": 60,
        "skepticismScore": 40,
        "processScore": 45,
        "reflectionScore": 50,
        "keyStrengths": ["Distingue justice et équité"],
        "weaknesses": ["Critères non explicités"],
        "aiUsageAnalysis": "Usage déclaré cohérent avec la trace.",
        "argumentMap": {
            "claim": "La justice est l'égalité de traitement",
            "definitions": ["justice"],
            "assumptions": ["tous partent du même point"],
            "evidence": [],
            "objections": ["l'équité corrige les inégalités"],
            "rebuttals": [],
            "falsifier": "Un cas où l'égalité produit l'injustice",
        },
        "pivotalMoments": [
            {
                "quote": "Et l'équité ?",
                "analysis": "Changement de cadre amorcé",
                "impact": "positive",
                "whyItMatters": "Ouvre la discussion sur les critères",
            }
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def alice_config() -> SessionConfig:
    return SessionConfig(student_name="Alice", topic="Justice", mode=SocraticMode.TUTOR)


@pytest.fixture
def chat_state(alice_config: SessionConfig) -> SessionStateMachine:
    state = SessionStateMachine()
    state.login()
    state.start(alice_config)
    return state


@pytest.fixture
def make_analysis():
    return analysis_payload
