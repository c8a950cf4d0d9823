from __future__ import annotations

import logging
import random
import re
from typing import Iterable

from .constants import STRATEGIES, STRATEGY_MIN_REPLIES
from .models import Message, TurnResult, Trailer, now_ms
from .openai_service import OpenAIService, OpenAIServiceError
from .prompts import build_system_prompt, opening_prompt
from .session import SessionStateMachine

logger = logging.getLogger(__name__)

PHASE_PATTERN = re.compile(r"Phase\s*:\s*\**\s*([0-4])(?!\d)", re.IGNORECASE)
REQUIREMENT_PATTERN = re.compile(r"^\W*Exigence\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
CONTROL_PATTERN = re.compile(r"^\W*Contr[ôo]le\s*:\s*(.+)$", re.IGNORECASE | re.MULTILINE)


def extract_phase(text: str, previous: int) -> int:
    match = PHASE_PATTERN.search(text or "")
    if not match:
        return previous
    return int(match.group(1))


def extract_trailer(text: str) -> Trailer | None:
    requirement = REQUIREMENT_PATTERN.search(text or "")
    control = CONTROL_PATTERN.search(text or "")
    if not requirement and not control:
        return None
    return Trailer(
        requirement=requirement.group(1).strip() if requirement else None,
        failure_condition=control.group(1).strip() if control else None,
    )


def choose_strategy(
    available: Iterable[str],
    excluded: str | None,
    rng: random.Random,
) -> str:
    candidates = [s for s in available if s != excluded]
    if not candidates:
        raise ValueError("No strategy left to choose from")
    return rng.choice(candidates)


class DialogueManager:
    """Drives one chat session, one turn at a time."""

    def __init__(
        self,
        state: SessionStateMachine,
        openai_service: OpenAIService,
        rotate_strategies: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        self.state = state
        self.openai_service = openai_service
        self.rotate_strategies = rotate_strategies
        self.rng = rng or random.Random()
        self.busy = False
        self.last_error: str | None = None
        self.pending_text: str | None = None
        self.pending_opening = False

        last_model = state.transcript.last_model_message()
        self.phase = last_model.phase if last_model and last_model.phase is not None else 0
        self.last_strategy = self._last_recorded_strategy()

    def _last_recorded_strategy(self) -> str | None:
        last_model = self.state.transcript.last_model_message()
        return last_model.strategy if last_model else None

    def _next_strategy(self) -> str | None:
        if not self.rotate_strategies:
            return None
        if self.state.transcript.model_reply_count() < STRATEGY_MIN_REPLIES:
            return None
        return choose_strategy(STRATEGIES, self.last_strategy, self.rng)

    def _response_time_ms(self, submitted_at: int) -> int | None:
        last_model = self.state.transcript.last_model_message()
        if last_model is None:
            return None
        return max(0, submitted_at - last_model.timestamp)

    async def open(self) -> TurnResult | None:
        if len(self.state.transcript) > 0:
            return None
        return await self._send(opening_prompt(self.state.require_config()), opening=True)

    async def send_turn(self, text: str) -> TurnResult | None:
        if not (text or "").strip():
            return None
        return await self._send(text, opening=False)

    async def retry(self) -> TurnResult | None:
        if not self.pending_text:
            return None
        if self.pending_opening:
            return await self.open()
        return await self.send_turn(self.pending_text)

    async def _send(self, text: str, opening: bool) -> TurnResult | None:
        if self.busy:
            logger.info("Turn ignored: a previous turn is still in flight")
            return None

        config = self.state.require_config()
        self.busy = True
        self.last_error = None
        submitted_at = now_ms()
        strategy = None if opening else self._next_strategy()

        try:
            reply_text = await self.openai_service.send_chat_turn(
                system_prompt=build_system_prompt(config.mode, config.topic, strategy),
                history=self.state.transcript.messages,
                message=text,
            )
        except OpenAIServiceError as exc:
            logger.warning("Chat turn failed: %s", exc)
            self.last_error = str(exc)
            self.pending_text = text
            self.pending_opening = opening
            return TurnResult(user_message=None, reply=None, phase=self.phase, error=str(exc))
        finally:
            self.busy = False

        user_message = Message(
            role="user",
            text=text,
            timestamp=submitted_at,
            response_time_ms=None if opening else self._response_time_ms(submitted_at),
            opening=opening,
        )

        self.phase = extract_phase(reply_text, self.phase)
        trailer = extract_trailer(reply_text)
        reply = Message(
            role="model",
            text=reply_text,
            timestamp=max(now_ms(), submitted_at),
            strategy=strategy,
            phase=self.phase,
            requirement=trailer.requirement if trailer else None,
            failure_condition=trailer.failure_condition if trailer else None,
        )

        self.state.append_message(user_message)
        self.state.append_message(reply)
        if strategy is not None:
            self.last_strategy = strategy
        self.pending_text = None
        self.pending_opening = False

        return TurnResult(user_message=user_message, reply=reply, phase=self.phase)
