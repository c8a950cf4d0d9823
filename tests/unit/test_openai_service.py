"""
Unit Tests for the OpenAI gateway

The AsyncOpenAI client is replaced by an AsyncMock so no request leaves
the process.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from argos.config import ConfigError
from argos.models import Message
from argos.openai_service import AnalysisShapeError, OpenAIService, OpenAIServiceError


def _status_error(cls, status_code):
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    response = httpx.Response(status_code, request=request)
    return cls("boom", response=response, body=None)


@pytest.fixture
def client():
    mock = MagicMock()
    mock.responses.create = AsyncMock()
    return mock


@pytest.fixture
def service(client):
    return OpenAIService(api_key="sk-test", client=client)


class TestOpenAIService:
    """Test suite for OpenAIService."""

    @pytest.mark.parametrize("api_key", ["", "   ", None])
    def test_missing_key_raises_config_error(self, api_key):
        with pytest.raises(ConfigError):
            OpenAIService(api_key=api_key)

    def test_history_roles_are_mapped(self):
        history = [Message(role="user", text="Bonjour"), Message(role="model", text="Phase: 0")]
        items = OpenAIService.build_history_input(history)

        assert items[0] == {"role": "user", "content": [{"type": "input_text", "text": "Bonjour"}]}
        assert items[1] == {
            "role": "assistant",
            "content": [{"type": "output_text", "text": "Phase: 0"}],
        }

    @pytest.mark.asyncio
    async def test_send_chat_turn_builds_request(self, service, client):
        client.responses.create.return_value = SimpleNamespace(output_text=" Phase: 1\nDéfinis. ")
        history = [Message(role="user", text="Bonjour Argos"), Message(role="model", text="Phase: 0")]

        reply = await service.send_chat_turn("SYSTEM", history, "Qu'est-ce que la justice ?")

        assert reply == "Phase: 1\nDéfinis."
        kwargs = client.responses.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4.1-mini"
        assert kwargs["temperature"] == 0.6
        assert [item["role"] for item in kwargs["input"]] == ["system", "user", "assistant", "user"]
        assert kwargs["input"][-1]["content"][0]["text"] == "Qu'est-ce que la justice ?"

    @pytest.mark.asyncio
    async def test_text_is_read_from_output_items(self, service, client):
        content = [SimpleNamespace(text="Première partie"), {"text": "Seconde partie"}]
        client.responses.create.return_value = SimpleNamespace(
            output_text=None, output=[SimpleNamespace(content=content)]
        )

        reply = await service.send_chat_turn("SYSTEM", [], "Salut")
        assert reply == "Première partie\nSeconde partie"

    @pytest.mark.asyncio
    async def test_empty_reply_is_an_error(self, service, client):
        client.responses.create.return_value = SimpleNamespace(output_text="   ", output=[])
        with pytest.raises(OpenAIServiceError):
            await service.send_chat_turn("SYSTEM", [], "Salut")

    @pytest.mark.asyncio
    async def test_generate_analysis_uses_schema(self, service, client, make_analysis):
        payload = make_analysis()
        client.responses.create.return_value = SimpleNamespace(output_text=json.dumps(payload))

        result = await service.generate_analysis(
            [Message(role="user", text="Bonjour")], "Justice", "aucun"
        )

        assert result == payload
        kwargs = client.responses.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4.1"
        assert kwargs["temperature"] == 0.3
        assert kwargs["text"]["format"]["type"] == "json_schema"
        assert kwargs["text"]["format"]["strict"] is True

    @pytest.mark.asyncio
    async def test_json_is_recovered_from_surrounding_text(self, service, client):
        client.responses.create.return_value = SimpleNamespace(
            output_text='Voici le résultat : {"summary": "ok"} fin'
        )
        result = await service.generate_analysis([], "Justice", "")
        assert result == {"summary": "ok"}

    @pytest.mark.asyncio
    async def test_invalid_json_is_a_shape_error(self, service, client):
        client.responses.create.return_value = SimpleNamespace(output_text="pas de JSON ici")
        with pytest.raises(AnalysisShapeError):
            await service.generate_analysis([], "Justice", "")

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, service, client, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("argos.openai_service.asyncio.sleep", sleep)
        client.responses.create.side_effect = _status_error(openai.BadRequestError, 400)

        with pytest.raises(OpenAIServiceError):
            await service.send_chat_turn("SYSTEM", [], "Salut")

        assert client.responses.create.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, service, client, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("argos.openai_service.asyncio.sleep", sleep)
        client.responses.create.side_effect = [
            _status_error(openai.RateLimitError, 429),
            SimpleNamespace(output_text="Phase: 0\nBonjour"),
        ]

        reply = await service.send_chat_turn("SYSTEM", [], "Salut")

        assert reply == "Phase: 0\nBonjour"
        assert client.responses.create.await_count == 2
        sleep.assert_awaited_once_with(1.0)
