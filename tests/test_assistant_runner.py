"""Tests for the conversational assistant runner."""

from unittest.mock import AsyncMock, patch

import pytest

from toshia.assistant_runner import MAX_REPLY_LENGTH, AssistantResponse, AssistantRunner
from toshia.exceptions import AssistantError, ConfigurationError

API_URL = "https://api.example.com/v1/chat/completions"


def _runner(api_key="sk-test-key"):
    return AssistantRunner(api_url=API_URL, api_key=api_key, model="test-model")


class TestInit:

    def test_rejects_plain_http(self):
        with pytest.raises(ConfigurationError):
            AssistantRunner(api_url="http://api.example.com/v1", api_key="k", model="m")

    def test_rejects_missing_host(self):
        with pytest.raises(ConfigurationError):
            AssistantRunner(api_url="https:///v1", api_key="k", model="m")

    def test_missing_key_is_allowed_at_init(self):
        assert _runner(api_key="").api_key == ""


class TestPayload:

    def test_payload_shape(self):
        payload = _runner()._build_payload("hello", "group")
        assert payload["model"] == "test-model"
        assert payload["max_tokens"] == 1024
        system, user = payload["messages"]
        assert system["role"] == "system"
        assert system["content"].endswith("This is a group chat.")
        assert user == {"role": "user", "content": "hello"}


class TestParseResponse:

    def test_parses_content_and_usage(self):
        result = _runner()._parse_response({
            "choices": [{"message": {"content": "Hi!"}}],
            "usage": {"total_tokens": 12},
            "model": "served-model",
        })
        assert result == AssistantResponse(content="Hi!", tokens_used=12, model="served-model")

    def test_missing_choices(self):
        assert _runner()._parse_response({"error": "nope"}) is None

    def test_empty_content(self):
        assert _runner()._parse_response({"choices": [{"message": {"content": ""}}]}) is None

    def test_model_defaults_to_configured(self):
        result = _runner()._parse_response({"choices": [{"message": {"content": "x"}}]})
        assert result.model == "test-model"
        assert result.tokens_used is None


class TestRespond:

    @pytest.mark.asyncio
    async def test_returns_content(self):
        runner = _runner()
        reply = AssistantResponse(content="Hello there", model="m")
        with patch.object(runner, "_make_request", AsyncMock(return_value=reply)) as req:
            assert await runner.respond("hi", "private") == "Hello there"
        payload = req.await_args.args[0]
        assert payload["messages"][1]["content"] == "hi"

    @pytest.mark.asyncio
    async def test_truncates_long_replies(self):
        runner = _runner()
        reply = AssistantResponse(content="x" * (MAX_REPLY_LENGTH + 100), model="m")
        with patch.object(runner, "_make_request", AsyncMock(return_value=reply)):
            text = await runner.respond("hi", "private")
        assert text.startswith("x" * MAX_REPLY_LENGTH)
        assert text.endswith("[Response truncated...]")

    @pytest.mark.asyncio
    async def test_none_when_provider_empty(self):
        runner = _runner()
        with patch.object(runner, "_make_request", AsyncMock(return_value=None)):
            assert await runner.respond("hi", "private") is None

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        runner = _runner(api_key="")
        with pytest.raises(AssistantError) as exc:
            await runner.respond("hi", "private")
        assert not exc.value.is_retryable

    @pytest.mark.asyncio
    async def test_close_without_session(self):
        await _runner().close()
