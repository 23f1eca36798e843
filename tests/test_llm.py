# =============================================================================
# Unit Tests — Completion Providers
# =============================================================================
#
# Real SDK clients are constructed with dummy keys (no network on init),
# then their create() call is swapped for an AsyncMock.
# =============================================================================

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from app.errors import UpstreamServiceError
from app.services import llm as llm_module
from app.services.llm import AnthropicProvider, OpenAICompatibleProvider, get_llm_provider


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class TestOpenAICompatibleProvider:
    def _provider(self, create: AsyncMock) -> OpenAICompatibleProvider:
        provider = OpenAICompatibleProvider(api_key="sk-test", model="gpt-test")
        provider._client = MagicMock()
        provider._client.chat.completions.create = create
        return provider

    def test_system_then_user_message(self):
        create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Answer [#1]"))],
            model="gpt-test-0125",
            usage=SimpleNamespace(prompt_tokens=50, completion_tokens=7),
        ))
        result = _run(self._provider(create).complete("rules", "Question: q", temperature=0.0))

        assert result.content == "Answer [#1]"
        assert result.model == "gpt-test-0125"
        assert (result.input_tokens, result.output_tokens) == (50, 7)
        kwargs = create.call_args.kwargs
        assert kwargs["messages"] == [
            {"role": "system", "content": "rules"},
            {"role": "user", "content": "Question: q"},
        ]
        assert kwargs["temperature"] == 0.0

    def test_missing_usage_and_content(self):
        create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))],
            model=None,
            usage=None,
        ))
        result = _run(self._provider(create).complete("s", "p"))
        assert result.content == ""
        assert result.model == "gpt-test"
        assert result.input_tokens == 0

    def test_sdk_error_mapped(self):
        request = httpx.Request("POST", "https://api.test/chat/completions")
        create = AsyncMock(side_effect=openai.APIConnectionError(request=request))
        with pytest.raises(UpstreamServiceError) as exc_info:
            _run(self._provider(create).complete("s", "p"))
        assert exc_info.value.code == "LLM_FAILED"
        assert exc_info.value.stage == "llm.call"

    def test_missing_key(self):
        with patch.object(llm_module.settings, "llm_api_key", None), \
             patch.object(llm_module.settings, "openai_api_key", ""):
            with pytest.raises(UpstreamServiceError) as exc_info:
                OpenAICompatibleProvider()
        assert exc_info.value.code == "LLM_NOT_CONFIGURED"


class TestAnthropicProvider:
    def test_system_is_top_level(self):
        provider = AnthropicProvider(api_key="sk-ant-test", model="claude-test")
        create = AsyncMock(return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="We audit "),
                SimpleNamespace(type="text", text="quarterly [#1]."),
            ],
            model="claude-test",
            usage=SimpleNamespace(input_tokens=40, output_tokens=6),
        ))
        provider._client = MagicMock()
        provider._client.messages.create = create

        result = _run(provider.complete("rules", "Question: q"))

        assert result.content == "We audit quarterly [#1]."
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "rules"
        assert kwargs["messages"] == [{"role": "user", "content": "Question: q"}]


class TestFactory:
    def test_selects_anthropic(self):
        with patch.object(llm_module, "_provider", None), \
             patch.object(llm_module.settings, "llm_provider", "anthropic"), \
             patch.object(llm_module, "AnthropicProvider", return_value="claude") as cls:
            assert get_llm_provider() == "claude"
        cls.assert_called_once_with()

    def test_defaults_to_openai_compatible(self):
        with patch.object(llm_module, "_provider", None), \
             patch.object(llm_module.settings, "llm_provider", "openai_compatible"), \
             patch.object(llm_module, "OpenAICompatibleProvider", return_value="oai") as cls:
            assert get_llm_provider() == "oai"
        cls.assert_called_once_with()
