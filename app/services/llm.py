# =============================================================================
# Completion Service — Chat Model Backends for Grounded Answers
# =============================================================================
#
# The answer generator makes exactly one call per question: a system prompt
# (grounding rules + contact CTA) and a user prompt (question + context).
# Providers expose that as `complete(system, prompt)`.
#
#   OpenAICompatibleProvider  default; OpenAI or any gateway speaking the
#                             chat completions API (LLM_BASE_URL)
#   AnthropicProvider         Claude through the native SDK
#
# SDK failures surface as UpstreamServiceError (LLM_FAILED at llm.call), so
# the HTTP layer renders them like every other upstream failure.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from app.config import settings
from app.errors import UpstreamServiceError

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class LLMProvider(Protocol):
    model: str

    async def complete(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
    ) -> LLMResponse:
        ...


def _llm_failure(provider: str, exc: Exception) -> UpstreamServiceError:
    return UpstreamServiceError(
        f"{provider} completion failed: {exc}",
        code="LLM_FAILED",
        stage="llm.call",
    )


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Chat completions via AsyncOpenAI. The system prompt travels as the
    first message with role "system".

    Pointing at another gateway is configuration only:
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        key = api_key or settings.llm_api_key or settings.openai_api_key
        if not key:
            raise UpstreamServiceError(
                "No completion API key. Set LLM_API_KEY or OPENAI_API_KEY.",
                code="LLM_NOT_CONFIGURED",
                stage="llm.call",
            )

        self.base_url = base_url or settings.llm_base_url
        self.model = model or settings.llm_model
        self._client = (
            AsyncOpenAI(api_key=key, base_url=self.base_url)
            if self.base_url
            else AsyncOpenAI(api_key=key)
        )
        logger.info(
            "llm.init provider=openai_compatible model=%s base_url=%s",
            self.model, self.base_url or "default",
        )

    async def complete(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
    ) -> LLMResponse:
        from openai import OpenAIError

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=settings.llm_temperature if temperature is None else temperature,
                max_tokens=settings.llm_max_tokens,
            )
        except OpenAIError as exc:
            raise _llm_failure("OpenAI-compatible", exc) from exc

        usage = response.usage
        return LLMResponse(
            content=(response.choices[0].message.content or "") if response.choices else "",
            model=response.model or self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Claude via AsyncAnthropic; the system prompt is the top-level `system=`."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not key:
            raise UpstreamServiceError(
                "No Anthropic API key. Set LLM_API_KEY or ANTHROPIC_API_KEY.",
                code="LLM_NOT_CONFIGURED",
                stage="llm.call",
            )

        self.model = model or settings.llm_model
        self._client = AsyncAnthropic(api_key=key)
        logger.info("llm.init provider=anthropic model=%s", self.model)

    async def complete(
        self,
        system: str,
        prompt: str,
        temperature: float | None = None,
    ) -> LLMResponse:
        from anthropic import AnthropicError

        try:
            response = await self._client.messages.create(
                model=self.model,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                temperature=settings.llm_temperature if temperature is None else temperature,
                max_tokens=settings.llm_max_tokens,
            )
        except AnthropicError as exc:
            raise _llm_failure("Anthropic", exc) from exc

        text = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return LLMResponse(
            content=text,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """Process-wide provider chosen by LLM_PROVIDER ("anthropic" or anything else)."""
    global _provider
    if _provider is None:
        if settings.llm_provider == "anthropic":
            _provider = AnthropicProvider()
        else:
            _provider = OpenAICompatibleProvider()
    return _provider
