"""
Multi-provider LLM client for commit-story.

Supports:
- Anthropic (Claude Opus, Sonnet, Haiku) - including custom endpoints
- OpenAI (GPT-4o, GPT-4o-mini, o-series)

Callers only see "text in, text out": every provider response is reduced
to an APIResponse before it leaves this module.
"""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import anthropic
import openai
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


class LLMError(Exception):
    """LLM call failed."""
    pass


class Provider(Enum):
    """LLM provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class APIResponse:
    """Response from LLM API."""

    content: str
    input_tokens: int
    output_tokens: int
    model: str
    provider: Provider
    stop_reason: str | None = None


@dataclass
class ModelOutcome:
    """Result-or-error of one bounded model call."""

    response: APIResponse | None = None
    error: str | None = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.response is not None and self.error is None

    @property
    def text(self) -> str:
        return self.response.content if self.response else ""


# Model context limits (input tokens)
MODEL_CONTEXT_LIMITS: dict[str, int] = {
    "claude-opus-4-5-20251101": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-haiku-4-5-20251001": 200_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4": 8_192,
    "o1": 200_000,
    "o3-mini": 200_000,
}

# Default context limit if model not in registry
DEFAULT_CONTEXT_LIMIT = 128_000


def get_context_limit(model: str) -> int:
    """Get the context limit for a model."""
    _, full_model = resolve_model(model)
    return MODEL_CONTEXT_LIMITS.get(full_model, DEFAULT_CONTEXT_LIMIT)


# Model registry with provider info
MODEL_REGISTRY: dict[str, tuple[Provider, str]] = {
    # Anthropic models
    "opus": (Provider.ANTHROPIC, "claude-opus-4-5-20251101"),
    "sonnet": (Provider.ANTHROPIC, "claude-sonnet-4-20250514"),
    "haiku": (Provider.ANTHROPIC, "claude-haiku-4-5-20251001"),
    # OpenAI models
    "gpt-4": (Provider.OPENAI, "gpt-4"),
    "gpt-4o": (Provider.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (Provider.OPENAI, "gpt-4o-mini"),
    "o1": (Provider.OPENAI, "o1"),
    "o3-mini": (Provider.OPENAI, "o3-mini"),
}


def resolve_model(model: str) -> tuple[Provider, str]:
    """Resolve model shorthand to (provider, full_model_id)."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]
    # Guess provider from model name
    if model.startswith("claude"):
        return (Provider.ANTHROPIC, model)
    if model.startswith(("gpt-", "o1", "o3")):
        return (Provider.OPENAI, model)
    # Default to Anthropic
    return (Provider.ANTHROPIC, model)


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> APIResponse:
        """Get completion from LLM."""
        pass

    async def aclose(self) -> None:
        """Release network resources; the client is unusable afterwards."""


def _is_reasoning_model(model: str) -> bool:
    return model.startswith(("o1", "o3"))


class AnthropicClient(BaseLLMClient):
    """Messages API client; ANTHROPIC_BASE_URL selects a compatible endpoint."""

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_AUTH_TOKEN")
        if not api_key:
            raise ValueError("Anthropic credentials missing: set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN")
        kwargs: dict[str, Any] = {"api_key": api_key}
        base_url = base_url or os.environ.get("ANTHROPIC_BASE_URL")
        if base_url:
            kwargs["base_url"] = base_url
        self.client = anthropic.AsyncAnthropic(**kwargs)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> APIResponse:
        model = model or self.DEFAULT_MODEL
        request: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            request["system"] = system

        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIError as e:
            raise LLMError(f"Anthropic API error: {e}") from e

        return APIResponse(
            content="".join(block.text for block in response.content if block.type == "text"),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=model,
            provider=Provider.ANTHROPIC,
            stop_reason=response.stop_reason,
        )

    async def aclose(self) -> None:
        await self.client.close()


class OpenAIClient(BaseLLMClient):
    """Chat Completions client; the system prompt travels as the first message."""

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(self, api_key: str | None = None):
        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OpenAI credentials missing: set OPENAI_API_KEY")
        self.client = openai.AsyncOpenAI(api_key=api_key)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> APIResponse:
        model = model or self.DEFAULT_MODEL
        chat = ([{"role": "system", "content": system}] if system else []) + list(messages)

        request: dict[str, Any] = {"model": model, "messages": chat}
        # reasoning models take max_completion_tokens and reject temperature
        if _is_reasoning_model(model):
            request["max_completion_tokens"] = max_tokens
        else:
            request["max_tokens"] = max_tokens
            request["temperature"] = temperature

        try:
            response = await self.client.chat.completions.create(**request)
        except openai.OpenAIError as e:
            raise LLMError(f"OpenAI API error: {e}") from e

        choice = response.choices[0]
        usage = response.usage
        return APIResponse(
            content=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=model,
            provider=Provider.OPENAI,
            stop_reason=choice.finish_reason,
        )

    async def aclose(self) -> None:
        await self.client.close()


class MultiProviderClient(BaseLLMClient):
    """
    Route each call to the provider that serves its model.

    When that provider has no credentials the call goes to whichever
    provider does, with the resolved model name unchanged.
    """

    def __init__(
        self,
        default_model: str = "gpt-4o-mini",
        anthropic_key: str | None = None,
        openai_key: str | None = None,
    ):
        """
        Args:
            default_model: Model used when a call does not name one
            anthropic_key: Anthropic API key (falls back to the environment)
            openai_key: OpenAI API key (falls back to the environment)

        Raises:
            ValueError: If no provider has credentials
        """
        self.default_model = default_model
        self._clients: dict[Provider, BaseLLMClient] = {}

        for provider, factory in (
            (Provider.ANTHROPIC, lambda: AnthropicClient(api_key=anthropic_key)),
            (Provider.OPENAI, lambda: OpenAIClient(api_key=openai_key)),
        ):
            try:
                self._clients[provider] = factory()
            except ValueError:
                logger.debug(f"{provider.value} provider disabled: no credentials")

        if not self._clients:
            raise ValueError("No LLM provider available. Set ANTHROPIC_API_KEY or OPENAI_API_KEY.")

    def _route(self, model: str) -> tuple[BaseLLMClient, str]:
        provider, full_model = resolve_model(model)
        if provider in self._clients:
            return self._clients[provider], full_model

        fallback = next(iter(self._clients))
        logger.warning(f"No {provider.value} credentials for {model}, routing to {fallback.value}")
        return self._clients[fallback], full_model

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.0,
    ) -> APIResponse:
        client, full_model = self._route(model or self.default_model)
        return await client.complete(
            messages=messages,
            system=system,
            model=full_model,
            max_tokens=max_tokens,
            temperature=temperature,
        )

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()


def create_client(default_model: str = "gpt-4o-mini") -> MultiProviderClient:
    """
    Build a client for one pipeline run.

    The SDK clients bind to the running event loop, so each run gets its own
    and closes it with ``aclose()`` when done.

    Raises:
        ValueError: If no provider has credentials
    """
    return MultiProviderClient(default_model=default_model)


async def complete_bounded(
    client: BaseLLMClient | None,
    prompt: str,
    system: str | None = None,
    model: str | None = None,
    max_tokens: int = 2000,
    temperature: float = 0.0,
    timeout: float = 60.0,
) -> ModelOutcome:
    """
    Make one model call bounded by ``timeout`` seconds.

    Never raises: provider errors, missing credentials and timeouts are
    reported through ModelOutcome.error.
    """
    if client is None:
        return ModelOutcome(error="no model client available")

    try:
        response = await asyncio.wait_for(
            client.complete(
                messages=[{"role": "user", "content": prompt}],
                system=system,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        return ModelOutcome(error=f"model call timed out after {timeout}s", timed_out=True)
    except (LLMError, ValueError) as e:
        return ModelOutcome(error=str(e))
    except Exception as e:
        logger.debug("Unexpected model client failure", exc_info=True)
        return ModelOutcome(error=f"LLM call failed: {e}")

    return ModelOutcome(response=response)


__all__ = [
    "APIResponse",
    "AnthropicClient",
    "BaseLLMClient",
    "LLMError",
    "MODEL_CONTEXT_LIMITS",
    "MODEL_REGISTRY",
    "ModelOutcome",
    "MultiProviderClient",
    "OpenAIClient",
    "Provider",
    "complete_bounded",
    "create_client",
    "get_context_limit",
    "resolve_model",
]
