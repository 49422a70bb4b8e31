"""
LLM Provider Clients

All providers share one contract, `invoke(prompt, params) -> str`, and are
selected once from configuration. Transport failures are normalised into
`ProviderError` with a `retryable` flag; the raw provider response body is
kept on the exception for logs and never shown to end users.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings, settings as default_settings
from ..generation.models import GenerationParams, PromptPair

logger = logging.getLogger("guide.llm")

MULTILINGUAL_LANGUAGES = frozenset({"hi", "ml"})


class ProviderError(RuntimeError):
    """A provider call failed before producing usable text."""

    def __init__(self, message: str, retryable: bool, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class ProviderConfigurationError(RuntimeError):
    """Raised at startup when the selected provider cannot be configured."""


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class LLMProvider:
    """
    Base class for chat-completion providers.
    """

    name = "base"

    def __init__(self, api_key: str, timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def invoke(self, prompt: PromptPair, params: GenerationParams) -> str:
        raise NotImplementedError

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.name} request timed out", retryable=True) from exc
        except httpx.TransportError as exc:
            raise ProviderError(f"{self.name} transport error: {type(exc).__name__}", retryable=True) from exc

        if resp.status_code >= 400:
            logger.warning(
                "%s returned HTTP %d: %s",
                self.name,
                resp.status_code,
                resp.text[:500],
            )
            raise ProviderError(
                f"{self.name} returned HTTP {resp.status_code}",
                retryable=_is_retryable_status(resp.status_code),
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned a non-JSON body", retryable=True) from exc


class OpenAIProvider(LLMProvider):
    name = "openai"
    url = "https://api.openai.com/v1/chat/completions"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model

    def model_for(self, language: str) -> str:
        if language in MULTILINGUAL_LANGUAGES:
            return "gpt-4o-mini"
        return self.model

    async def invoke(self, prompt: PromptPair, params: GenerationParams) -> str:
        payload = {
            "model": self.model_for(params.language),
            "messages": [
                {"role": "system", "content": prompt.system_message},
                {"role": "user", "content": prompt.user_message},
            ],
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "presence_penalty": 0.1,
            "frequency_penalty": 0.1,
            "response_format": {"type": "json_object"},
        }

        data = await self._post(
            self.url,
            payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("openai returned no choices", retryable=True)

        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise ProviderError("openai returned empty content", retryable=True)

        usage = data.get("usage") or {}
        logger.info(
            "openai completion: model=%s finish_reason=%s total_tokens=%s",
            payload["model"],
            choices[0].get("finish_reason"),
            usage.get("total_tokens"),
        )
        return content


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-haiku-20241022",
        multilingual_model: str = "claude-3-5-sonnet-20241022",
        **kwargs,
    ):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.multilingual_model = multilingual_model

    def model_for(self, language: str) -> str:
        if language in MULTILINGUAL_LANGUAGES:
            return self.multilingual_model
        return self.model

    async def invoke(self, prompt: PromptPair, params: GenerationParams) -> str:
        payload = {
            "model": self.model_for(params.language),
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "system": prompt.system_message,
            "messages": [{"role": "user", "content": prompt.user_message}],
        }

        data = await self._post(
            self.url,
            payload,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.api_version,
            },
        )

        blocks = data.get("content") or []
        text = next((b.get("text") for b in blocks if b.get("type") == "text"), None)
        if not text:
            raise ProviderError("anthropic returned no text content", retryable=True)

        usage = data.get("usage") or {}
        logger.info(
            "anthropic completion: model=%s stop_reason=%s tokens=%s",
            payload["model"],
            data.get("stop_reason"),
            (usage.get("input_tokens") or 0) + (usage.get("output_tokens") or 0),
        )
        return text


def build_provider(config: Settings = default_settings) -> LLMProvider:
    """
    Construct the configured provider. Called once per process.

    Raises
    ------
    ProviderConfigurationError
        If the selected provider has no API key.
    """
    if config.llm_provider == "openai":
        if not config.openai_api_key:
            raise ProviderConfigurationError("llm_provider=openai but OPENAI_API_KEY is not set")
        return OpenAIProvider(
            config.openai_api_key.get_secret_value(),
            model=config.openai_model,
            timeout=config.llm_http_timeout,
        )

    if config.llm_provider == "anthropic":
        if not config.anthropic_api_key:
            raise ProviderConfigurationError("llm_provider=anthropic but ANTHROPIC_API_KEY is not set")
        return AnthropicProvider(
            config.anthropic_api_key.get_secret_value(),
            model=config.anthropic_model,
            multilingual_model=config.anthropic_multilingual_model,
            timeout=config.llm_http_timeout,
        )

    raise ProviderConfigurationError(f"Unsupported llm_provider: {config.llm_provider}")
