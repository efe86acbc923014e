# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
AI completion collaborators

OpenAI (and OpenAI-compatible endpoints via base_url) and Anthropic clients.
SDK failures are surfaced as CompletionError with `retryable` set for rate
limits, timeouts, connection failures and 5xx responses.
"""

from typing import Dict, Optional, Tuple

import anthropic
import openai

from flowengine.core.config import get_anthropic_api_key, get_openai_api_key
from flowengine.core.errors import CompletionError
from flowengine.core.logging import get_engine_logger, log_event
from flowengine.engine.models import TokenUsage
from .base import CompletionConfig, CompletionResponse

logger = get_engine_logger("completion")


def is_retryable_status(status_code: Optional[int]) -> bool:
    if status_code is None:
        return False
    return status_code in (408, 409, 429) or status_code >= 500


class OpenAICompletionClient:
    """Chat completions through openai.AsyncOpenAI"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 120.0):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._clients: Dict[Tuple[Optional[str], Optional[str]], openai.AsyncOpenAI] = {}

    def _client(self, config: CompletionConfig) -> openai.AsyncOpenAI:
        api_key = config.api_key or self.api_key or get_openai_api_key()
        base_url = config.base_url or self.base_url
        if not api_key:
            raise CompletionError("OpenAI API key is not configured")
        key = (api_key, base_url)
        if key not in self._clients:
            self._clients[key] = openai.AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=self.timeout)
        return self._clients[key]

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        config: CompletionConfig
    ) -> CompletionResponse:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        try:
            response = await self._client(config).chat.completions.create(
                model=model,
                messages=messages,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            )
        except openai.APIConnectionError as e:
            raise CompletionError(f"OpenAI connection failed: {e}", retryable=True)
        except openai.APIStatusError as e:
            raise CompletionError(
                f"OpenAI request failed ({e.status_code}): {e.message}",
                retryable=is_retryable_status(e.status_code),
                status_code=e.status_code,
            )

        content = response.choices[0].message.content if response.choices else ""
        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return CompletionResponse(content=content or "", model=response.model or model, token_usage=usage)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class AnthropicCompletionClient:
    """Messages API through anthropic.AsyncAnthropic"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: float = 120.0):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._clients: Dict[Tuple[Optional[str], Optional[str]], anthropic.AsyncAnthropic] = {}

    def _client(self, config: CompletionConfig) -> anthropic.AsyncAnthropic:
        api_key = config.api_key or self.api_key or get_anthropic_api_key()
        base_url = config.base_url or self.base_url
        if not api_key:
            raise CompletionError("Anthropic API key is not configured")
        key = (api_key, base_url)
        if key not in self._clients:
            self._clients[key] = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url, timeout=self.timeout)
        return self._clients[key]

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        config: CompletionConfig
    ) -> CompletionResponse:
        kwargs = {
            "model": model,
            "max_tokens": config.max_tokens,
            "temperature": min(config.temperature, 1.0),
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = await self._client(config).messages.create(**kwargs)
        except anthropic.APIConnectionError as e:
            raise CompletionError(f"Anthropic connection failed: {e}", retryable=True)
        except anthropic.APIStatusError as e:
            raise CompletionError(
                f"Anthropic request failed ({e.status_code}): {e.message}",
                retryable=is_retryable_status(e.status_code),
                status_code=e.status_code,
            )

        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        usage = TokenUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )
        return CompletionResponse(content=content, model=response.model or model, token_usage=usage)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class ProviderCompletionClient:
    """
    Routes each call to the provider named in its CompletionConfig.

    Unknown providers are treated as OpenAI-compatible endpoints; a claude-*
    model always goes to Anthropic.
    """

    def __init__(
        self,
        openai_client: Optional[OpenAICompletionClient] = None,
        anthropic_client: Optional[AnthropicCompletionClient] = None
    ):
        self.openai_client = openai_client or OpenAICompletionClient()
        self.anthropic_client = anthropic_client or AnthropicCompletionClient()

    def _get_client_for_model(self, model: str, config: CompletionConfig):
        """Determine which client to use based on provider and model name"""
        if config.provider == "anthropic" or model.startswith("claude-"):
            return "anthropic", self.anthropic_client
        return "openai", self.openai_client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        config: CompletionConfig
    ) -> CompletionResponse:
        provider, client = self._get_client_for_model(model, config)
        log_event(
            logger, "completion_request", level="DEBUG",
            provider=provider,
            model=model,
            system_chars=len(system_prompt),
            user_chars=len(user_prompt),
        )
        return await client.complete(system_prompt, user_prompt, model, config)

    async def close(self) -> None:
        await self.openai_client.close()
        await self.anthropic_client.close()
