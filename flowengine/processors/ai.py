# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared helpers for processors that call the AI completion collaborator
"""

from typing import Optional, Tuple

from flowengine.collaborators.base import CompletionClient, CompletionConfig
from flowengine.core.config import EngineConfig
from flowengine.engine.context import ExecutionContext
from flowengine.engine.exceptions import NodeConfigurationError
from flowengine.engine.nodes import AIOptions


def completion_settings(
    options: AIOptions,
    context: ExecutionContext,
    config: EngineConfig
) -> Tuple[str, CompletionConfig]:
    """
    Pick model and parameters for a node.

    Node values win, then the run's AI provider snapshot, then engine defaults.
    """
    provider = context.ai_config(options.ai_config_id)
    if options.ai_config_id and provider is None:
        context.add_warning(f"AI config {options.ai_config_id} not found; using the default provider")

    def pick(node_value, provider_attr, default):
        if node_value is not None:
            return node_value
        if provider is not None and getattr(provider, provider_attr) is not None:
            return getattr(provider, provider_attr)
        return default

    model = pick(options.model, "default_model", config.default_model)
    settings = CompletionConfig(
        provider=provider.provider if provider is not None else config.ai_provider,
        temperature=pick(options.temperature, "temperature", config.temperature),
        max_tokens=pick(options.max_tokens, "max_tokens", config.max_tokens),
        base_url=provider.base_url if provider is not None else config.ai_base_url,
        api_key=provider.api_key if provider is not None else None,
    )
    return model, settings


def require_completion(client: Optional[CompletionClient]) -> CompletionClient:
    if client is None:
        raise NodeConfigurationError("No AI completion client is configured")
    return client
