"""
Provider adapters.

One adapter per supported provider, all behind the ProviderAdapter contract.
"""

from typing import Dict, Optional

import httpx

from ai_gateway.core.types import ProviderIdentity

from .base import HttpAdapter, ProviderAdapter
from .claude_provider import ClaudeAdapter
from .custom_provider import CustomAdapter
from .deepseek_provider import DeepSeekAdapter
from .gemini_provider import GeminiAdapter
from .mistral_provider import MistralAdapter
from .openai_provider import OpenAIAdapter, OpenAICompatibleAdapter


def default_adapters(http_client: Optional[httpx.AsyncClient] = None) -> Dict[ProviderIdentity, ProviderAdapter]:
    """Build the registry of all built-in adapters.

    Args:
        http_client: Optional client shared by every adapter

    Returns:
        Mapping from provider identity to adapter instance
    """
    adapters = [
        OpenAIAdapter(http_client),
        GeminiAdapter(http_client),
        ClaudeAdapter(http_client),
        DeepSeekAdapter(http_client),
        MistralAdapter(http_client),
        CustomAdapter(http_client),
    ]
    return {adapter.provider: adapter for adapter in adapters}


__all__ = [
    "ClaudeAdapter",
    "CustomAdapter",
    "DeepSeekAdapter",
    "GeminiAdapter",
    "HttpAdapter",
    "MistralAdapter",
    "OpenAIAdapter",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "default_adapters",
]
