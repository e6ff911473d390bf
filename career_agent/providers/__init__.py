"""Provider factory and defaults."""

from __future__ import annotations

import os
from typing import Dict

from ..config import ProviderConfig
from .base import ChatProvider
from .openai_compat import OpenAICompatibleProvider
from .stub import StubProvider

PROVIDER_DEFAULTS: Dict[str, Dict[str, str]] = {
    "openai": {"api_base": "", "env_key": "OPENAI_API_KEY"},
    "azure": {"api_base": "", "env_key": "AZURE_OPENAI_API_KEY"},
    "deepseek": {"api_base": "https://api.deepseek.com", "env_key": "DEEPSEEK_API_KEY"},
    "kimi": {"api_base": "https://api.moonshot.cn/v1", "env_key": "KIMI_API_KEY"},
}


def create_provider(config: ProviderConfig) -> ChatProvider:
    """Build the chat provider described by ``config``."""
    provider_name = (config.name or "stub").lower()
    if provider_name == "stub":
        return StubProvider(model=config.model or "stub-model")

    defaults = PROVIDER_DEFAULTS.get(provider_name, {})
    api_key = _resolve_api_key(provider_name, config.api_key)
    return OpenAICompatibleProvider(
        api_key=api_key,
        model=config.model,
        api_base=config.api_base or defaults.get("api_base", ""),
        cumulative_text=config.cumulative_text,
    )


def _resolve_api_key(provider: str, api_key: str) -> str:
    if api_key:
        return api_key
    env_key = PROVIDER_DEFAULTS.get(provider, {}).get("env_key", "")
    if env_key and os.environ.get(env_key):
        return os.environ[env_key]
    hint = env_key or "provider.api_key"
    raise ValueError(f"{hint} not set. Please set the env var or add api_key to config/config.local.yaml")


__all__ = [
    "ChatProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_DEFAULTS",
    "StubProvider",
    "create_provider",
]
