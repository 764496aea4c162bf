"""
LLM factory for creating provider adapters.

Supports: GigaChat, YandexGPT, OpenAI GPT (and compatible endpoints), Anthropic Claude.
"""

import httpx

from ..config import Settings
from ..errors import ConfigError
from .anthropic import AnthropicAdapter
from .base import ProviderAdapter
from .gigachat import GigaChatAdapter
from .openai import OpenAIAdapter
from .yandex import YandexGPTAdapter


def _http_client(settings: Settings, verify: bool | str = True) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
        verify=verify,
    )


def create_adapter(provider: str, settings: Settings | None = None) -> ProviderAdapter:
    """Create a provider adapter from settings.

    Provider routing:
    - gigachat -> GigaChatAdapter (OAuth + chat completions over httpx)
    - yandex -> YandexGPTAdapter (Foundation Models API over httpx)
    - openai -> OpenAIAdapter (native OpenAI SDK)
    - anthropic -> AnthropicAdapter (native Anthropic SDK)
    """
    if settings is None:
        from ..config import get_settings
        settings = get_settings()

    if provider == "gigachat":
        if not settings.gigachat_auth_key:
            raise ConfigError("GIGACHAT_AUTH_KEY is not set")
        return GigaChatAdapter(
            auth_key=settings.gigachat_auth_key,
            model=settings.gigachat_model,
            scope=settings.gigachat_scope,
            http_client=_http_client(settings, verify=settings.gigachat_verify_ssl),
            owns_client=True,
        )
    elif provider == "yandex":
        if not settings.yandex_api_key or not settings.yandex_folder_id:
            raise ConfigError("YANDEX_API_KEY and YANDEX_FOLDER_ID must be set")
        return YandexGPTAdapter(
            api_key=settings.yandex_api_key,
            folder_id=settings.yandex_folder_id,
            model=settings.yandex_model,
            http_client=_http_client(settings),
            owns_client=True,
        )
    elif provider == "openai":
        if not settings.openai_api_key:
            raise ConfigError("OPENAI_API_KEY is not set")
        return OpenAIAdapter(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
        )
    elif provider == "anthropic":
        if not settings.anthropic_api_key:
            raise ConfigError("ANTHROPIC_API_KEY is not set")
        return AnthropicAdapter(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
        )
    else:
        raise ConfigError(f"Unknown LLM provider: {provider}")
