"""
LLM module for multi-provider AI model support.

Providers:
- GigaChat (httpx)
- YandexGPT (httpx)
- OpenAI GPT (native SDK)
- Anthropic Claude (native SDK)
"""

from .base import (
    ChatTurn,
    HttpProviderAdapter,
    ProviderAdapter,
    ProviderReply,
    ToolCall,
    ToolDescriptor,
    Usage,
    round_cost,
)
from .anthropic import AnthropicAdapter
from .gigachat import GigaChatAdapter
from .openai import OpenAIAdapter
from .yandex import YandexGPTAdapter
from .factory import create_adapter

__all__ = [
    "ChatTurn",
    "HttpProviderAdapter",
    "ProviderAdapter",
    "ProviderReply",
    "ToolCall",
    "ToolDescriptor",
    "Usage",
    "round_cost",
    "AnthropicAdapter",
    "GigaChatAdapter",
    "OpenAIAdapter",
    "YandexGPTAdapter",
    "create_adapter",
]
