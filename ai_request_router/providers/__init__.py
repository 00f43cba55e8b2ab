from ai_request_router.providers.base import CallableProvider, ProviderAdapter
from ai_request_router.providers.http import (
    AnthropicMessagesProvider,
    HttpProviderAdapter,
    OllamaGenerateProvider,
    OpenAIChatProvider,
    build_http_provider,
)

__all__ = [
    "AnthropicMessagesProvider",
    "CallableProvider",
    "HttpProviderAdapter",
    "OllamaGenerateProvider",
    "OpenAIChatProvider",
    "ProviderAdapter",
    "build_http_provider",
]
