"""Static registry of built-in provider adapters."""

from __future__ import annotations

from typing import Dict, Type

from gateway.errors import UnsupportedProviderError
from gateway.providers.base import ProviderAdapter
from gateway.providers.gemini import GeminiAdapter
from gateway.providers.ollama import OllamaAdapter
from gateway.providers.openai import AzureOpenAIAdapter, OpenAIAdapter
from gateway.providers.types import ProviderKind

ADAPTER_REGISTRY: Dict[ProviderKind, Type[ProviderAdapter]] = {
    ProviderKind.OPENAI: OpenAIAdapter,
    ProviderKind.AZURE_OPENAI: AzureOpenAIAdapter,
    ProviderKind.OLLAMA: OllamaAdapter,
    ProviderKind.GOOGLE_GENAI: GeminiAdapter,
}


def get_adapter(kind: str | ProviderKind, logger=None) -> ProviderAdapter:
    """Return an adapter for the provider kind, failing before any network call when unknown."""
    try:
        provider_kind = ProviderKind(kind)
    except ValueError:
        raise UnsupportedProviderError(f"Unsupported provider '{kind}'")

    adapter_cls = ADAPTER_REGISTRY.get(provider_kind)
    if adapter_cls is None:
        raise UnsupportedProviderError(f"No adapter registered for provider '{provider_kind.value}'")
    return adapter_cls(logger)
