"""Uniform access to every configured model backend."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Sequence
import logging
import os

from arbiter.errors import ProviderError
from arbiter.models.anthropic import AnthropicClient
from arbiter.models.base import ModelInfo, ModelResult
from arbiter.models.gemini import GeminiClient
from arbiter.models.ollama import OllamaClient
from arbiter.models.openai import OpenAIClient
from arbiter.models.registry import ModelRegistry
from arbiter.query import Attachment

logger = logging.getLogger(__name__)

PROVIDER_ALIASES = {
    "openai": "openai",
    "anthropic": "anthropic",
    "open-source": "ollama",
    "ollama": "ollama",
    "gemini": "gemini",
    "google": "gemini",
}


def normalize_provider(name: str) -> str | None:
    return PROVIDER_ALIASES.get((name or "").strip().lower())


class ProviderGateway:
    def __init__(self, clients: Dict[str, Any]) -> None:
        self.clients = clients

    @classmethod
    def from_config(cls, config) -> "ProviderGateway":
        providers = config.providers
        timeout = config.provider_timeout_seconds
        registry = ModelRegistry.from_config(config.models)

        def _key(section: Dict[str, Any]) -> str | None:
            env = section.get("api_key_env")
            return os.environ.get(env) if env else section.get("api_key")

        openai_cfg = providers.get("openai", {})
        anthropic_cfg = providers.get("anthropic", {})
        gemini_cfg = providers.get("gemini", {})
        ollama_cfg = providers.get("ollama", {})
        clients: Dict[str, Any] = {
            "openai": OpenAIClient(
                registry,
                api_key=_key(openai_cfg),
                base_url=openai_cfg.get("api_base", "https://api.openai.com/v1"),
                timeout=timeout,
            ),
            "anthropic": AnthropicClient(
                registry,
                api_key=_key(anthropic_cfg),
                base_url=anthropic_cfg.get("api_base", "https://api.anthropic.com/v1"),
                timeout=timeout,
            ),
            "gemini": GeminiClient(
                registry,
                api_key=_key(gemini_cfg),
                base_url=gemini_cfg.get("api_base", "https://generativelanguage.googleapis.com/v1beta"),
                timeout=timeout,
            ),
            "ollama": OllamaClient(
                base_url=ollama_cfg.get("base_url", "http://localhost:11434"),
                timeout=timeout,
            ),
        }
        return cls(clients)

    def client(self, provider: str, model: str | None = None):
        key = normalize_provider(provider)
        if key is None or key not in self.clients:
            raise ProviderError(f"Unsupported provider: {provider}", provider=provider, model=model)
        return self.clients[key]

    def check(self, provider: str, model: str | None = None) -> None:
        """Raise ProviderError for an unknown provider without calling it."""
        self.client(provider, model)

    def supports_attachments(self, provider: str, model: str) -> bool:
        return bool(self.client(provider, model).supports_attachments(model))

    def _unwrap(self, provider: str, model: str, result: ModelResult) -> str:
        if not result.ok:
            logger.error("Provider %s/%s failed after %.0fms: %s", provider, model, result.duration_ms, result.error)
            raise ProviderError(result.error or "unknown provider failure", provider=provider, model=model)
        logger.debug("Provider %s/%s answered in %.0fms", provider, model, result.duration_ms)
        return result.text

    def generate_response(self, provider: str, model: str, prompt: str) -> str:
        result = self.client(provider, model).generate(prompt, model)
        return self._unwrap(provider, model, result)

    def generate_response_with_attachments(
        self,
        provider: str,
        model: str,
        prompt: str,
        attachments: Sequence[Attachment],
    ) -> str:
        result = self.client(provider, model).generate(prompt, model, attachments=attachments)
        return self._unwrap(provider, model, result)

    def get_models(self) -> List[ModelInfo]:
        """List every backend's models concurrently; a failing backend contributes nothing."""
        names = list(self.clients)

        def _list(name: str) -> List[ModelInfo]:
            try:
                return list(self.clients[name].list_models())
            except Exception:
                logger.warning("Listing models for %s failed", name, exc_info=True)
                return []

        with ThreadPoolExecutor(max_workers=max(1, len(names))) as pool:
            results = list(pool.map(_list, names))
        return [info for batch in results for info in batch]
