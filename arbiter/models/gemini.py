"""Native Gemini API client."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Sequence

from arbiter.models.base import ModelInfo, ModelResult, post_json
from arbiter.models.registry import ModelRegistry
from arbiter.query import Attachment

logger = logging.getLogger(__name__)


class GeminiClient:
    """Gemini generateContent client using httpx."""

    provider = "gemini"

    MODEL_MAP = {
        "2.5-flash": "gemini-2.5-flash",
        "2.5-pro": "gemini-2.5-pro",
        "2.0-flash": "gemini-2.0-flash",
        "1.5-flash": "gemini-1.5-flash",
        "1.5-pro": "gemini-1.5-pro",
    }

    def __init__(
        self,
        registry: ModelRegistry,
        api_key: str | None = None,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
    ) -> None:
        self.registry = registry
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def list_models(self) -> List[ModelInfo]:
        return self.registry.list_models(self.provider)

    def supports_attachments(self, model: str) -> bool:
        return self.registry.supports_attachments(self.provider, model)

    def generate(
        self,
        prompt: str,
        model: str = "2.5-flash",
        attachments: Sequence[Attachment] = (),
        system: str | None = None,
        temperature: float = 0.2,
    ) -> ModelResult:
        if not self.api_key:
            return ModelResult(ok=False, error="GEMINI_API_KEY not set")

        model_id = self.MODEL_MAP.get(model, model)
        url = f"{self.base_url}/models/{model_id}:generateContent?key={self.api_key}"

        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for attachment in attachments:
            if attachment.type == "text":
                parts.append({"text": f"Attachment {attachment.name or 'attachment'}:\n{attachment.content}"})
            else:
                parts.append({"inline_data": {"mime_type": attachment.media_type, "data": attachment.content}})
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
            },
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}

        data, error, duration_ms = post_json(url, body, timeout=self.timeout)
        if error:
            logger.debug("Gemini %s failed: %s", model_id, error)
            return ModelResult(ok=False, error=error, duration_ms=duration_ms)

        candidates = (data or {}).get("candidates", [])
        if not candidates:
            return ModelResult(ok=False, error="No candidates in response", duration_ms=duration_ms)

        text = "".join(p.get("text", "") for p in candidates[0].get("content", {}).get("parts", []))
        usage_meta = data.get("usageMetadata", {})
        return ModelResult(
            text=text,
            ok=True,
            duration_ms=duration_ms,
            usage={
                "prompt_tokens": usage_meta.get("promptTokenCount", 0),
                "completion_tokens": usage_meta.get("candidatesTokenCount", 0),
                "total_tokens": usage_meta.get("totalTokenCount", 0),
            },
        )
