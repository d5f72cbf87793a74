"""Anthropic messages API client."""
from __future__ import annotations

from typing import Any, Dict, List, Sequence
import os

from arbiter.models.base import ModelInfo, ModelResult, post_json
from arbiter.models.registry import ModelRegistry
from arbiter.query import Attachment


API_VERSION = "2023-06-01"
SUPPORTED_IMAGE_FORMATS = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class AnthropicClient:
    provider = "anthropic"

    def __init__(
        self,
        registry: ModelRegistry,
        api_key: str | None = None,
        base_url: str = "https://api.anthropic.com/v1",
        timeout: float = 120.0,
        max_tokens: int = 4096,
    ) -> None:
        self.registry = registry
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_tokens = max_tokens

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def list_models(self) -> List[ModelInfo]:
        return self.registry.list_models(self.provider)

    def supports_attachments(self, model: str) -> bool:
        return self.registry.supports_attachments(self.provider, model)

    def _blocks(self, model: str, prompt: str, attachments: Sequence[Attachment]) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = []
        for attachment in attachments:
            if attachment.is_image:
                if attachment.media_type not in SUPPORTED_IMAGE_FORMATS:
                    raise ValueError(f"Unsupported image format for {model}: {attachment.media_type}")
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": attachment.media_type, "data": attachment.content},
                })
            elif attachment.type == "text":
                label = attachment.name or "attachment"
                blocks.append({"type": "text", "text": f"Attachment {label}:\n{attachment.content}"})
            else:
                blocks.append({
                    "type": "document",
                    "source": {"type": "base64", "media_type": attachment.media_type, "data": attachment.content},
                })
        blocks.append({"type": "text", "text": prompt})
        return blocks

    def generate(
        self,
        prompt: str,
        model: str,
        attachments: Sequence[Attachment] = (),
        temperature: float | None = None,
    ) -> ModelResult:
        if not self.api_key:
            return ModelResult(ok=False, error="ANTHROPIC_API_KEY not set")
        try:
            content: Any = self._blocks(model, prompt, attachments) if attachments else prompt
        except ValueError as exc:
            return ModelResult(ok=False, error=str(exc))

        body: Dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        if temperature is not None:
            body["temperature"] = temperature
        headers = {"x-api-key": self.api_key, "anthropic-version": API_VERSION}
        data, error, duration_ms = post_json(f"{self.base_url}/messages", body, headers, self.timeout)
        if error:
            return ModelResult(ok=False, error=error, duration_ms=duration_ms)

        parts = (data or {}).get("content") or []
        text = "".join(part.get("text", "") for part in parts if part.get("type") == "text")
        if not parts:
            return ModelResult(ok=False, error="No content in response", duration_ms=duration_ms)
        usage = data.get("usage") or {}
        prompt_tokens = usage.get("input_tokens", 0)
        completion_tokens = usage.get("output_tokens", 0)
        return ModelResult(
            text=text,
            ok=True,
            duration_ms=duration_ms,
            usage={
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        )
