"""OpenAI chat-completions client."""
from __future__ import annotations

from typing import Any, Dict, List, Sequence
import os

from arbiter.models.base import ModelInfo, ModelResult, post_json
from arbiter.models.registry import ModelRegistry
from arbiter.query import Attachment


SUPPORTED_IMAGE_FORMATS = {"image/jpeg", "image/png", "image/gif", "image/webp"}


class OpenAIClient:
    provider = "openai"

    def __init__(
        self,
        registry: ModelRegistry,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
    ) -> None:
        self.registry = registry
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def list_models(self) -> List[ModelInfo]:
        return self.registry.list_models(self.provider)

    def supports_attachments(self, model: str) -> bool:
        return self.registry.supports_attachments(self.provider, model)

    def _content(self, model: str, prompt: str, attachments: Sequence[Attachment]) -> List[Dict[str, Any]] | str:
        if not attachments:
            return prompt
        parts: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
        for attachment in attachments:
            if attachment.is_image:
                if attachment.media_type not in SUPPORTED_IMAGE_FORMATS:
                    raise ValueError(f"Unsupported image format for {model}: {attachment.media_type}")
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{attachment.media_type};base64,{attachment.content}"},
                })
            elif attachment.type == "text":
                label = attachment.name or "attachment"
                parts.append({"type": "text", "text": f"Attachment {label}:\n{attachment.content}"})
            else:
                parts.append({
                    "type": "file",
                    "file": {
                        "filename": attachment.name or "attachment",
                        "file_data": f"data:{attachment.media_type};base64,{attachment.content}",
                    },
                })
        return parts

    def generate(
        self,
        prompt: str,
        model: str,
        attachments: Sequence[Attachment] = (),
        temperature: float | None = None,
    ) -> ModelResult:
        if not self.api_key:
            return ModelResult(ok=False, error="OPENAI_API_KEY not set")
        try:
            content = self._content(model, prompt, attachments)
        except ValueError as exc:
            return ModelResult(ok=False, error=str(exc))

        body: Dict[str, Any] = {"model": model, "messages": [{"role": "user", "content": content}]}
        if temperature is not None:
            body["temperature"] = temperature
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data, error, duration_ms = post_json(f"{self.base_url}/chat/completions", body, headers, self.timeout)
        if error:
            return ModelResult(ok=False, error=error, duration_ms=duration_ms)

        choices = (data or {}).get("choices") or []
        if not choices:
            return ModelResult(ok=False, error="No choices in response", duration_ms=duration_ms)
        text = (choices[0].get("message") or {}).get("content")
        if not isinstance(text, str):
            return ModelResult(ok=False, error="Unexpected response content", duration_ms=duration_ms)
        usage = data.get("usage") or {}
        return ModelResult(
            text=text,
            ok=True,
            duration_ms=duration_ms,
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            },
        )
