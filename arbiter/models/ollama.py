"""Minimal Ollama client for local inference."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence
import logging

import httpx

from arbiter.models.base import ModelInfo, ModelResult, post_json
from arbiter.query import Attachment

logger = logging.getLogger(__name__)

VISION_FAMILIES = {"clip", "llava", "mllama"}


class OllamaClient:
    provider = "ollama"

    def __init__(self, base_url: str = "http://localhost:11434", timeout: float = 120.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._vision: Dict[str, bool] = {}

    @property
    def available(self) -> bool:
        return True

    def list_models(self) -> List[ModelInfo]:
        with httpx.Client(timeout=5.0) as client:
            resp = client.get(f"{self.base_url}/api/tags")
            resp.raise_for_status()
            data = resp.json()
        models = []
        for entry in data.get("models", []):
            name = entry.get("name")
            if not name:
                continue
            families = (entry.get("details") or {}).get("families") or []
            vision = any(str(family).lower() in VISION_FAMILIES for family in families)
            self._vision[name] = vision
            models.append(ModelInfo(provider=self.provider, name=name, supports_images=vision, supports_attachments=vision))
        return models

    def supports_attachments(self, model: str) -> bool:
        if model not in self._vision:
            try:
                self.list_models()
            except Exception:
                logger.warning("Could not list Ollama models at %s", self.base_url, exc_info=True)
        return self._vision.get(model, False)

    def generate(
        self,
        prompt: str,
        model: str,
        attachments: Sequence[Attachment] = (),
        system: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> ModelResult:
        texts = [f"Attachment {a.name or 'attachment'}:\n{a.content}" for a in attachments if a.type == "text"]
        images = [a.content for a in attachments if a.is_image]
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": "\n\n".join([prompt, *texts]),
            "stream": False,
            "options": {
                "temperature": temperature,
            },
        }
        if images:
            payload["images"] = images
        if system:
            payload["system"] = system
        if max_tokens is not None:
            payload["options"]["num_predict"] = max_tokens

        data, error, duration_ms = post_json(f"{self.base_url}/api/generate", payload, timeout=self.timeout)
        if error:
            return ModelResult(ok=False, error=error, duration_ms=duration_ms)
        return ModelResult(text=(data or {}).get("response", ""), ok=True, duration_ms=duration_ms)
