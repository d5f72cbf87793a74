"""Shared result types and HTTP plumbing for model backends."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import time

import httpx


@dataclass
class ModelResult:
    """Result from a single model call."""
    text: str = ""
    ok: bool = True
    error: str | None = None
    duration_ms: float = 0.0
    usage: Dict[str, Any] | None = None


@dataclass(frozen=True)
class ModelInfo:
    provider: str
    name: str
    supports_images: bool = False
    supports_attachments: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "name": self.name,
            "supportsImages": self.supports_images,
            "supportsAttachments": self.supports_attachments,
        }


def post_json(
    url: str,
    body: Dict[str, Any],
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 120.0,
) -> Tuple[Optional[Dict[str, Any]], Optional[str], float]:
    """POST a JSON body; returns ``(data, error, duration_ms)`` and never raises."""
    start = time.perf_counter()
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(url, json=body, headers=headers or {})
        duration_ms = (time.perf_counter() - start) * 1000
        if response.status_code != 200:
            return None, f"HTTP {response.status_code}: {response.text[:500]}", duration_ms
        data = response.json()
        if not isinstance(data, dict):
            return None, f"Unexpected response body: {response.text[:200]}", duration_ms
        return data, None, duration_ms
    except httpx.TimeoutException:
        duration_ms = (time.perf_counter() - start) * 1000
        return None, f"timeout after {timeout}s", duration_ms
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000
        return None, str(exc), duration_ms
