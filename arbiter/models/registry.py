"""Model registry for static capability cards."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import logging

from arbiter.models.base import ModelInfo

logger = logging.getLogger(__name__)


@dataclass
class ModelRegistry:
    cards: Dict[Tuple[str, str], ModelInfo]

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ModelRegistry":
        cards: Dict[Tuple[str, str], ModelInfo] = {}
        for card in config.get("cards", []):
            provider = str(card.get("provider", "")).lower()
            name = card.get("name")
            if not provider or not name:
                logger.warning("Skipping model card without provider/name: %s", card)
                continue
            supports_images = bool(card.get("supports_images", False))
            cards[(provider, name)] = ModelInfo(
                provider=provider,
                name=name,
                supports_images=supports_images,
                supports_attachments=bool(card.get("supports_attachments", supports_images)),
            )
        return cls(cards)

    def list_models(self, provider: str | None = None) -> List[ModelInfo]:
        if provider is None:
            return list(self.cards.values())
        return [info for (key, _), info in self.cards.items() if key == provider]

    def get_model(self, provider: str, name: str) -> ModelInfo | None:
        return self.cards.get((provider, name))

    def supports_attachments(self, provider: str, name: str) -> bool:
        info = self.get_model(provider, name)
        return bool(info and info.supports_attachments)
