"""Request and result types shared across the arbitration pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
import base64
import math

from arbiter.errors import ValidationError

SCORE_TOTAL = 1_000_000
DEFAULT_OUTCOME_COUNT = 2
UNNAMED_OUTCOME = "unnamed"


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


@dataclass(frozen=True)
class PanelEntry:
    provider: str
    model: str
    weight: float
    count: int = 1

    @property
    def label(self) -> str:
        return f"{self.provider}-{self.model}"

    @classmethod
    def from_dict(cls, data: Any) -> "PanelEntry":
        if not isinstance(data, dict):
            raise ValidationError("Invalid model input. Each model must be an object.")
        provider = data.get("provider")
        model = data.get("model")
        weight = data.get("weight")
        count = data.get("count", 1)
        if count is None:
            count = 1
        if not isinstance(provider, str) or not provider.strip():
            raise ValidationError("Invalid model input. Check provider, model, and weight.")
        if not isinstance(model, str) or not model.strip():
            raise ValidationError("Invalid model input. Check provider, model, and weight.")
        if not _is_number(weight) or weight < 0 or weight > 1:
            raise ValidationError(
                f"Invalid model input. Weight for {provider}-{model} must be within [0, 1]."
            )
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise ValidationError(f"Invalid model input. Count for {provider}-{model} must be >= 1.")
        return cls(provider=provider.strip(), model=model.strip(), weight=float(weight), count=count)

    def to_dict(self) -> Dict[str, Any]:
        return {"provider": self.provider, "model": self.model, "weight": self.weight, "count": self.count}


@dataclass(frozen=True)
class Attachment:
    """A file handed to attachment-capable models.

    ``content`` is base64 for images and documents and plain text for text
    attachments.
    """

    type: str
    content: str
    media_type: str
    name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.type == "image"

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str, name: Optional[str] = None) -> "Attachment":
        if media_type.startswith("text/"):
            return cls(type="text", content=data.decode("utf-8", errors="replace"), media_type=media_type, name=name)
        kind = "image" if media_type.startswith("image/") else "document"
        return cls(type=kind, content=base64.b64encode(data).decode("ascii"), media_type=media_type, name=name)

    @classmethod
    def from_string(cls, value: str, name: Optional[str] = None) -> "Attachment":
        """Decode a request attachment: a ``data:`` URI or raw text."""
        if value.startswith("data:"):
            header, _, payload = value.partition(",")
            media_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
            if ";base64" not in header:
                return cls(type="text", content=payload, media_type=media_type, name=name)
            if media_type.startswith("text/"):
                text = base64.b64decode(payload).decode("utf-8", errors="replace")
                return cls(type="text", content=text, media_type=media_type, name=name)
            kind = "image" if media_type.startswith("image/") else "document"
            return cls(type=kind, content=payload, media_type=media_type, name=name)
        return cls(type="text", content=value, media_type="text/plain", name=name)

    def decoded(self) -> bytes:
        if self.type == "text":
            return self.content.encode("utf-8")
        return base64.b64decode(self.content)


@dataclass(frozen=True)
class QueryObject:
    prompt: str
    models: Tuple[PanelEntry, ...]
    iterations: int = 1
    outcomes: Tuple[str, ...] = ()
    attachments: Tuple[Attachment, ...] = ()

    @property
    def outcome_count(self) -> int:
        return len(self.outcomes) or DEFAULT_OUTCOME_COUNT

    @property
    def outcome_labels(self) -> Tuple[str, ...]:
        if self.outcomes:
            return self.outcomes
        return (UNNAMED_OUTCOME,) * DEFAULT_OUTCOME_COUNT

    @property
    def total_weight(self) -> float:
        return sum(entry.weight for entry in self.models)

    def validate(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValidationError('Invalid input. "prompt" and "models" are required.')
        if not self.models:
            raise ValidationError('Invalid input. "prompt" and "models" are required.')
        if self.iterations < 1:
            raise ValidationError("Invalid input. \"iterations\" must be >= 1.")
        total = self.total_weight
        if not (0 < total <= len(self.models)):
            raise ValidationError("Invalid weights assigned to models.")

    @classmethod
    def build(
        cls,
        prompt: str,
        models: Iterable[PanelEntry],
        iterations: int = 1,
        outcomes: Iterable[str] | None = None,
        attachments: Iterable[Attachment] | None = None,
    ) -> "QueryObject":
        query = cls(
            prompt=prompt,
            models=tuple(models),
            iterations=iterations,
            outcomes=tuple(outcomes or ()),
            attachments=tuple(attachments or ()),
        )
        query.validate()
        return query

    @classmethod
    def from_payload(cls, payload: Any) -> "QueryObject":
        """Validate a ``/rank-and-justify`` body into a query."""
        if not isinstance(payload, dict):
            raise ValidationError("Invalid input. Request body must be a JSON object.")
        prompt = payload.get("prompt")
        models = payload.get("models")
        if not isinstance(prompt, str) or not prompt.strip() or not isinstance(models, list) or not models:
            raise ValidationError('Invalid input. "prompt" and "models" are required.')
        iterations = payload.get("iterations", 1)
        if iterations is None:
            iterations = 1
        if not isinstance(iterations, int) or isinstance(iterations, bool):
            raise ValidationError("Invalid input. \"iterations\" must be an integer.")
        outcomes = payload.get("outcomes") or []
        if not isinstance(outcomes, list) or not all(isinstance(item, str) for item in outcomes):
            raise ValidationError("Invalid input. \"outcomes\" must be a list of strings.")
        raw_attachments = payload.get("attachments") or []
        if not isinstance(raw_attachments, list) or not all(isinstance(item, str) for item in raw_attachments):
            raise ValidationError("Invalid input. \"attachments\" must be a list of strings.")
        return cls.build(
            prompt=prompt,
            models=[PanelEntry.from_dict(item) for item in models],
            iterations=iterations,
            outcomes=outcomes,
            attachments=[Attachment.from_string(item) for item in raw_attachments],
        )


@dataclass(frozen=True)
class ScoreOutcome:
    outcome: str
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {"outcome": self.outcome, "score": self.score}


@dataclass(frozen=True)
class ArbitrationResult:
    scores: Tuple[ScoreOutcome, ...]
    justification: str = ""

    @property
    def vector(self) -> List[int]:
        return [item.score for item in self.scores]

    @classmethod
    def from_vector(cls, labels: Iterable[str], vector: Iterable[int], justification: str) -> "ArbitrationResult":
        scores = tuple(ScoreOutcome(outcome=label, score=int(score)) for label, score in zip(labels, vector))
        return cls(scores=scores, justification=justification)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scores": [item.to_dict() for item in self.scores],
            "justification": self.justification,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArbitrationResult":
        scores = tuple(
            ScoreOutcome(outcome=str(item.get("outcome", "")), score=int(item.get("score", 0)))
            for item in data.get("scores") or []
        )
        return cls(scores=scores, justification=str(data.get("justification") or ""))

    def to_record(self, error: Optional[str] = None) -> Dict[str, Any]:
        """The justification record published to content storage."""
        record: Dict[str, Any] = {
            "scores": [item.to_dict() for item in self.scores] or [{"outcome": "default", "score": 0}],
            "justification": self.justification,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if error is not None:
            record["error"] = error
        return record


def error_record(message: str) -> Dict[str, Any]:
    result = ArbitrationResult(scores=(ScoreOutcome(outcome="error", score=0),), justification="")
    return result.to_record(error=message)
