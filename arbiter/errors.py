"""Error taxonomy for arbitration requests."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    PROVIDER = "provider"
    PARSE = "parse"
    INFRASTRUCTURE = "infrastructure"
    COMMITMENT_NOT_FOUND = "commitment_not_found"


class ArbiterError(Exception):
    """Base error carrying an explicit kind and a human-readable message."""

    kind: ErrorKind = ErrorKind.INFRASTRUCTURE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "kind": self.kind.value}


class ValidationError(ArbiterError):
    """Raised when a request is malformed; rejected before any provider call."""

    kind = ErrorKind.VALIDATION


class ProviderError(ArbiterError):
    """Raised when a model backend fails or is misconfigured."""

    kind = ErrorKind.PROVIDER

    def __init__(self, message: str, provider: Optional[str] = None, model: Optional[str] = None) -> None:
        label = "/".join(part for part in (provider, model) if part)
        super().__init__(f"{label}: {message}" if label else message)
        self.provider = provider
        self.model = model

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["provider"] = self.provider
        payload["model"] = self.model
        return payload


class ParseError(ArbiterError):
    """Raised when model output cannot be decoded into a decision vector."""

    kind = ErrorKind.PARSE


class InfrastructureError(ArbiterError):
    """Raised on evidence fetch/unpack, publish, or store failures."""

    kind = ErrorKind.INFRASTRUCTURE


class CommitmentNotFoundError(ArbiterError):
    """Raised when a reveal names an unknown or already-revealed commitment."""

    kind = ErrorKind.COMMITMENT_NOT_FOUND

    def __init__(self, token: str) -> None:
        super().__init__(f"Unknown commit hash: {token}")
        self.token = token
