"""Configuration loader for the arbiter node."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import os
import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "arbiter" / "config.yaml"

DEFAULT_JUSTIFIER = "OpenAI:gpt-4o"
DEFAULT_GATEWAYS = [
    "https://ipfs.io",
    "https://cloudflare-ipfs.com",
    "https://gateway.pinata.cloud",
    "https://dweb.link",
]


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    default_path: Path | None = None,
    user_path: Path | None = None,
) -> Dict[str, Any]:
    default_path = default_path or DEFAULT_CONFIG_PATH
    user_path = user_path or USER_CONFIG_PATH
    data: Dict[str, Any] = {}
    if default_path.exists():
        data = yaml.safe_load(default_path.read_text()) or {}
    if user_path.exists():
        override = yaml.safe_load(user_path.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Server
    host = os.getenv("ARBITER_HOST")
    port = os.getenv("ARBITER_PORT")
    if host:
        data.setdefault("server", {})["host"] = host
    if port:
        try:
            data.setdefault("server", {})["port"] = int(port)
        except ValueError:
            pass

    data_dir = os.getenv("ARBITER_DATA_DIR")
    if data_dir:
        data["data_dir"] = data_dir

    justifier = os.getenv("JUSTIFIER_MODEL")
    if justifier:
        data["justifier"] = justifier

    log_level = os.getenv("ARBITER_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level.upper()

    # Environment overrides - Providers
    provider_timeout = os.getenv("ARBITER_PROVIDER_TIMEOUT")
    if provider_timeout:
        try:
            data.setdefault("providers", {})["timeout_seconds"] = int(provider_timeout)
        except ValueError:
            pass

    ollama_url = os.getenv("OLLAMA_URL")
    if ollama_url:
        data.setdefault("providers", {}).setdefault("ollama", {})["base_url"] = ollama_url

    # Environment overrides - Commitments
    commit_store = os.getenv("ARBITER_COMMIT_STORE")
    if commit_store:
        data.setdefault("commitments", {})["backend"] = commit_store.lower()

    max_age = os.getenv("ARBITER_COMMIT_MAX_AGE_HOURS")
    if max_age:
        try:
            data.setdefault("commitments", {})["max_age_hours"] = float(max_age)
        except ValueError:
            pass

    # Environment overrides - IPFS
    publisher = os.getenv("ARBITER_PUBLISHER")
    if publisher:
        data.setdefault("ipfs", {})["publisher"] = publisher.lower()

    pinning_service = os.getenv("IPFS_PINNING_SERVICE")
    if pinning_service:
        data.setdefault("ipfs", {})["pinning_service"] = pinning_service

    pinning_key = os.getenv("IPFS_PINNING_KEY")
    if pinning_key:
        data.setdefault("ipfs", {})["pinning_key"] = pinning_key

    return data


@dataclass(frozen=True)
class JustifierSpec:
    provider: str
    model: str

    @classmethod
    def parse(cls, value: str | None) -> "JustifierSpec":
        raw = (value or DEFAULT_JUSTIFIER).strip()
        provider, sep, model = raw.partition(":")
        if not sep or not provider.strip() or not model.strip():
            provider, _, model = DEFAULT_JUSTIFIER.partition(":")
        return cls(provider=provider.strip(), model=model.strip())

    def __str__(self) -> str:
        return f"{self.provider}:{self.model}"


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {})

    @property
    def data_dir(self) -> Path:
        default = str(Path.home() / ".arbiter")
        return Path(self.raw.get("data_dir", default)).expanduser()

    @property
    def justifier(self) -> JustifierSpec:
        return JustifierSpec.parse(self.raw.get("justifier"))

    @property
    def logging(self) -> Dict[str, Any]:
        return self.raw.get("logging", {})

    @property
    def log_level(self) -> str:
        return str(self.logging.get("level", "INFO")).upper()

    @property
    def interactions_log_path(self) -> Path | None:
        if not self.logging.get("interactions", True):
            return None
        return self.data_dir / "logs" / "interactions.jsonl"

    @property
    def providers(self) -> Dict[str, Any]:
        return self.raw.get("providers", {})

    @property
    def provider_timeout_seconds(self) -> int:
        """Timeout for a single provider call in seconds. Default 2 minutes."""
        return int(self.providers.get("timeout_seconds", 120))

    @property
    def models(self) -> Dict[str, Any]:
        return self.raw.get("models", {})

    @property
    def commitments(self) -> Dict[str, Any]:
        return self.raw.get("commitments", {})

    @property
    def commit_backend(self) -> str:
        return str(self.commitments.get("backend", "json")).lower()

    @property
    def commit_store_path(self) -> Path:
        path = self.commitments.get("path")
        return Path(path).expanduser() if path else self.data_dir / "commitments.json"

    @property
    def commit_max_age_seconds(self) -> float:
        return float(self.commitments.get("max_age_hours", 72)) * 3600

    @property
    def ipfs(self) -> Dict[str, Any]:
        return self.raw.get("ipfs", {})

    @property
    def ipfs_gateways(self) -> List[str]:
        return list(self.ipfs.get("gateways") or DEFAULT_GATEWAYS)

    @property
    def publisher(self) -> str:
        return str(self.ipfs.get("publisher", "pinata")).lower()


def get_config() -> Config:
    return Config(load_config())
