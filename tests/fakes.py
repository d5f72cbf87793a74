"""In-test stand-ins for model backends, bundles, and publishers."""
from __future__ import annotations

import io
import json
import zipfile
from typing import Any, Dict, List, Tuple

from arbiter.config import Config
from arbiter.errors import InfrastructureError, ProviderError
from arbiter.models.base import ModelInfo


def reply(vector, justification="because"):
    return json.dumps({"score": list(vector), "justification": justification})


class ScriptedGateway:
    """Returns scripted replies per ``(provider, model)`` in call order.

    A script item that is an exception instance is raised instead of returned.
    """

    def __init__(
        self,
        scripts: Dict[Tuple[str, str], List[Any]] | None = None,
        justifier: Any = "Consolidated justification.",
        attachment_models: set | None = None,
        providers: set | None = None,
    ) -> None:
        self.scripts = {key: list(items) for key, items in (scripts or {}).items()}
        self.justifier = justifier
        self.attachment_models = attachment_models or set()
        self.providers = providers or {"openai", "anthropic", "ollama", "gemini"}
        self.calls: List[Dict[str, Any]] = []
        self.justifier_prompts: List[str] = []

    def check(self, provider, model=None):
        if provider.lower() not in self.providers:
            raise ProviderError(f"Unsupported provider: {provider}", provider=provider, model=model)

    def supports_attachments(self, provider, model):
        return (provider, model) in self.attachment_models

    def _next(self, provider, model, prompt, attachments):
        if provider == "judge":
            self.justifier_prompts.append(prompt)
            if isinstance(self.justifier, Exception):
                raise self.justifier
            return self.justifier
        self.calls.append({"provider": provider, "model": model, "prompt": prompt, "attachments": attachments})
        script = self.scripts.get((provider, model))
        if not script:
            raise AssertionError(f"no scripted reply left for {provider}/{model}")
        item = script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def generate_response(self, provider, model, prompt):
        return self._next(provider, model, prompt, None)

    def generate_response_with_attachments(self, provider, model, prompt, attachments):
        return self._next(provider, model, prompt, list(attachments))

    def get_models(self):
        return [ModelInfo(provider="openai", name="gpt-4o", supports_images=True, supports_attachments=True)]


class MemoryPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.published: Dict[str, bytes] = {}

    def publish(self, payload, filename="justification.json"):
        if self.fail:
            raise InfrastructureError("pinning service unavailable")
        cid = f"bafy{len(self.published):04d}"
        self.published[cid] = payload if isinstance(payload, bytes) else str(payload).encode()
        return cid

    def record(self, cid):
        return json.loads(self.published[cid])


def make_config(data_dir, **overrides) -> Config:
    raw = {
        "data_dir": str(data_dir),
        "justifier": "judge:judge-model",
        "logging": {"level": "INFO", "interactions": False},
        "models": {"cards": []},
        "commitments": {"backend": "memory", "max_age_hours": 72},
        "ipfs": {"publisher": "local", "retries": 0},
    }
    raw.update(overrides)
    return Config(raw)


def bundle_zip(files: Dict[str, Any]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            if isinstance(content, (dict, list)):
                content = json.dumps(content)
            archive.writestr(name, content)
    return buffer.getvalue()


def bundle(query, outcomes=None, references=None, nodes=None, **manifest_fields) -> Dict[str, Any]:
    primary: Dict[str, Any] = {"query": query}
    if outcomes is not None:
        primary["outcomes"] = outcomes
    if references is not None:
        primary["references"] = references
    manifest: Dict[str, Any] = {"version": "1.0", "primary": {"filename": "primary_query.json"}}
    if nodes is not None:
        manifest["juryParameters"] = {"AI_NODES": nodes, "ITERATIONS": 1, "NUMBER_OF_OUTCOMES": len(outcomes or [1, 2])}
    manifest.update(manifest_fields)
    return {"manifest.json": manifest, "primary_query.json": primary}


class BundleFetcher:
    """Serves zipped bundles by identifier."""

    def __init__(self, bundles: Dict[str, Dict[str, Any]] | None = None, raw: Dict[str, bytes] | None = None) -> None:
        self.archives = {cid: bundle_zip(files) for cid, files in (bundles or {}).items()}
        self.archives.update(raw or {})
        self.fetched: List[str] = []

    def __call__(self, cid):
        self.fetched.append(cid)
        if cid not in self.archives:
            raise InfrastructureError(f"Unable to fetch {cid}")
        return self.archives[cid]
