"""Sequential calls against each panel entry for one round."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging
import time

from arbiter.aggregation import average_vectors
from arbiter.audit import AuditLog
from arbiter.parsing import parse_or_fallback, strip_think_blocks
from arbiter.query import Attachment, PanelEntry, QueryObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryOutcome:
    """Every call made to one panel entry within one round."""

    entry: PanelEntry
    vectors: Tuple[Tuple[int, ...], ...]
    average: Tuple[int, ...]
    justifications: Tuple[str, ...]
    fallbacks: int = 0

    def labelled_justifications(self) -> List[str]:
        return [f"From model {self.entry.model}:\n{text}" for text in self.justifications]


class QueryOrchestrator:
    def __init__(self, gateway, audit: Optional[AuditLog] = None) -> None:
        self.gateway = gateway
        self.audit = audit or AuditLog(None)

    def preflight(self, query: QueryObject) -> None:
        for entry in query.models:
            self.gateway.check(entry.provider, entry.model)

    def _call(self, entry: PanelEntry, prompt: str, attachments: Sequence[Attachment]) -> str:
        if attachments and self.gateway.supports_attachments(entry.provider, entry.model):
            return self.gateway.generate_response_with_attachments(entry.provider, entry.model, prompt, attachments)
        return self.gateway.generate_response(entry.provider, entry.model, prompt)

    def query_entry(
        self,
        entry: PanelEntry,
        prompt: str,
        attachments: Sequence[Attachment],
        outcome_count: int,
        iteration: int = 1,
    ) -> EntryOutcome:
        vectors: List[Tuple[int, ...]] = []
        justifications: List[str] = []
        fallbacks = 0
        for call in range(1, entry.count + 1):
            logger.info("Calling %s (iteration %d, call %d/%d)", entry.label, iteration, call, entry.count)
            self.audit.log("model.prompt", {
                "provider": entry.provider,
                "model": entry.model,
                "iteration": iteration,
                "call": call,
                "attachments": len(attachments),
                "prompt": prompt,
            })
            start = time.perf_counter()
            raw = strip_think_blocks(self._call(entry, prompt, attachments))
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info("%s call %d/%d finished in %.0fms", entry.label, call, entry.count, duration_ms)
            self.audit.log("model.response", {
                "provider": entry.provider,
                "model": entry.model,
                "iteration": iteration,
                "call": call,
                "duration_ms": round(duration_ms, 1),
                "response": raw,
            })

            parsed = parse_or_fallback(raw, outcome_count)
            if parsed.fallback:
                fallbacks += 1
            vectors.append(tuple(parsed.vector))
            if parsed.justification:
                justifications.append(parsed.justification)

        return EntryOutcome(
            entry=entry,
            vectors=tuple(vectors),
            average=tuple(average_vectors(vectors)),
            justifications=tuple(justifications),
            fallbacks=fallbacks,
        )

    def query_panel(self, query: QueryObject, prompt: str, iteration: int = 1) -> List[EntryOutcome]:
        """Evaluate panel entries in configured order; a ProviderError aborts the round."""
        return [
            self.query_entry(entry, prompt, query.attachments, query.outcome_count, iteration)
            for entry in query.models
        ]
