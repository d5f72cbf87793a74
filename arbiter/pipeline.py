"""Iterated panel arbitration with a final consolidated justification."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import logging
import time

from arbiter.aggregation import weighted_mean
from arbiter.audit import AuditLog
from arbiter.config import Config, JustifierSpec
from arbiter.errors import ProviderError
from arbiter.models.gateway import ProviderGateway
from arbiter.orchestrator import EntryOutcome, QueryOrchestrator
from arbiter.parsing import strip_think_blocks
from arbiter.prompts import JUSTIFIER_ERROR, ModelResponse, justifier_prompt, round_prompt
from arbiter.query import ArbitrationResult, QueryObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationState:
    """Outputs of one round plus every response gathered so far."""

    number: int
    entries: Tuple[EntryOutcome, ...]
    aggregate: Tuple[int, ...]
    responses: Tuple[ModelResponse, ...]

    @property
    def justifications(self) -> List[str]:
        return [text for entry in self.entries for text in entry.labelled_justifications()]


class ArbiterPipeline:
    def __init__(
        self,
        config: Config,
        gateway: Optional[ProviderGateway] = None,
        audit: Optional[AuditLog] = None,
        justifier: Optional[JustifierSpec] = None,
    ) -> None:
        self.config = config
        self.gateway = gateway or ProviderGateway.from_config(config)
        self.audit = audit or AuditLog(config.interactions_log_path)
        self.justifier = justifier or config.justifier
        self.orchestrator = QueryOrchestrator(self.gateway, self.audit)

    def run_iteration(self, query: QueryObject, number: int, previous: Tuple[ModelResponse, ...]) -> IterationState:
        prompt = round_prompt(query.prompt, query.outcomes or None, previous)
        entries = tuple(self.orchestrator.query_panel(query, prompt, number))
        aggregate = weighted_mean([entry.average for entry in entries], [entry.entry.weight for entry in entries])
        responses = previous + tuple(
            ModelResponse(
                provider=entry.entry.provider,
                model=entry.entry.model,
                vector=list(entry.average),
                justification=text,
            )
            for entry in entries
            for text in entry.justifications
        )
        self.audit.log("iteration.aggregate", {
            "iteration": number,
            "aggregate": aggregate,
            "fallbacks": sum(entry.fallbacks for entry in entries),
        })
        logger.info("Iteration %d/%d aggregate: %s", number, query.iterations, aggregate)
        return IterationState(number=number, entries=entries, aggregate=tuple(aggregate), responses=responses)

    def justify(self, state: IterationState) -> str:
        """Ask the justifier for one narrative; failures yield a placeholder."""
        prompt = justifier_prompt(state.aggregate, state.justifications)
        provider, model = self.justifier.provider, self.justifier.model
        self.audit.log("justifier.prompt", {"provider": provider, "model": model, "prompt": prompt})
        start = time.perf_counter()
        try:
            text = strip_think_blocks(self.gateway.generate_response(provider, model, prompt))
        except ProviderError as exc:
            logger.error("Justifier %s failed: %s", self.justifier, exc.message)
            self.audit.log("justifier.response", {"provider": provider, "model": model, "error": exc.message})
            return JUSTIFIER_ERROR
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("Justifier %s finished in %.0fms", self.justifier, duration_ms)
        self.audit.log("justifier.response", {
            "provider": provider,
            "model": model,
            "duration_ms": round(duration_ms, 1),
            "response": text,
        })
        return text

    def run(self, query: QueryObject) -> ArbitrationResult:
        query.validate()
        self.orchestrator.preflight(query)
        logger.info(
            "Arbitrating over %d outcome(s) with %d panel entr%s for %d iteration(s)",
            query.outcome_count,
            len(query.models),
            "y" if len(query.models) == 1 else "ies",
            query.iterations,
        )
        previous: Tuple[ModelResponse, ...] = ()
        state: IterationState | None = None
        for number in range(1, query.iterations + 1):
            state = self.run_iteration(query, number, previous)
            previous = state.responses
        assert state is not None
        justification = self.justify(state)
        return ArbitrationResult.from_vector(query.outcome_labels, state.aggregate, justification)

    def discover_models(self) -> List[Dict[str, Any]]:
        return [info.to_dict() for info in self.gateway.get_models()]
