"""Prompt material for arbitration rounds and the final justification."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence
import json

from arbiter.parsing import fallback_vector
from arbiter.query import SCORE_TOTAL

FEEDBACK_TEMPLATE = (
    "Below are the responses from all models in the previous iteration. Consider these responses "
    "when making your evaluation.  Try to reflect on the responses and gain insight into the scenario:\n\n"
    "Previous Responses:\n{previous}\n\n"
    "Please provide your updated evaluation based on both the original scenario and these previous responses."
)

JUSTIFIER_TEMPLATE = (
    "Using the aggregated decision vector {vector}, and considering the following justifications "
    "from individual models:\n\n{justifications}\n\n"
    "Provide a comprehensive justification for the result."
)

JUSTIFIER_ERROR = "Error generating final justification."


@dataclass(frozen=True)
class ModelResponse:
    """One parsed call, kept for feedback to later rounds."""

    provider: str
    model: str
    vector: List[int]
    justification: str

    def format(self) -> str:
        return (
            f"From {self.provider} - {self.model}:\n"
            f"Score: {json.dumps(self.vector)}\n"
            f"Justification: {self.justification}"
        )


def descending_example(outcome_count: int) -> List[int]:
    triangle = outcome_count * (outcome_count + 1) // 2
    vector = [SCORE_TOTAL * (outcome_count - i) // triangle for i in range(outcome_count)]
    vector[-1] += SCORE_TOTAL - sum(vector)
    return vector


def pre_prompt(outcomes: Sequence[str] | None = None) -> str:
    """Response-format instructions placed ahead of every round's prompt."""
    count = len(outcomes) if outcomes else 2
    uniform = fallback_vector(count)
    varied = descending_example(count)
    listing = ""
    if outcomes:
        numbered = "\n".join(f"{i + 1}. {outcome}" for i, outcome in enumerate(outcomes))
        mapping = "\n".join(
            f"- score[{i}] represents the likelihood of: {outcome}" for i, outcome in enumerate(outcomes)
        )
        listing = (
            f"IMPORTANT: You must evaluate ALL of the following {count} outcomes:\n{numbered}\n\n"
            f"Your score array MUST contain exactly {count} elements in the specified order, where:\n{mapping}\n\n"
            f"You MUST provide a score for EACH of these {count} outcomes. Do not omit any outcomes.\n"
        )
    first = outcomes[0] if outcomes else "Option A"
    second = outcomes[1] if outcomes and len(outcomes) > 1 else "Option B"
    return (
        "You are tasked with evaluating the following request based on the provided text\n"
        "and optional attachments, which may include images and other files. You must respond with\n"
        "a JSON object containing exactly two fields: 'score' and 'justification'.\n\n"
        f"{listing}\n"
        f"The 'score' field must be an array of {count} integers representing the likelihood of each outcome,\n"
        f"ensuring they sum to {SCORE_TOTAL:,}. Each outcome must receive a score, even if it's low.\n\n"
        "The 'justification' field must be a string explaining your scoring rationale for ALL outcomes.\n\n"
        "RESPONSE FORMAT:\n"
        "{\n"
        f'  "score": [{", ".join(str(v) for v in uniform)}],\n'
        f'  "justification": "Explaining likelihood for ALL outcomes: First outcome ({first}) scored X '
        f'because... Second outcome ({second}) scored Y because... etc."\n'
        "}\n\n"
        "REQUIREMENTS:\n"
        "- Response must be valid JSON\n"
        f"- Score array must contain exactly {count} integers\n"
        f"- Score values must sum to {SCORE_TOTAL:,}\n"
        f"- Justification must explain the reasoning for ALL {count} scores\n\n"
        f"Here's an example of uneven distribution across {count} outcomes:\n"
        "{\n"
        f'  "score": [{", ".join(str(v) for v in varied)}],\n'
        '  "justification": "First outcome scored highest because... Second outcome lower because... '
        f'[continue for all {count} outcomes]"\n'
        "}\n\n"
        "Evaluate the following request and provide your response in the specified JSON format:\n"
    )


def feedback_block(previous: Iterable[ModelResponse]) -> str:
    formatted = "\n\n".join(response.format() for response in previous)
    return FEEDBACK_TEMPLATE.format(previous=formatted)


def round_prompt(base_prompt: str, outcomes: Sequence[str] | None, previous: Sequence[ModelResponse]) -> str:
    """Pre-prompt, scenario, and (after the first round) every earlier response."""
    prompt = f"{pre_prompt(outcomes)}\n\n{base_prompt}"
    if previous:
        prompt = f"{prompt}\n\n{feedback_block(previous)}"
    return prompt


def justifier_prompt(vector: Sequence[int], justifications: Iterable[str]) -> str:
    return JUSTIFIER_TEMPLATE.format(
        vector=json.dumps(list(vector)),
        justifications="\n\n".join(justifications),
    )
