"""Decode decision vectors from free-form model output."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import json
import logging
import math
import re

from arbiter.errors import ParseError
from arbiter.query import DEFAULT_OUTCOME_COUNT, SCORE_TOTAL

logger = logging.getLogger(__name__)

THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
FENCED_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
OBJECT_FRAGMENT = re.compile(r"\{.*?\}", re.DOTALL)
LEGACY_SCORE = re.compile(r"SCORE:\s*([0-9,\s]+)", re.IGNORECASE)
LEGACY_JUSTIFICATION = re.compile(r"JUSTIFICATION:\s*(.*?)(?:$|SCORE:)", re.IGNORECASE | re.DOTALL)
SCORE_ARRAY = re.compile(r'"score"\s*:\s*\[([\d\s,]+)\]')
JUSTIFICATION_FIELD = re.compile(r'"justification"\s*:\s*"?(.*?)"?\s*(?:,\s*"[A-Za-z_]+"\s*:|\}\s*$|$)', re.DOTALL)

LLM_ERROR_PREFIX = "LLM_ERROR: "


@dataclass(frozen=True)
class ParsedResponse:
    vector: List[int]
    justification: str
    fallback: bool = False


def strip_think_blocks(text: str) -> str:
    return THINK_BLOCK.sub("", text or "").strip()


def fallback_vector(outcome_count: int | None = None) -> List[int]:
    """Uniform vector over ``outcome_count`` slots with the remainder on slot 0."""
    count = outcome_count or DEFAULT_OUTCOME_COUNT
    base = SCORE_TOTAL // count
    vector = [base] * count
    vector[0] += SCORE_TOTAL - base * count
    return vector


def _has_fields(candidate: Any) -> bool:
    return isinstance(candidate, dict) and "score" in candidate and "justification" in candidate


def _loads(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _extract_with_regex(text: str) -> Optional[Dict[str, Any]]:
    """Recover score and justification from JSON that does not decode, usually unescaped quotes."""
    score_match = SCORE_ARRAY.search(text)
    if not score_match:
        return None
    scores = [int(part) for part in score_match.group(1).split(",") if part.strip().isdigit()]
    if not scores:
        return None
    justification = ""
    start = text.find('"justification"')
    if start != -1:
        colon = text.find(":", start)
        end = text.rfind("}")
        if colon != -1:
            raw = text[colon + 1:end if end > colon else len(text)].strip()
            if raw.startswith('"'):
                raw = raw[1:]
            if raw.endswith('"'):
                raw = raw[:-1]
            justification = raw.replace('\\"', '"').replace("\\\\", "\\").strip()
    if not justification:
        match = JUSTIFICATION_FIELD.search(text)
        if match:
            justification = match.group(1).strip()
    return {"score": scores, "justification": justification}


def _direct(text: str) -> Optional[Dict[str, Any]]:
    trimmed = text.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return None
    parsed = _loads(trimmed)
    return parsed if _has_fields(parsed) else None


def _fenced(text: str) -> Optional[Dict[str, Any]]:
    match = FENCED_BLOCK.search(text)
    if not match:
        return None
    body = match.group(1).strip()
    return _loads(body) or _extract_with_regex(body)


def _fragments(text: str) -> Optional[Dict[str, Any]]:
    for fragment in OBJECT_FRAGMENT.findall(text):
        parsed = _loads(fragment)
        if _has_fields(parsed):
            return parsed
        extracted = _extract_with_regex(fragment)
        if _has_fields(extracted):
            return extracted
    return None


def _legacy(text: str) -> Optional[Dict[str, Any]]:
    score_match = LEGACY_SCORE.search(text)
    if not score_match:
        return None
    scores = [int(part) for part in score_match.group(1).split(",") if part.strip().isdigit()]
    justification_match = LEGACY_JUSTIFICATION.search(text)
    justification = justification_match.group(1).strip() if justification_match else ""
    return {"score": scores, "justification": justification}


STRATEGIES = (
    ("direct", _direct),
    ("fenced", _fenced),
    ("fragment", _fragments),
    ("legacy", _legacy),
    ("regex", _extract_with_regex),
)


def _validate(candidate: Dict[str, Any], outcome_count: int | None) -> ParsedResponse:
    scores = candidate.get("score")
    justification = candidate.get("justification")
    if not isinstance(scores, list):
        raise ParseError("Score must be an array of numbers")
    if not isinstance(justification, str):
        raise ParseError("Justification must be a string")
    vector: List[int] = []
    for value in scores:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ParseError("All scores must be valid numbers")
        if isinstance(value, float) and not math.isfinite(value):
            raise ParseError("All scores must be finite numbers")
        if value < 0 or value != int(value):
            raise ParseError("All scores must be non-negative integers")
        vector.append(int(value))
    if outcome_count is not None and len(vector) != outcome_count:
        raise ParseError(
            f"Score array length ({len(vector)}) does not match outcomes length ({outcome_count})"
        )
    total = sum(vector)
    if total != SCORE_TOTAL:
        raise ParseError(f"Scores must sum to {SCORE_TOTAL:,} (got {total})")
    return ParsedResponse(vector=vector, justification=justification)


def parse_decision(text: str, outcome_count: int | None = None) -> ParsedResponse:
    """Extract a decision vector and justification, raising ParseError on failure."""
    cleaned = strip_think_blocks(text)
    if not cleaned:
        raise ParseError("Empty model response")
    for name, strategy in STRATEGIES:
        candidate = strategy(cleaned)
        if candidate is None:
            continue
        logger.debug("Model response matched %s strategy", name)
        return _validate(candidate, outcome_count)
    raise ParseError("Could not extract valid JSON response from model output")


def parse_or_fallback(text: str, outcome_count: int | None = None) -> ParsedResponse:
    """Like parse_decision, but a failure degrades to the uniform fallback vector."""
    try:
        return parse_decision(text, outcome_count)
    except ParseError as exc:
        logger.warning("Falling back to uniform vector: %s (raw=%r)", exc.message, (text or "")[:200])
        justification = ""
        # Keep whatever justification the model did supply.
        for _, strategy in STRATEGIES:
            candidate = strategy(strip_think_blocks(text))
            if candidate and isinstance(candidate.get("justification"), str) and candidate["justification"].strip():
                justification = candidate["justification"]
                break
        if not justification:
            justification = f"{LLM_ERROR_PREFIX}{text}"
        return ParsedResponse(vector=fallback_vector(outcome_count), justification=justification, fallback=True)
