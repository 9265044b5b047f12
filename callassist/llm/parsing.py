"""
Tolerant parsing of JSON objects embedded in free-form model output.

Models wrap JSON in prose or code fences; we take the first balanced
top-level {...} object (brace counting skips braces inside JSON strings)
and never raise.
"""

import json
import logging
from typing import Optional

from callassist.models import EvaluationResult, SuggestionCard

logger = logging.getLogger(__name__)

PARSE_ERROR_CONTEXT = "Could not parse LLM response."
PARSE_ERROR_POINT = "Could not parse LLM response"
DEFAULT_CARD_TITLE = "Suggestion Card"
DEFAULT_CARD_POINT = "No points available"


def extract_json_block(text: str) -> Optional[str]:
    """
    Return the first balanced top-level {...} block in text.

    Args:
        text: Raw model output

    Returns:
        The block including its braces, or None if there is no balanced block
    """
    start = text.find("{") if text else -1
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_json_object(text: str) -> Optional[dict]:
    """
    Parse the first balanced JSON object in text.

    Returns:
        Parsed dict, or None if missing or not valid JSON
    """
    block = extract_json_block(text)
    if block is None:
        return None
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error in LLM output: {e}")
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_evaluation(text: str) -> EvaluationResult:
    """
    Parse a stage 1 evaluation.

    Falls back to a "no" verdict when no object can be parsed.
    """
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("Could not parse evaluation response - defaulting to 'no'")
        return fallback_evaluation(PARSE_ERROR_CONTEXT)
    return EvaluationResult.model_validate(parsed)


def fallback_evaluation(reason: str) -> EvaluationResult:
    return EvaluationResult(
        ready_for_suggestions="no",
        is_rag_required="no",
        user_context=reason,
    )


def _coerce_points(value) -> list:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(p).strip() for p in value if p is not None and str(p).strip()]


def parse_suggestion_card(text: str, fallback_trigger: str) -> SuggestionCard:
    """
    Parse a stage 2 suggestion card, defaulting any missing field.

    Args:
        text: Raw model output
        fallback_trigger: Trigger utterance used when the model omits one

    Returns:
        A complete SuggestionCard (points never empty)
    """
    parsed = extract_json_object(text)
    if parsed is None:
        logger.warning("Could not parse suggestion response - using fallback card")
        return fallback_card(fallback_trigger, PARSE_ERROR_POINT)

    trigger = parsed.get("trigger")
    title = parsed.get("title")
    points = _coerce_points(parsed.get("points"))

    return SuggestionCard(
        trigger=trigger if isinstance(trigger, str) and trigger.strip() else fallback_trigger,
        title=title if isinstance(title, str) and title.strip() else DEFAULT_CARD_TITLE,
        points=points or [DEFAULT_CARD_POINT],
    )


def fallback_card(trigger: str, reason: str) -> SuggestionCard:
    return SuggestionCard(
        trigger=trigger,
        title=DEFAULT_CARD_TITLE,
        points=[reason],
    )
