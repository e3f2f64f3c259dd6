"""
Answer extraction from completed invocation payloads.

The Squad API does not return answers in one fixed shape. Each shape is
handled by a small named strategy; strategies are tried in order and the
first one that yields text wins.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

logger = logging.getLogger(__name__)

NO_CONTENT = "No response content available from the agent."
UNKNOWN_ERROR = "Unknown error occurred"


@dataclass(frozen=True)
class ExtractionStrategy:
    """One way of reading an answer out of a payload."""
    name: str
    extract: Callable[[Dict[str, Any]], Optional[str]]

    def __call__(self, payload: Dict[str, Any]) -> Optional[str]:
        return self.extract(payload)


def _to_text(value: Any) -> Optional[str]:
    """Strings pass through, containers are serialized, anything else is rejected."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return None


def _message(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("message")
    return value if isinstance(value, str) and value else None


def _answer(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("answer")
    return value if isinstance(value, str) and value else None


def _nested_answer(payload: Dict[str, Any]) -> Optional[str]:
    value = payload.get("answer")
    if not isinstance(value, dict):
        return None
    nested = value.get("answer")
    return nested if isinstance(nested, str) and nested else None


def _result(payload: Dict[str, Any]) -> Optional[str]:
    return _to_text(payload.get("result"))


def _first_field(payload: Dict[str, Any]) -> Optional[str]:
    for key, value in payload.items():
        if key == "status":
            continue
        text = _to_text(value)
        if text:
            return text
    return None


STRATEGIES: Sequence[ExtractionStrategy] = (
    ExtractionStrategy("message", _message),
    ExtractionStrategy("answer", _answer),
    ExtractionStrategy("answer.answer", _nested_answer),
    ExtractionStrategy("result", _result),
    ExtractionStrategy("first_field", _first_field),
)


def extract_answer(
    raw_payload: Any,
    strategies: Sequence[ExtractionStrategy] = STRATEGIES,
) -> str:
    """
    Extract the canonical answer text from a completed invocation payload.

    Returns NO_CONTENT when no strategy finds anything. That is a soft
    outcome, not an error.
    """
    if not isinstance(raw_payload, dict):
        logger.warning(f"Cannot extract answer from {type(raw_payload).__name__} payload")
        return NO_CONTENT

    for strategy in strategies:
        answer = strategy(raw_payload)
        if answer:
            logger.debug(f"Answer extracted via '{strategy.name}' ({len(answer)} chars)")
            return answer

    logger.warning(f"No answer found in payload keys: {list(raw_payload.keys())}")
    return NO_CONTENT


def extract_error(raw_payload: Any) -> str:
    """Extract a human-readable reason from an upstream `error` payload."""
    if not isinstance(raw_payload, dict):
        return UNKNOWN_ERROR

    error = raw_payload.get("error")
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message

    message = raw_payload.get("message")
    if isinstance(message, str) and message:
        return message

    return UNKNOWN_ERROR
