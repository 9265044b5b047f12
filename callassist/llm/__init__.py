"""
LLM access: OpenAI client, prompt templates and tolerant output parsing.
"""

from .openai_client import OpenAIClient, LLMError
from .parsing import (
    extract_json_block,
    extract_json_object,
    parse_evaluation,
    parse_suggestion_card,
    fallback_evaluation,
    fallback_card,
)

__all__ = [
    "OpenAIClient",
    "LLMError",
    "extract_json_block",
    "extract_json_object",
    "parse_evaluation",
    "parse_suggestion_card",
    "fallback_evaluation",
    "fallback_card",
]
