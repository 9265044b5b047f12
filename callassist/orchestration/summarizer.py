"""
LLM-backed summaries: the rolling conversation summary and the per-session
knowledge-base digest. Both are fail-soft and never raise.
"""

import logging
from typing import List

from callassist.llm.openai_client import OpenAIClient
from callassist.llm.prompts import (
    KB_DIGEST_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    build_kb_digest_prompt,
    build_summary_prompt,
)

logger = logging.getLogger(__name__)


class ConversationSummarizer:
    """Produces summaries with a single LLM call each."""

    def __init__(self, llm: OpenAIClient, model: str):
        """
        Args:
            llm: Shared LLM client
            model: Model name for summary calls
        """
        self.llm = llm
        self.model = model

    async def update_summary(
        self,
        current_summary: str,
        speaker_label: str,
        utterance: str,
    ) -> str:
        """
        Fold a new utterance into the rolling summary.

        The result replaces the summary entirely; it is not appended.

        Args:
            current_summary: Summary so far
            speaker_label: Mechanical speaker label ("Speaker 1") or None
            utterance: New final utterance

        Returns:
            Updated summary, or current_summary unchanged on provider error
        """
        try:
            return await self.llm.complete(
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                user_prompt=build_summary_prompt(current_summary, speaker_label, utterance),
                model=self.model,
                max_tokens=1024,
                temperature=0.5,
            )
        except Exception as e:
            logger.warning(f"Failed to update conversation summary: {e}")
            return current_summary

    async def summarize_knowledge_base(self, chunks: List[str]) -> str:
        """
        Condense overview chunks into a short digest for prompts.

        Returns:
            2-3 sentence digest, or "" when there are no chunks or on error
        """
        if not chunks:
            return ""

        try:
            return await self.llm.complete(
                system_prompt=KB_DIGEST_SYSTEM_PROMPT,
                user_prompt=build_kb_digest_prompt(chunks),
                model=self.model,
                max_tokens=256,
                temperature=0.2,
            )
        except Exception as e:
            logger.warning(f"Error generating knowledge-base digest: {e}")
            return ""
