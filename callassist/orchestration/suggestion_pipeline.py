"""
Two-stage suggestion pipeline.

Stage 1 (evaluate) decides whether the inquirer's latest message warrants a
card and whether knowledge-base passages are needed. Stage 2 (generate)
produces exactly one card, optionally grounded on retrieved passages.

Every run works from an immutable ConversationSnapshot and never raises:
provider and parse failures degrade to "no" verdicts or fallback cards.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from callassist.llm.openai_client import OpenAIClient
from callassist.llm.parsing import (
    fallback_card,
    fallback_evaluation,
    parse_evaluation,
    parse_suggestion_card,
)
from callassist.llm.prompts import (
    SUGGESTION_SYSTEM_PROMPT,
    build_evaluation_prompt,
    build_suggestion_prompt,
)
from callassist.models import (
    EvaluationResult,
    LLMEvalData,
    LLMEvalMessage,
    ServerMessage,
    SuggestionCard,
    SuggestionsMessage,
)
from callassist.orchestration.conversation_state import ConversationSnapshot
from callassist.rag.retriever import Retriever

logger = logging.getLogger(__name__)

Emit = Callable[[ServerMessage], Awaitable[bool]]


class SuggestionPipeline:
    """Evaluate, then (maybe) retrieve and generate one suggestion card."""

    def __init__(
        self,
        llm: OpenAIClient,
        retriever: Retriever,
        evaluation_model: str = "gpt-4o-mini",
        suggestion_model: str = "gpt-4o",
        rag_top_k: int = 3,
    ):
        self.llm = llm
        self.retriever = retriever
        self.evaluation_model = evaluation_model
        self.suggestion_model = suggestion_model
        self.rag_top_k = rag_top_k

    async def evaluate(self, snapshot: ConversationSnapshot) -> EvaluationResult:
        """
        Stage 1 verdict for the snapshot's trigger utterance.

        Returns:
            Parsed result; a "no" verdict on provider or parse error
        """
        prompt = build_evaluation_prompt(
            snapshot.kb_digest,
            snapshot.summary,
            snapshot.history,
            snapshot.trigger,
        )
        try:
            raw = await self.llm.complete(
                system_prompt="You are a helpful assistant.",
                user_prompt=prompt,
                model=self.evaluation_model,
                max_tokens=256,
                temperature=0.2,
            )
        except Exception as e:
            logger.warning(f"Evaluation call failed: {e}")
            return fallback_evaluation(f"LLM error: {e}")

        result = parse_evaluation(raw)
        logger.info(
            f"Evaluation: ready={result.ready_for_suggestions}, "
            f"rag={result.is_rag_required}, trigger='{snapshot.trigger[:50]}'"
        )
        return result

    async def generate(self, snapshot: ConversationSnapshot, rag_required: bool) -> SuggestionCard:
        """
        Stage 2: produce exactly one card.

        Retrieval only runs when rag_required; a retrieval failure just
        means no passages.

        Returns:
            Parsed card, or a fallback card carrying the error
        """
        rag_chunks: List[str] = []
        if rag_required:
            rag_chunks = await self.retriever.top_k(snapshot.trigger, self.rag_top_k)

        prompt = build_suggestion_prompt(
            snapshot.kb_digest,
            snapshot.summary,
            snapshot.history,
            snapshot.trigger,
            rag_chunks,
        )
        try:
            raw = await self.llm.complete(
                system_prompt=SUGGESTION_SYSTEM_PROMPT,
                user_prompt=prompt,
                model=self.suggestion_model,
                max_tokens=512,
                temperature=0.2,
            )
        except Exception as e:
            logger.warning(f"Suggestion call failed: {e}")
            return fallback_card(snapshot.trigger, f"LLM error: {e}")

        card = parse_suggestion_card(raw, fallback_trigger=snapshot.trigger)
        logger.info(f"Generated card '{card.title}' ({len(rag_chunks)} RAG chunks)")
        return card

    async def run(self, snapshot: ConversationSnapshot, emit: Emit) -> Optional[SuggestionCard]:
        """
        Full pipeline for one trigger.

        Always emits an llm_eval message; emits a suggestions message only
        when stage 1 says yes.

        Args:
            snapshot: Prompt inputs frozen at trigger time
            emit: Outbound sender (drops silently once the session is closed)

        Returns:
            The emitted card, or None
        """
        try:
            evaluation = await self.evaluate(snapshot)
            await emit(LLMEvalMessage(llm=LLMEvalData(
                ready_for_suggestions=evaluation.ready_for_suggestions,
                is_rag_required=evaluation.is_rag_required,
                user_context=evaluation.user_context,
                trigger=snapshot.trigger,
                summary=snapshot.summary,
                history=snapshot.history_text,
            )))

            if not evaluation.wants_suggestions:
                return None

            card = await self.generate(snapshot, rag_required=evaluation.wants_rag)
            await emit(SuggestionsMessage(suggestions=[card]))
            return card

        except Exception as e:
            logger.error(f"Suggestion pipeline failed: {e}", exc_info=True)
            return None
