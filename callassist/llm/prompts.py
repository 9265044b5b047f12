"""
Prompt templates for the call assistant.

All builders are pure functions of their inputs so that a detached task can
render its prompt from an immutable conversation snapshot.
"""

from typing import List, Sequence

CHUNK_SEPARATOR = "\n---\n"

KB_DIGEST_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes knowledge base context "
    "for sales and support agents."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes conversations between two people. "
    "Always return only the updated summary."
)

SUGGESTION_SYSTEM_PROMPT = """You assist a live conversation between two people:

- The "inquirer" is a customer, stakeholder or user who may be frustrated, confused or asking questions.
- The "responder" is a support or sales agent who relies on you for one quick, helpful Suggestion Card.

Task:
- Return exactly 1 Suggestion Card as JSON, short and easy to read during a live call.

Format (return only this JSON, no other text):
{
  "trigger": "exact phrase from the inquirer that triggered this suggestion",
  "title": "Short title (under 8 words)",
  "points": [
    "1-liner action tip (under 12 words)",
    "1-liner tone tip (under 12 words)",
    "1-liner fact or doc reference if helpful (under 12 words)"
  ]
}

Rules:
- 2-3 points, each under 12 words.
- Lead with verbs such as "Acknowledge", "Offer", "Clarify", "Mention", "Share", "Ask", "Defer".
- Never return more than one card.
- Avoid generic tips like "be helpful" or "respond professionally".

Example:
{
  "trigger": "Your tool completely missed 2 SLAs last month. We lost a huge contract.",
  "title": "Calm SLA Escalation Response",
  "points": [
    "Acknowledge SLA breach, no deflection",
    "Use steady tone: 'I get how serious this is'",
    "Offer SLA report review + escalation path"
  ]
}"""


def format_history(history: Sequence[str]) -> str:
    return "\n".join(history)


def build_kb_digest_prompt(chunks: List[str]) -> str:
    return (
        "Summarize the following knowledge base context in 2-3 sentences "
        f"for a sales/support agent:\n\n{CHUNK_SEPARATOR.join(chunks)}"
    )


def build_summary_prompt(current_summary: str, speaker_label: str, utterance: str) -> str:
    """
    Prompt for a full replacement of the rolling summary.

    Speaker labels are mechanical ("Speaker 1"); the model is asked to infer
    who is the customer and who is the agent from content.
    """
    speaker = speaker_label or "Unknown speaker"
    return f"""Conversation summary so far:
{current_summary}

New utterance:
{speaker}: {utterance}

Instructions:
- Infer which speaker is the customer and which is the agent from what they say.
- Use the roles "Customer" and "Agent" instead of "Speaker 1"/"Speaker 2".
- If unsure, make your best guess from context.
- Return only the updated summary, using "Customer:" and "Agent:" for each turn.
"""


def build_evaluation_prompt(
    kb_digest: str,
    summary: str,
    history: Sequence[str],
    trigger: str,
) -> str:
    """Stage 1: decide whether a card is warranted and whether it needs RAG."""
    return f"""You are monitoring a live conversation between a customer and an agent.

Product and Sales Context (from knowledge base):
{kb_digest}

Conversation Summary:
{summary}

Recent Conversation History:
{format_history(history)}

Customer's Latest Message:
{trigger}

Instructions:
- Evaluate the customer's latest message and decide:
  1. Is a suggestion card needed? (yes/no)
  2. Are knowledge base passages required to help? (yes/no)
  3. If a card is needed, summarize the customer's intent as "user_context".
- Cards can be useful both with and without knowledge base facts (tone, process, next steps).
- If the message is off-topic, incomplete or not actionable, set both to "no".

Respond ONLY in this JSON format:
{{
  "ready_for_suggestions": "yes" or "no",
  "is_rag_required": "yes" or "no",
  "user_context": "[short summary of the customer's question or concern]"
}}
"""


def build_suggestion_prompt(
    kb_digest: str,
    summary: str,
    history: Sequence[str],
    trigger: str,
    rag_chunks: List[str],
) -> str:
    """Stage 2: generate one card, with retrieved passages when provided."""
    rag_section = ""
    if rag_chunks:
        rag_section = f"Relevant Knowledge Base (RAG):\n{CHUNK_SEPARATOR.join(rag_chunks)}\n\n"

    return f"""Product and Sales Context (from knowledge base):
{kb_digest}

{rag_section}Conversation Summary:
{summary}

Recent Conversation History:
{format_history(history)}

User Question (Trigger Phrase):
{trigger}
"""
