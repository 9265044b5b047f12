"""
Per-session conversation orchestration: speaker roles, conversation state,
rolling summaries and the two-stage suggestion pipeline.
"""

from .conversation_state import ConversationSnapshot, ConversationState
from .session import SessionOptions, SessionOrchestrator, SessionServices
from .speaker_roles import SpeakerRegistry
from .suggestion_pipeline import SuggestionPipeline
from .summarizer import ConversationSummarizer

__all__ = [
    "ConversationSnapshot",
    "ConversationState",
    "SessionOptions",
    "SessionOrchestrator",
    "SessionServices",
    "SpeakerRegistry",
    "SuggestionPipeline",
    "ConversationSummarizer",
]
