"""
Pydantic models for conversation data and WebSocket messages.
Outbound message shapes match what the call dashboard consumes.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


YesNo = Literal["yes", "no"]


# ============================================================================
# Conversation data
# ============================================================================

class TranscriptEvent(BaseModel):
    """
    One normalized recognizer result.
    Ephemeral: consumed once to update conversation state.
    """
    model_config = ConfigDict(frozen=True)

    text: str = Field(
        ...,
        min_length=1,
        description="Recognized text (never empty)"
    )
    is_final: bool = Field(
        ...,
        description="Provider's own final flag; partials may still change"
    )
    raw_speaker_tag: Optional[str] = Field(
        None,
        description="Opaque provider speaker tag, None when unattributed"
    )


class CorpusEntry(BaseModel):
    """A pre-embedded knowledge-base chunk."""
    model_config = ConfigDict(frozen=True)

    chunk: str
    vector: List[float]


class EvaluationResult(BaseModel):
    """
    Stage 1 output: should a suggestion card be shown, and does it need
    knowledge-base passages?
    """
    ready_for_suggestions: YesNo = "no"
    is_rag_required: YesNo = "no"
    user_context: str = ""

    @field_validator("ready_for_suggestions", "is_rag_required", mode="before")
    @classmethod
    def coerce_yes_no(cls, v) -> str:
        """Accept booleans and loose casing from the model; anything else is 'no'."""
        if isinstance(v, bool):
            return "yes" if v else "no"
        if isinstance(v, str) and v.strip().lower() == "yes":
            return "yes"
        return "no"

    @field_validator("user_context", mode="before")
    @classmethod
    def coerce_context(cls, v) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    @property
    def wants_suggestions(self) -> bool:
        return self.ready_for_suggestions == "yes"

    @property
    def wants_rag(self) -> bool:
        return self.is_rag_required == "yes"


class SuggestionCard(BaseModel):
    """Stage 2 output: one short, actionable card for the responder."""
    trigger: str = Field(
        ...,
        description="Inquirer phrase that triggered the card"
    )
    title: str = Field(
        ...,
        description="Short title (under 8 words)"
    )
    points: List[str] = Field(
        ...,
        min_length=1,
        description="One-liner tips, never empty"
    )


# ============================================================================
# Server → Client Messages
# ============================================================================

class TranscriptMessage(BaseModel):
    """
    Sent for every recognizer update, partial or final.
    """
    type: Literal["transcript"] = "transcript"
    transcript: str
    is_final: bool = Field(..., serialization_alias="isFinal")
    speaker: Optional[str] = None


class SummaryMessage(BaseModel):
    """
    Sent after every final utterance once the rolling summary is updated.
    """
    type: Literal["summary"] = "summary"
    summary: str


class LLMEvalData(BaseModel):
    """Stage 1 verdict plus the inputs it was made on."""
    ready_for_suggestions: YesNo
    is_rag_required: YesNo
    user_context: str
    trigger: str
    summary: str
    history: str


class LLMEvalMessage(BaseModel):
    """
    Sent after every stage 1 evaluation, accepted or rejected.
    """
    type: Literal["llm_eval"] = "llm_eval"
    llm: LLMEvalData


class SuggestionsMessage(BaseModel):
    """
    Sent after a stage 2 generation.
    """
    type: Literal["suggestions"] = "suggestions"
    suggestions: List[SuggestionCard]


class ErrorMessage(BaseModel):
    """
    Sent only for errors that end the session's transcription.
    """
    type: Literal["error"] = "error"
    error: str


ServerMessage = (
    TranscriptMessage |
    SummaryMessage |
    LLMEvalMessage |
    SuggestionsMessage |
    ErrorMessage
)


def to_wire(message: ServerMessage) -> dict:
    """Serialize an outbound message using its wire field names."""
    return message.model_dump(by_alias=True)
