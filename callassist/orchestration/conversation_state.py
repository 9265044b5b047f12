"""
Conversation state for one call session.

Holds the "Label: text" history, the rolling summary and the last final
utterance. Detached tasks never read this object directly; they receive a
ConversationSnapshot taken when they are launched.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

UNATTRIBUTED_LABEL = "Unknown"


@dataclass(frozen=True)
class ConversationSnapshot:
    """Immutable prompt inputs for one evaluation/suggestion run."""
    kb_digest: str
    summary: str
    history: Tuple[str, ...]
    trigger: str

    @property
    def history_text(self) -> str:
        return "\n".join(self.history)


class ConversationState:
    """
    Mutable per-session conversation record.

    History is append-only. It is unbounded unless max_entries is set, in
    which case the oldest entries are discarded; prompts only ever use the
    last history_window entries.
    """

    def __init__(
        self,
        initial_summary: str = "The conversation has just started.",
        history_window: int = 6,
        max_entries: int = 0,
    ) -> None:
        """
        Args:
            initial_summary: Rolling summary before the first utterance
            history_window: Number of recent entries used for prompting
            max_entries: Storage cap for history (0 = unbounded)
        """
        self.history_window = history_window
        self.summary = initial_summary
        self.last_final_speaker: Optional[str] = None
        self.last_final_transcript: Optional[str] = None
        self._history: Deque[str] = deque(maxlen=max_entries or None)

    def append_history(self, label: Optional[str], text: str) -> str:
        """
        Add a final utterance to history.

        Returns:
            The stored "Label: text" entry
        """
        entry = f"{label or UNATTRIBUTED_LABEL}: {text}"
        self._history.append(entry)
        return entry

    def mark_final(self, label: Optional[str], text: str) -> None:
        """Record the last final utterance (read by the next turn-boundary check)."""
        self.last_final_speaker = label
        self.last_final_transcript = text

    def recent_history(self) -> List[str]:
        """Last history_window entries, oldest first."""
        if self.history_window <= 0:
            return []
        return list(self._history)[-self.history_window:]

    def get_history(self) -> List[str]:
        """Full stored history."""
        return list(self._history)

    def snapshot(self, kb_digest: str, trigger: str) -> ConversationSnapshot:
        """Freeze the prompt inputs for a detached evaluation run."""
        return ConversationSnapshot(
            kb_digest=kb_digest,
            summary=self.summary,
            history=tuple(self.recent_history()),
            trigger=trigger,
        )

    def __len__(self) -> int:
        return len(self._history)
