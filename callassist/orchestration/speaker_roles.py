"""
Speaker role resolver.

Maps opaque recognizer speaker tags to stable "Speaker N" labels and binds
the two conversational roles:
- inquirer: speaker of the first final utterance
- responder: first later final speaker who is not the inquirer

Bindings are one-shot. A misidentified pair (e.g. the agent happened to
speak first) is never corrected within a session, and a third speaker
never takes over a role.
"""

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

LABEL_PREFIX = "Speaker "


class SpeakerRegistry:
    """Per-session speaker labels and role bindings."""

    def __init__(self) -> None:
        self._labels: Dict[str, str] = {}
        self._inquirer_label: Optional[str] = None
        self._responder_label: Optional[str] = None

    def resolve_label(self, raw_tag: Optional[str]) -> Optional[str]:
        """
        Get or allocate the stable label for a raw speaker tag.

        Labels are allocated in first-seen order starting at "Speaker 1"
        and never reassigned.

        Args:
            raw_tag: Provider speaker tag, or None for unattributed speech

        Returns:
            Stable label, or None when raw_tag is None
        """
        if raw_tag is None:
            return None

        label = self._labels.get(raw_tag)
        if label is None:
            label = f"{LABEL_PREFIX}{len(self._labels) + 1}"
            self._labels[raw_tag] = label
            logger.info(f"New speaker tag '{raw_tag}' labelled {label}")
        return label

    def identify_roles(self, label: Optional[str]) -> None:
        """
        Bind roles from a final utterance's speaker label.

        Call once per final event. Unattributed speech binds nothing.
        """
        if label is None or self.roles_bound:
            return

        if self._inquirer_label is None:
            self._inquirer_label = label
            logger.info(f"Inquirer identified: {label}")
        elif label != self._inquirer_label:
            self._responder_label = label
            logger.info(f"Responder identified: {label} (inquirer={self._inquirer_label})")

    @property
    def inquirer_label(self) -> Optional[str]:
        return self._inquirer_label

    @property
    def responder_label(self) -> Optional[str]:
        return self._responder_label

    @property
    def roles_bound(self) -> bool:
        """True once both roles are fixed for the session."""
        return self._inquirer_label is not None and self._responder_label is not None

    @property
    def speaker_count(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return (
            f"SpeakerRegistry(speakers={self.speaker_count}, "
            f"inquirer={self._inquirer_label}, responder={self._responder_label})"
        )
