"""
Transcript normalizer.

Adapts raw Deepgram live-streaming messages into TranscriptEvent objects.
Only "Results" messages carry transcripts; everything else (Metadata,
SpeechStarted, UtteranceEnd) normalizes to None.

Critical rule: partial vs final comes strictly from the provider's
is_final flag. No re-classification happens here.
"""

import logging
from collections import Counter
from typing import Optional

from callassist.models import TranscriptEvent

logger = logging.getLogger(__name__)


def extract_speaker_tag(words: list) -> Optional[str]:
    """
    Pick the speaker tag for a result from its diarized words.

    The dominant speaker wins; ties go to whoever spoke first in the result.

    Args:
        words: Deepgram word objects, each optionally carrying "speaker"

    Returns:
        Speaker tag as a string, or None if no word is attributed
    """
    speakers = [w.get("speaker") for w in words if isinstance(w, dict)]
    speakers = [s for s in speakers if s is not None]
    if not speakers:
        return None
    # most_common keeps first-seen order among equal counts
    tag, _ = Counter(speakers).most_common(1)[0]
    return str(tag)


def normalize_event(raw: dict) -> Optional[TranscriptEvent]:
    """
    Convert one recognizer message into a TranscriptEvent.

    Args:
        raw: Decoded JSON message from the recognizer

    Returns:
        TranscriptEvent, or None if the message has no usable text
    """
    if not isinstance(raw, dict) or raw.get("type", "Results") != "Results":
        return None

    channel = raw.get("channel") or {}
    alternatives = channel.get("alternatives") or []
    if not alternatives:
        return None

    alternative = alternatives[0]
    text = (alternative.get("transcript") or "").strip()
    if not text:
        return None

    event = TranscriptEvent(
        text=text,
        is_final=bool(raw.get("is_final", False)),
        raw_speaker_tag=extract_speaker_tag(alternative.get("words") or []),
    )
    logger.debug(
        f"Normalized {'final' if event.is_final else 'partial'} "
        f"[speaker={event.raw_speaker_tag}]: '{text[:60]}'"
    )
    return event
