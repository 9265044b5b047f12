"""
Speech-to-text: Deepgram live client, paced audio source, result normalizer.
"""

from .audio_stream import AudioStream, END_OF_STREAM
from .deepgram import DeepgramClient
from .normalizer import normalize_event, extract_speaker_tag

__all__ = [
    "AudioStream",
    "END_OF_STREAM",
    "DeepgramClient",
    "normalize_event",
    "extract_speaker_tag",
]
