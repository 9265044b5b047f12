"""
Session orchestrator - drives one live call from audio in to suggestions out.

Per final utterance, in this order and without awaiting anything:
1. append "Label: text" to history
2. queue a rolling-summary update
3. turn-boundary check (inquirer spoke last, responder speaks now) using
   role bindings as they stood before this utterance
4. bind roles
5. record the utterance as the last final one

Summary updates run one at a time on a per-session worker so a slow update
never overwrites a newer one. Suggestion runs are coalesced: at most one is
in flight and a trigger arriving meanwhile replaces any pending one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set, Tuple

from callassist.models import (
    ErrorMessage,
    ServerMessage,
    SummaryMessage,
    TranscriptEvent,
    TranscriptMessage,
    to_wire,
)
from callassist.orchestration.conversation_state import ConversationSnapshot, ConversationState
from callassist.orchestration.speaker_roles import SpeakerRegistry
from callassist.orchestration.suggestion_pipeline import SuggestionPipeline
from callassist.orchestration.summarizer import ConversationSummarizer
from callassist.rag.retriever import Retriever
from callassist.stt.audio_stream import AudioStream
from callassist.stt.normalizer import normalize_event

logger = logging.getLogger(__name__)

OnMessage = Callable[[dict], Awaitable[None]]
OnError = Callable[[str], Awaitable[None]]
OnClosed = Callable[[], Awaitable[None]]
SendFn = Callable[[dict], Awaitable[bool]]


@dataclass
class SessionOptions:
    """Per-session tunables, resolved from settings by the server."""
    initial_summary: str = "The conversation has just started."
    history_window: int = 6
    max_history_entries: int = 0
    kb_digest_chunks: int = 3
    audio_send_interval_ms: int = 20
    audio_idle_interval_ms: int = 10
    recognizer_close_timeout_s: float = 5.0


@dataclass
class SessionServices:
    """
    Process-wide collaborators shared by every session.

    recognizer_factory builds one streaming recognizer per session from the
    session's message, error and early-close callbacks (a DeepgramClient in
    production).
    """
    retriever: Retriever
    summarizer: ConversationSummarizer
    pipeline: SuggestionPipeline
    recognizer_factory: Callable[[OnMessage, OnError, OnClosed], object]


class SessionOrchestrator:
    """Owns all per-session state for one WebSocket connection."""

    def __init__(
        self,
        session_id: str,
        services: SessionServices,
        send: SendFn,
        options: Optional[SessionOptions] = None,
    ):
        """
        Args:
            session_id: Connection identifier (for logs)
            services: Shared retriever, LLM stages and recognizer factory
            send: Outbound sender taking a wire dict; returns False if not delivered
            options: Per-session tunables
        """
        self.session_id = session_id
        self.services = services
        self.send = send
        self.options = options or SessionOptions()

        self.audio_stream = AudioStream(
            send_interval_ms=self.options.audio_send_interval_ms,
            idle_interval_ms=self.options.audio_idle_interval_ms,
        )
        self.registry = SpeakerRegistry()
        self.state = ConversationState(
            initial_summary=self.options.initial_summary,
            history_window=self.options.history_window,
            max_entries=self.options.max_history_entries,
        )
        self.kb_digest = ""
        self.recognizer = None

        self._closed = False
        self._background_tasks: Set[asyncio.Task] = set()
        self._summary_queue: asyncio.Queue[Optional[Tuple[Optional[str], str]]] = asyncio.Queue()
        self._summary_task: Optional[asyncio.Task] = None
        self._pipeline_task: Optional[asyncio.Task] = None
        self._pending_snapshot: Optional[ConversationSnapshot] = None

        # Statistics
        self.triggers_fired = 0
        self.triggers_coalesced = 0

        logger.info(f"SessionOrchestrator initialized for session {session_id}")

    @property
    def closed(self) -> bool:
        return self._closed

    def launch(self) -> asyncio.Task:
        """Run start() in the background (audio keeps buffering meanwhile)."""
        return self._spawn(self.start())

    async def start(self) -> bool:
        """
        Compute the knowledge-base digest, then open the recognizer stream.

        Audio received before the recognizer is ready stays buffered.

        Returns:
            True if audio is streaming to the recognizer
        """
        if self._closed:
            return False

        self._ensure_summary_worker()
        await self._precompute_kb_digest()
        if self._closed:
            return False

        recognizer = self.services.recognizer_factory(
            self.handle_recognizer_message,
            self._handle_recognizer_error,
            self._handle_recognizer_closed,
        )
        self.recognizer = recognizer

        connected = await recognizer.connect()
        if not connected:
            logger.error(f"Recognizer unavailable for session {self.session_id}")
            self.audio_stream.abort()
            return False

        if self._closed:
            # Closed while connecting; nothing left to stream
            await recognizer.disconnect()
            return False

        recognizer.start_streaming(self.audio_stream)
        logger.info(f"Session {self.session_id} streaming audio to recognizer")
        return True

    async def _precompute_kb_digest(self):
        try:
            chunks = await self.services.retriever.overview_chunks(self.options.kb_digest_chunks)
            self.kb_digest = await self.services.summarizer.summarize_knowledge_base(chunks)
        except Exception as e:
            logger.warning(f"Knowledge-base digest failed for session {self.session_id}: {e}")
            self.kb_digest = ""

        if self.kb_digest:
            logger.info(f"Knowledge-base digest ready ({len(self.kb_digest)} chars)")

    def handle_audio(self, chunk: bytes) -> None:
        """Queue one binary audio frame from the client. Never blocks."""
        if self._closed:
            return
        self.audio_stream.append(chunk)

    async def handle_recognizer_message(self, raw: dict) -> None:
        """Recognizer callback: normalize a raw result and process it."""
        event = normalize_event(raw)
        if event is None:
            return
        await self.handle_transcript_event(event)

    async def handle_transcript_event(self, event: TranscriptEvent) -> None:
        """
        Relay a transcript to the client and, for finals, advance the
        conversation.
        """
        if self._closed:
            logger.debug(f"Dropping transcript after close: '{event.text[:40]}'")
            return

        label = self.registry.resolve_label(event.raw_speaker_tag)
        await self._send(TranscriptMessage(
            transcript=event.text,
            is_final=event.is_final,
            speaker=label,
        ))

        # close() may have run while the transcript was being sent
        if event.is_final and not self._closed:
            self._apply_final(label, event.text)

    def _apply_final(self, label: Optional[str], text: str) -> None:
        self.state.append_history(label, text)
        self._ensure_summary_worker()
        self._summary_queue.put_nowait((label, text))

        if self._is_turn_boundary(label):
            trigger = self.state.last_final_transcript
            logger.info(f"Turn boundary {self.state.last_final_speaker} -> {label}, trigger: '{trigger[:50]}'")
            self._schedule_pipeline(self.state.snapshot(self.kb_digest, trigger))

        self.registry.identify_roles(label)
        self.state.mark_final(label, text)

    def _is_turn_boundary(self, label: Optional[str]) -> bool:
        """Inquirer spoke the previous final utterance and the responder speaks this one."""
        inquirer = self.registry.inquirer_label
        responder = self.registry.responder_label
        if inquirer is None or responder is None:
            return False
        return (
            self.state.last_final_speaker == inquirer
            and label == responder
            and bool(self.state.last_final_transcript)
        )

    def _schedule_pipeline(self, snapshot: ConversationSnapshot) -> None:
        self.triggers_fired += 1
        if self._pipeline_task and not self._pipeline_task.done():
            if self._pending_snapshot is not None:
                self.triggers_coalesced += 1
                logger.info("Replacing pending suggestion trigger with a newer one")
            self._pending_snapshot = snapshot
            return
        self._pipeline_task = self._spawn(self._run_pipeline(snapshot))

    async def _run_pipeline(self, snapshot: ConversationSnapshot):
        while snapshot is not None:
            await self.services.pipeline.run(snapshot, self._send)
            snapshot, self._pending_snapshot = self._pending_snapshot, None

    def _ensure_summary_worker(self) -> None:
        if self._summary_task is None:
            self._summary_task = self._spawn(self._summary_loop())

    async def _summary_loop(self):
        while True:
            item = await self._summary_queue.get()
            try:
                if item is None:
                    break
                label, text = item
                summary = await self.services.summarizer.update_summary(self.state.summary, label, text)
                self.state.summary = summary
                await self._send(SummaryMessage(summary=summary))
            except Exception as e:
                logger.error(f"Summary worker error: {e}", exc_info=True)
            finally:
                self._summary_queue.task_done()

    async def _handle_recognizer_error(self, message: str):
        logger.error(f"Recognizer error for session {self.session_id}: {message}")
        await self._send(ErrorMessage(error=message))

    async def _handle_recognizer_closed(self):
        """Recognizer stream ended on its own; stop buffering audio for it."""
        if self._closed:
            return
        logger.warning(
            f"Recognizer stream for session {self.session_id} ended early - "
            f"dropping further audio ({self.audio_stream.pending} buffered chunks discarded)"
        )
        self.audio_stream.abort()

    async def _send(self, message: ServerMessage) -> bool:
        """Send to the client unless the session is closed."""
        if self._closed:
            logger.debug(f"Session closed - dropping {message.__class__.__name__}")
            return False
        return await self.send(to_wire(message))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def close(self):
        """
        End the session: stop audio, let the recognizer flush, stop the
        summary worker. In-flight LLM work finishes but its results are
        dropped.
        """
        if self._closed:
            return
        self._closed = True
        self._pending_snapshot = None
        self.audio_stream.close()
        if self._summary_task is not None:
            self._summary_queue.put_nowait(None)

        if self.recognizer is not None:
            await self.recognizer.wait_closed(timeout=self.options.recognizer_close_timeout_s)
            await self.recognizer.disconnect()

        logger.info(
            f"Session {self.session_id} closed: {len(self.state)} utterances, "
            f"{self.triggers_fired} triggers ({self.triggers_coalesced} coalesced)"
        )

    async def drain(self):
        """Wait until queued summary updates and suggestion runs have finished."""
        if self._summary_task is not None and not self._summary_task.done():
            await self._summary_queue.join()
            if self._closed:
                await self._summary_task
        while self._pipeline_task is not None and not self._pipeline_task.done():
            await self._pipeline_task
