"""
Scenario tests for SessionOrchestrator.

Tests turn-boundary triggering, summary ordering, coalescing and the
send guard, with fakes for every provider.
"""

import asyncio
import json

import pytest
from websockets.exceptions import ConnectionClosedError

from callassist.models import SuggestionCard, SuggestionsMessage, TranscriptEvent
from callassist.orchestration.session import SessionOptions, SessionOrchestrator, SessionServices
from callassist.stt.deepgram import DeepgramClient


class FakeRetriever:
    def __init__(self, chunks=("Product overview",)):
        self.chunks = list(chunks)

    async def overview_chunks(self, k=3):
        return self.chunks[:k]


class FakeSummarizer:
    """Appends each utterance so ordering is visible in the result."""

    def __init__(self, digest="KB digest"):
        self.digest = digest
        self.digest_calls = []

    async def update_summary(self, current_summary, speaker_label, utterance):
        await asyncio.sleep(0)
        return f"{current_summary} | {speaker_label}: {utterance}"

    async def summarize_knowledge_base(self, chunks):
        self.digest_calls.append(list(chunks))
        return self.digest


class FakePipeline:
    """Records snapshots; optionally blocks until released."""

    def __init__(self, blocked=False):
        self.snapshots = []
        self.gate = asyncio.Event()
        if not blocked:
            self.gate.set()

    async def run(self, snapshot, emit):
        self.snapshots.append(snapshot)
        await self.gate.wait()
        card = SuggestionCard(trigger=snapshot.trigger, title="Card", points=["Offer help"])
        await emit(SuggestionsMessage(suggestions=[card]))
        return card


class FakeRecognizer:
    def __init__(self, on_message, on_error, on_closed, connect_ok=True):
        self.on_message = on_message
        self.on_error = on_error
        self.on_closed = on_closed
        self.connect_ok = connect_ok
        self.streaming_from = None
        self.wait_closed_calls = 0
        self.disconnected = False

    async def connect(self):
        if not self.connect_ok:
            await self.on_error("Failed to start transcription: connection refused")
            return False
        return True

    def start_streaming(self, audio_stream):
        self.streaming_from = audio_stream

    async def wait_closed(self, timeout=5.0):
        self.wait_closed_calls += 1

    async def disconnect(self):
        self.disconnected = True

    async def end_early(self, messages=()):
        """Deliver raw results, then end the stream without an error."""
        for message in messages:
            await self.on_message(message)
        await self.on_closed()


class Harness:
    """Orchestrator wired to fakes, capturing outbound messages."""

    def __init__(self, blocked_pipeline=False, connect_ok=True, make_recognizer=None):
        self.sent = []
        self.on_send = None
        self.recognizers = []
        self.pipeline = FakePipeline(blocked=blocked_pipeline)
        self.summarizer = FakeSummarizer()

        def recognizer_factory(on_message, on_error, on_closed):
            if make_recognizer is not None:
                recognizer = make_recognizer(on_message, on_error, on_closed)
            else:
                recognizer = FakeRecognizer(on_message, on_error, on_closed, connect_ok=connect_ok)
            self.recognizers.append(recognizer)
            return recognizer

        services = SessionServices(
            retriever=FakeRetriever(),
            summarizer=self.summarizer,
            pipeline=self.pipeline,
            recognizer_factory=recognizer_factory,
        )
        self.orchestrator = SessionOrchestrator(
            "test-session",
            services,
            send=self.send,
            options=SessionOptions(initial_summary="start"),
        )

    async def send(self, message):
        self.sent.append(message)
        if self.on_send is not None:
            await self.on_send(message)
        return True

    async def say(self, tag, text, is_final=True):
        await self.orchestrator.handle_transcript_event(
            TranscriptEvent(text=text, is_final=is_final, raw_speaker_tag=tag)
        )

    async def finish(self):
        """Let queued work complete, then close the session."""
        await self.orchestrator.drain()
        await self.orchestrator.close()
        await self.orchestrator.drain()

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]

    @property
    def triggers(self):
        return [s.trigger for s in self.pipeline.snapshots]


A, B = "0", "1"


def partial_result(text, speaker=0):
    return {
        "type": "Results",
        "is_final": False,
        "channel": {"alternatives": [{"transcript": text, "words": [{"speaker": speaker}]}]},
    }


class DroppingSocket:
    """Deepgram socket that yields results, then closes abnormally."""

    def __init__(self, messages):
        self.messages = list(messages)
        self.sent = []
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        raise ConnectionClosedError(None, None)

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


class TestTurnBoundary:
    """Test when the suggestion pipeline fires."""

    @pytest.mark.asyncio
    async def test_fires_once_on_inquirer_to_responder(self):
        """Test A, A, B, A, B fires exactly once, on 'price too high' -> B."""
        h = Harness()
        await h.say(A, "hi")
        await h.say(A, "I have a question")
        await h.say(B, "sure go ahead")
        await h.say(A, "price too high")
        await h.say(B, "we can discount")
        await h.finish()

        assert h.triggers == ["price too high"]
        assert h.orchestrator.registry.inquirer_label == "Speaker 1"
        assert h.orchestrator.registry.responder_label == "Speaker 2"

    @pytest.mark.asyncio
    async def test_snapshot_contents(self):
        """Test the pipeline sees the digest, window and trigger from trigger time."""
        h = Harness()
        await h.orchestrator.start()
        for tag, text in [(A, "hi"), (B, "hello"), (A, "price too high"), (B, "we can discount")]:
            await h.say(tag, text)
        await h.finish()

        snapshot = h.pipeline.snapshots[0]
        assert snapshot.kb_digest == "KB digest"
        assert snapshot.trigger == "price too high"
        assert snapshot.history[-2:] == ("Speaker 1: price too high", "Speaker 2: we can discount")

    @pytest.mark.asyncio
    async def test_partial_never_triggers(self):
        """Test a responder partial does not count as a turn boundary."""
        h = Harness()
        await h.say(A, "hi")
        await h.say(B, "hello")
        await h.say(A, "price too high")
        await h.say(B, "we can", is_final=False)
        await h.finish()

        assert h.triggers == []
        assert len(h.orchestrator.state) == 3

    @pytest.mark.asyncio
    async def test_responder_to_inquirer_does_not_trigger(self):
        """Test only inquirer -> responder transitions fire."""
        h = Harness()
        await h.say(A, "hi")
        await h.say(B, "hello")
        await h.say(A, "question")
        await h.finish()

        assert h.triggers == []

    @pytest.mark.asyncio
    async def test_unattributed_speech_never_triggers(self):
        """Test speech without a speaker tag neither binds nor fires."""
        h = Harness()
        await h.say(A, "hi")
        await h.say(None, "mumble")
        await h.say(B, "hello")
        await h.say(A, "price too high")
        await h.say(None, "noise")
        await h.finish()

        assert h.triggers == []
        assert h.orchestrator.registry.responder_label == "Speaker 2"
        assert "Unknown: noise" in h.orchestrator.state.get_history()

    @pytest.mark.asyncio
    async def test_coalescing_keeps_latest_pending(self):
        """Test at most one run is in flight and newer triggers replace pending ones."""
        h = Harness(blocked_pipeline=True)
        await h.say(A, "hi")
        await h.say(B, "hello")
        for question in ("q1", "q2", "q3"):
            await h.say(A, question)
            await h.say(B, "answer")

        await asyncio.sleep(0)
        assert h.triggers == ["q1"]

        h.pipeline.gate.set()
        await h.finish()

        assert h.triggers == ["q1", "q3"]
        assert h.orchestrator.triggers_fired == 3
        assert h.orchestrator.triggers_coalesced == 1


class TestOutboundMessages:
    """Test transcript and summary delivery."""

    @pytest.mark.asyncio
    async def test_transcript_wire_shape(self):
        """Test partial and final transcripts are relayed with stable labels."""
        h = Harness()
        await h.say(A, "hel", is_final=False)
        await h.say(A, "hello")
        await h.say(None, "um", is_final=False)
        await h.finish()

        assert h.of_type("transcript") == [
            {"type": "transcript", "transcript": "hel", "isFinal": False, "speaker": "Speaker 1"},
            {"type": "transcript", "transcript": "hello", "isFinal": True, "speaker": "Speaker 1"},
            {"type": "transcript", "transcript": "um", "isFinal": False, "speaker": None},
        ]

    @pytest.mark.asyncio
    async def test_summary_per_final_in_order(self):
        """Test one summary per final utterance, applied in arrival order."""
        h = Harness()
        await h.say(A, "one")
        await h.say(B, "two", is_final=False)
        await h.say(B, "two")
        await h.say(A, "three")
        await h.finish()

        summaries = [m["summary"] for m in h.of_type("summary")]
        assert len(summaries) == 3
        expected = "start | Speaker 1: one | Speaker 2: two | Speaker 1: three"
        assert summaries[-1] == expected
        assert h.orchestrator.state.summary == expected

    @pytest.mark.asyncio
    async def test_recognizer_message_routing(self):
        """Test raw recognizer results are normalized before processing."""
        h = Harness()
        await h.orchestrator.handle_recognizer_message({
            "type": "Results",
            "is_final": True,
            "channel": {"alternatives": [{"transcript": "hello", "words": [{"speaker": 0}]}]},
        })
        await h.orchestrator.handle_recognizer_message({"type": "Metadata"})
        await h.finish()

        assert h.of_type("transcript")[0]["speaker"] == "Speaker 1"
        assert len(h.of_type("transcript")) == 1


class TestLifecycle:
    """Test start, failure and close behavior."""

    @pytest.mark.asyncio
    async def test_start_streams_buffered_audio(self):
        """Test audio received before start is kept and streamed."""
        h = Harness()
        h.orchestrator.handle_audio(b"\x00\x01")
        assert h.orchestrator.audio_stream.pending == 1

        assert await h.orchestrator.start() is True

        recognizer = h.recognizers[0]
        assert recognizer.streaming_from is h.orchestrator.audio_stream
        assert h.orchestrator.kb_digest == "KB digest"
        assert h.summarizer.digest_calls == [["Product overview"]]
        await h.finish()

    @pytest.mark.asyncio
    async def test_connection_failure_sends_error(self):
        """Test a failed recognizer connection emits exactly one error event."""
        h = Harness(connect_ok=False)
        assert await h.orchestrator.start() is False

        assert h.of_type("error") == [
            {"type": "error", "error": "Failed to start transcription: connection refused"}
        ]
        assert h.recognizers[0].streaming_from is None
        await h.finish()

    @pytest.mark.asyncio
    async def test_close_flushes_recognizer(self):
        """Test close ends audio and waits for the recognizer before disconnecting."""
        h = Harness()
        await h.orchestrator.start()
        await h.orchestrator.close()

        recognizer = h.recognizers[0]
        assert h.orchestrator.closed
        assert h.orchestrator.audio_stream.closed
        assert recognizer.wait_closed_calls == 1
        assert recognizer.disconnected
        await h.orchestrator.drain()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Test closing twice is harmless."""
        h = Harness()
        await h.orchestrator.start()
        await h.orchestrator.close()
        await h.orchestrator.close()
        assert h.recognizers[0].wait_closed_calls == 1
        await h.orchestrator.drain()

    @pytest.mark.asyncio
    async def test_no_sends_after_close(self):
        """Test late results are dropped once the session is closed."""
        h = Harness()
        await h.say(A, "hi")
        await h.orchestrator.drain()
        sent_before = len(h.sent)

        await h.orchestrator.close()
        await h.say(A, "late")
        h.orchestrator.handle_audio(b"late audio")

        assert len(h.sent) == sent_before
        assert h.orchestrator.audio_stream.pending == 0
        await h.orchestrator.drain()

    @pytest.mark.asyncio
    async def test_start_after_close_does_not_connect(self):
        """Test a session closed during setup never opens a recognizer."""
        h = Harness()
        await h.orchestrator.close()
        assert await h.orchestrator.start() is False
        assert h.recognizers == []

    @pytest.mark.asyncio
    async def test_in_flight_suggestion_dropped_after_close(self):
        """Test a suggestion finishing after close is not sent."""
        h = Harness(blocked_pipeline=True)
        for tag, text in [(A, "hi"), (B, "hello"), (A, "price too high"), (B, "let me check")]:
            await h.say(tag, text)
        await asyncio.sleep(0)
        assert h.triggers == ["price too high"]

        await h.orchestrator.close()
        h.pipeline.gate.set()
        await h.orchestrator.drain()

        assert h.of_type("suggestions") == []

    @pytest.mark.asyncio
    async def test_suggestions_delivered(self):
        """Test pipeline output reaches the client while the session is open."""
        h = Harness()
        for tag, text in [(A, "hi"), (B, "hello"), (A, "price too high"), (B, "let me check")]:
            await h.say(tag, text)
        await h.finish()

        suggestions = h.of_type("suggestions")
        assert len(suggestions) == 1
        assert suggestions[0]["suggestions"][0]["trigger"] == "price too high"

    @pytest.mark.asyncio
    async def test_close_during_final_transcript_send(self):
        """Test a final whose relay overlaps close() does not advance the conversation."""
        h = Harness()
        for tag, text in [(A, "hi"), (B, "hello"), (A, "price too high")]:
            await h.say(tag, text)
        await h.orchestrator.drain()

        async def close_on_final(message):
            if message["type"] == "transcript" and message["isFinal"]:
                await h.orchestrator.close()

        h.on_send = close_on_final
        await h.say(B, "let me check")
        await asyncio.wait_for(h.orchestrator.drain(), timeout=1.0)

        assert h.triggers == []
        assert len(h.orchestrator.state) == 3
        assert h.orchestrator._summary_queue.empty()
        assert len(h.of_type("summary")) == 3


class TestRecognizerLoss:
    """Test audio handling once the recognizer stream is gone."""

    @pytest.mark.asyncio
    async def test_failed_connect_drops_audio(self):
        """Test audio is discarded, not buffered, when the recognizer never connects."""
        h = Harness(connect_ok=False)
        h.orchestrator.handle_audio(b"\x00\x01")
        assert await h.orchestrator.start() is False

        for _ in range(1000):
            h.orchestrator.handle_audio(b"\x00" * 320)

        assert h.orchestrator.audio_stream.pending == 0
        assert len(h.of_type("error")) == 1
        await h.finish()

    @pytest.mark.asyncio
    async def test_early_close_after_partials(self):
        """Test an early close after partial results is silent and still cleaned up."""
        h = Harness()
        await h.orchestrator.start()
        recognizer = h.recognizers[0]

        await recognizer.end_early([partial_result("we can"), partial_result("we can offer")])
        for _ in range(1000):
            h.orchestrator.handle_audio(b"\x00" * 320)
        await h.finish()

        assert [m["isFinal"] for m in h.of_type("transcript")] == [False, False]
        assert h.of_type("error") == []
        assert h.of_type("summary") == []
        assert h.triggers == []
        assert len(h.orchestrator.state) == 0
        assert h.orchestrator.audio_stream.pending == 0
        assert recognizer.wait_closed_calls == 1
        assert recognizer.disconnected

    @pytest.mark.asyncio
    async def test_deepgram_stream_dropped_mid_call(self, monkeypatch):
        """Test a Deepgram stream closing abnormally stops audio buffering."""
        socket = DroppingSocket([json.dumps(partial_result("hel"))])

        async def fake_connect(url, **kwargs):
            return socket

        monkeypatch.setattr("callassist.stt.deepgram.connect", fake_connect)

        def make_deepgram(on_message, on_error, on_closed):
            return DeepgramClient(
                api_key="test-key",
                on_message=on_message,
                on_error=on_error,
                on_closed=on_closed,
            )

        h = Harness(make_recognizer=make_deepgram)
        assert await h.orchestrator.start() is True
        recognizer = h.recognizers[0]

        await asyncio.wait_for(recognizer._receive_task, timeout=1.0)
        await asyncio.wait_for(recognizer._send_task, timeout=1.0)
        for _ in range(1000):
            h.orchestrator.handle_audio(b"\x00" * 320)

        assert not recognizer.is_connected
        assert h.orchestrator.audio_stream.pending == 0
        assert h.of_type("error") == []
        assert h.of_type("transcript")[0]["transcript"] == "hel"

        await h.finish()
        assert socket.closed
        assert recognizer.is_closing
