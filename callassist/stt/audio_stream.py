"""
Paced, cancellable audio source feeding the recognizer.

The WebSocket receiver appends raw PCM chunks (never blocks); the send loop
pulls them in order with a small delay after each chunk and a slightly
longer poll when idle, capping the recognizer input to roughly real time.
"""

import asyncio
import logging
from typing import AsyncIterator

logger = logging.getLogger(__name__)

# Empty chunk marks end of stream so the provider can close cleanly
END_OF_STREAM = b""


class AudioStream:
    """
    Append-only audio buffer consumed strictly in order.

    Closing does not drop audio: chunks already buffered are still yielded,
    followed by a single END_OF_STREAM marker.
    """

    def __init__(self, send_interval_ms: int = 20, idle_interval_ms: int = 10):
        """
        Args:
            send_interval_ms: Delay after each chunk handed to the consumer
            idle_interval_ms: Poll delay while the buffer is empty
        """
        self.send_interval_ms = send_interval_ms
        self.idle_interval_ms = idle_interval_ms
        self._queue: asyncio.Queue[bytes] = asyncio.Queue()
        self._closed = False
        self._chunks_appended = 0
        self._chunks_consumed = 0

    def append(self, chunk: bytes) -> None:
        """Buffer an audio chunk. Ignored after close or when empty."""
        if self._closed:
            logger.debug("Audio chunk received after close - dropping")
            return
        if not chunk:
            return
        self._queue.put_nowait(bytes(chunk))
        self._chunks_appended += 1

    def close(self) -> None:
        """Stop accepting audio; the consumer drains what is buffered."""
        if not self._closed:
            self._closed = True
            logger.debug(f"Audio stream closed with {self._queue.qsize()} chunks pending")

    def abort(self) -> None:
        """Close and discard buffered audio; used once nothing will consume it."""
        self.close()
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.debug(f"Audio stream aborted, {dropped} chunks discarded")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of buffered chunks not yet consumed."""
        return self._queue.qsize()

    async def chunks(self) -> AsyncIterator[bytes]:
        """
        Yield buffered chunks with pacing until closed and drained.

        Yields:
            Audio chunks in append order, then END_OF_STREAM once
        """
        while not self._closed or not self._queue.empty():
            try:
                chunk = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                await asyncio.sleep(self.idle_interval_ms / 1000)
                continue

            self._chunks_consumed += 1
            yield chunk
            await asyncio.sleep(self.send_interval_ms / 1000)

        logger.debug(f"Audio stream drained after {self._chunks_consumed} chunks")
        yield END_OF_STREAM

    def __repr__(self) -> str:
        status = "closed" if self._closed else "open"
        return f"AudioStream(pending={self.pending}, status={status})"
