"""
Deepgram live streaming STT client with speaker diarization.

Key settings:
- Uses /v1/listen with interim_results=true (partial + final results)
- diarize=true: every word carries a speaker index
- Audio is pulled from a paced AudioStream; the end-of-stream marker is
  translated into Deepgram's CloseStream control message so the provider
  flushes pending finals before closing the socket
"""

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from callassist.stt.audio_stream import END_OF_STREAM, AudioStream

logger = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


class DeepgramClient:
    """
    Manages one streaming connection to Deepgram for a call session.

    Features:
    - Raw result messages handed to a single async callback, in order
    - Paced audio send loop fed by the session's AudioStream
    - Early/abnormal stream close treated as transient (logged, not raised)
      and announced via on_closed
    - KeepAlive sent while no audio is flowing so idle streams stay open
    - Connection failures and provider error frames reported via on_error
    """

    def __init__(
        self,
        api_key: str,
        on_message: Callable[[dict], Awaitable[None]],
        on_error: Optional[Callable[[str], Awaitable[None]]] = None,
        on_closed: Optional[Callable[[], Awaitable[None]]] = None,
        model: str = "nova-3",
        language: str = "en-US",
        encoding: str = "linear16",
        sample_rate: int = 8000,
        keepalive_interval_s: float = 5.0,
    ):
        """
        Initialize Deepgram client.

        Args:
            api_key: Deepgram API key
            on_message: Callback for every decoded provider message
            on_error: Optional callback for fatal errors (connection, error frames)
            on_closed: Optional callback when the stream ends before disconnect()
            model: Deepgram model name
            language: Language code
            encoding: Audio encoding of the raw frames
            sample_rate: Sample rate of the raw frames in Hz
            keepalive_interval_s: Idle seconds before a KeepAlive is sent
        """
        self.api_key = api_key
        self.on_message = on_message
        self.on_error = on_error
        self.on_closed = on_closed
        self.model = model
        self.language = language
        self.encoding = encoding
        self.sample_rate = sample_rate
        self.keepalive_interval_s = keepalive_interval_s

        self.ws: Optional[ClientConnection] = None
        self.is_connected = False
        self.is_closing = False
        self._audio_chunks_sent = 0
        self._keepalives_sent = 0
        self._last_send_at = 0.0
        self._close_stream_sent = False
        self._receive_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None

    def build_url(self) -> str:
        """Build the listen URL with transcription options."""
        params = {
            "model": self.model,
            "language": self.language,
            "encoding": self.encoding,
            "sample_rate": self.sample_rate,
            "channels": 1,
            "interim_results": "true",
            "diarize": "true",
            "punctuate": "true",
            "smart_format": "true",
        }
        return f"{DEEPGRAM_LISTEN_URL}?{urlencode(params)}"

    async def connect(self) -> bool:
        """
        Establish WebSocket connection to Deepgram and start receiving.

        Returns:
            True if connection successful, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected to Deepgram")
            return True

        url = self.build_url()
        try:
            self.ws = await connect(
                url,
                additional_headers={"Authorization": f"Token {self.api_key}"},
                ping_interval=10,
                ping_timeout=5,
            )
        except Exception as e:
            logger.error(f"Failed to connect to Deepgram: {e}")
            if self.on_error:
                await self.on_error(f"Failed to start transcription: {e}")
            return False

        self.is_connected = True
        self._audio_chunks_sent = 0
        self._last_send_at = time.monotonic()
        logger.info(f"Connected to Deepgram (model={self.model}, sample_rate={self.sample_rate})")

        self._receive_task = asyncio.create_task(self._receive_loop())
        return True

    def start_streaming(self, audio_stream: AudioStream) -> None:
        """
        Start pulling audio from the stream and sending it to Deepgram.

        Args:
            audio_stream: Session audio source; closing it ends the stream
        """
        if not self.is_connected:
            logger.warning("Cannot stream audio: not connected to Deepgram")
            return
        if self._send_task and not self._send_task.done():
            logger.warning("Audio send loop already running")
            return
        self._send_task = asyncio.create_task(self._send_loop(audio_stream))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    async def wait_closed(self, timeout: float = 5.0) -> None:
        """
        Wait for Deepgram to flush its final results and close the stream.

        Args:
            timeout: Seconds to wait before giving up (the caller disconnects)
        """
        tasks = [t for t in (self._send_task, self._receive_task) if t]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(f"Deepgram did not close within {timeout}s - forcing disconnect")

    async def disconnect(self):
        """Close the Deepgram connection and stop all background loops."""
        self.is_closing = True
        self.is_connected = False

        if self.ws:
            try:
                await self.ws.close()
            except Exception as e:
                logger.warning(f"Error during Deepgram disconnect: {e}")

        for task in (self._send_task, self._keepalive_task, self._receive_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        logger.info(
            f"Disconnected from Deepgram ({self._audio_chunks_sent} audio chunks, "
            f"{self._keepalives_sent} keepalives sent)"
        )

    async def _send_loop(self, audio_stream: AudioStream):
        """Forward paced audio chunks, then CloseStream at end of stream."""
        try:
            async for chunk in audio_stream.chunks():
                if not self.ws or not self.is_connected:
                    logger.debug("Deepgram connection gone - stopping audio send loop")
                    break

                if chunk == END_OF_STREAM:
                    await self.ws.send(json.dumps({"type": "CloseStream"}))
                    self._close_stream_sent = True
                    logger.info(f"Sent CloseStream after {self._audio_chunks_sent} audio chunks")
                    break

                await self.ws.send(chunk)
                self._last_send_at = time.monotonic()
                self._audio_chunks_sent += 1
                if self._audio_chunks_sent == 1:
                    logger.info(f"First audio chunk sent to Deepgram: {len(chunk)} bytes")
                elif self._audio_chunks_sent % 500 == 0:
                    logger.debug(f"Audio chunks sent to Deepgram: {self._audio_chunks_sent}")

        except asyncio.CancelledError:
            logger.info("Audio send loop cancelled")
        except ConnectionClosed as e:
            if not self.is_closing:
                logger.warning(f"Deepgram stream closed while sending audio: {e}")
        except Exception as e:
            logger.error(f"Error sending audio to Deepgram: {e}")

    async def _keepalive_loop(self):
        """
        Send KeepAlive whenever no audio has gone out for a full interval.

        Deepgram closes streams that receive nothing for about 10 seconds,
        e.g. while the caller is on mute. Stops once CloseStream is sent.
        """
        try:
            while self.ws and self.is_connected and not self.is_closing and not self._close_stream_sent:
                idle = time.monotonic() - self._last_send_at
                if idle < self.keepalive_interval_s:
                    await asyncio.sleep(self.keepalive_interval_s - idle)
                    continue

                await self.ws.send(json.dumps({"type": "KeepAlive"}))
                self._last_send_at = time.monotonic()
                self._keepalives_sent += 1
                logger.debug(f"Sent KeepAlive to Deepgram (idle {idle:.1f}s)")

        except asyncio.CancelledError:
            logger.debug("KeepAlive loop cancelled")
        except ConnectionClosed as e:
            if not self.is_closing:
                logger.warning(f"Deepgram stream closed while sending KeepAlive: {e}")
        except Exception as e:
            logger.error(f"Error sending KeepAlive to Deepgram: {e}")

    async def _receive_loop(self):
        """
        Receive provider messages until the stream closes.

        An abnormal close (typically a very short audio window) is logged
        as a warning; it is not a session error.
        Unless disconnect() ended the stream, on_closed fires on the way out.
        """
        try:
            async for message in self.ws:
                await self._process_message(message)
            logger.info("Deepgram stream closed")

        except ConnectionClosedError as e:
            logger.warning(f"Deepgram stream closed early (likely short audio window): {e}")
        except asyncio.CancelledError:
            logger.info("Deepgram receive loop cancelled")
        except Exception as e:
            logger.error(f"Fatal error in Deepgram receive loop: {e}")
            if self.on_error and not self.is_closing:
                await self.on_error(str(e))
        finally:
            self.is_connected = False
            if self.on_closed and not self.is_closing:
                try:
                    await self.on_closed()
                except Exception as e:
                    logger.error(f"Error handling Deepgram stream close: {e}", exc_info=True)

    async def _process_message(self, message):
        """
        Decode one provider message and route it.

        Message types:
        - Results: partial/final transcript (forwarded)
        - Metadata / SpeechStarted / UtteranceEnd: forwarded, normalizer ignores them
        - Error: reported via on_error
        """
        if isinstance(message, bytes):
            logger.debug(f"Ignoring binary message from Deepgram ({len(message)} bytes)")
            return

        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode Deepgram message: {e}")
            return

        if not isinstance(data, dict):
            logger.debug(f"Ignoring non-object Deepgram message: {data!r}")
            return

        if data.get("type") == "Error":
            error_msg = data.get("description") or data.get("message") or "Unknown error"
            logger.error(f"Deepgram error: {error_msg} | Full payload: {json.dumps(data)}")
            if self.on_error:
                await self.on_error(error_msg)
            return

        try:
            await self.on_message(data)
        except Exception as e:
            logger.error(f"Error handling Deepgram message: {e}", exc_info=True)

    @property
    def connection_status(self) -> str:
        """Get current connection status."""
        if self.is_closing:
            return "closing"
        elif self.is_connected:
            return "connected"
        else:
            return "disconnected"
