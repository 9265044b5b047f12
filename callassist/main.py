"""
FastAPI app: WebSocket endpoint for live call assistance.

Client sends binary PCM frames (one mono call channel, mixed speakers).
Server responds with JSON transcript, summary, llm_eval, suggestions and
error messages.
"""

import logging
from contextlib import asynccontextmanager
from functools import partial

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from callassist.config import Settings, get_settings
from callassist.llm.openai_client import OpenAIClient
from callassist.orchestration.session import SessionOptions, SessionOrchestrator, SessionServices
from callassist.orchestration.suggestion_pipeline import SuggestionPipeline
from callassist.orchestration.summarizer import ConversationSummarizer
from callassist.rag.corpus import load_corpus
from callassist.rag.retriever import Retriever
from callassist.stt.deepgram import DeepgramClient
from callassist.websocket import connection_manager

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_embedder(settings: Settings):
    """Query embedder matching the backend that produced the corpus vectors."""
    from callassist.rag.embedders import LocalEmbedder, OpenAIEmbedder

    if settings.rag_use_local_embeddings:
        return LocalEmbedder(settings.local_embedding_model)
    if not settings.openai_api_key:
        logger.warning("No OpenAI API key configured - retrieval disabled")
        return None
    return OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.openai_embedding_model,
        base_url=settings.openai_base_url,
    )


def build_session_options(settings: Settings) -> SessionOptions:
    return SessionOptions(
        initial_summary=settings.initial_summary,
        history_window=settings.history_window,
        max_history_entries=settings.max_history_entries,
        kb_digest_chunks=settings.rag_top_k,
        audio_send_interval_ms=settings.audio_send_interval_ms,
        audio_idle_interval_ms=settings.audio_idle_interval_ms,
        recognizer_close_timeout_s=settings.recognizer_close_timeout_s,
    )


def build_services(settings: Settings, retriever: Retriever, llm: OpenAIClient) -> SessionServices:
    """Wire the shared collaborators every session uses."""

    def recognizer_factory(on_message, on_error, on_closed) -> DeepgramClient:
        return DeepgramClient(
            api_key=settings.deepgram_api_key,
            on_message=on_message,
            on_error=on_error,
            on_closed=on_closed,
            model=settings.deepgram_model,
            language=settings.deepgram_language,
            encoding=settings.audio_encoding,
            sample_rate=settings.audio_sample_rate,
            keepalive_interval_s=settings.deepgram_keepalive_interval_s,
        )

    return SessionServices(
        retriever=retriever,
        summarizer=ConversationSummarizer(llm, model=settings.summary_model),
        pipeline=SuggestionPipeline(
            llm,
            retriever,
            evaluation_model=settings.evaluation_model,
            suggestion_model=settings.suggestion_model,
            rag_top_k=settings.rag_top_k,
        ),
        recognizer_factory=recognizer_factory,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    logger.info(f"Starting call assistant ({settings.environment})")

    if not settings.deepgram_api_key:
        logger.warning("DEEPGRAM_API_KEY is not set - transcription will fail")
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set - summaries and suggestions will use fallbacks")

    corpus = load_corpus(settings.corpus_path)
    embedder = build_embedder(settings)
    retriever = Retriever(
        corpus,
        embedder=embedder,
        timeout_ms=settings.rag_timeout_ms,
        overview_query=settings.overview_query,
    )
    llm = OpenAIClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        organization_id=settings.openai_organization_id,
        project_id=settings.openai_project_id,
        timeout_s=settings.llm_timeout_s,
    )

    app.state.settings = settings
    app.state.retriever = retriever
    app.state.services = build_services(settings, retriever, llm)
    app.state.session_options = build_session_options(settings)

    yield

    logger.info("Shutting down: closing active sessions")
    await connection_manager.close_all()
    await llm.close()
    if hasattr(embedder, "close"):
        await embedder.close()


app = FastAPI(
    title="Live Call Assistant",
    description="Real-time transcription, rolling summaries and suggestion cards for live calls",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.websocket("/ws")
async def websocket_call(websocket: WebSocket) -> None:
    """
    One call session per connection.

    Binary frames are audio; text frames are ignored.
    """
    session_id = await connection_manager.connect(websocket)
    orchestrator = SessionOrchestrator(
        session_id,
        websocket.app.state.services,
        send=partial(connection_manager.send_message, session_id),
        options=websocket.app.state.session_options,
    )
    orchestrator.launch()

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            data = message.get("bytes")
            if data:
                orchestrator.handle_audio(data)
            elif message.get("text"):
                logger.debug(f"Ignoring text frame from session {session_id}")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for session {session_id}: {e}", exc_info=True)
    finally:
        await orchestrator.close()
        await connection_manager.disconnect(session_id)


@app.get("/health")
async def health() -> dict:
    retriever = getattr(app.state, "retriever", None)
    return {
        "status": "ok",
        "active_sessions": connection_manager.get_session_count(),
        "corpus": retriever.stats() if retriever else None,
    }


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "callassist.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
