"""
FastAPI server for the Mindful Support service.

This module implements the HTTP API for sending messages to the support
agent, logging moods and reading summaries, plus a Server-Sent Events stream
of newly persisted turns. Identity is taken from the ``X-User-Id`` header as
supplied by the fronting authentication layer; it is not verified here.
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from . import __version__
from .analytics import MoodAnalytics, MoodLog
from .config import Settings
from .context import ContextWindowBuilder
from .generation import Generator, OpenAIGenerator
from .models import (
    AuthorizationError,
    MoodEntry,
    MoodSummary,
    SentimentSummary,
    Turn,
)
from .orchestrator import ResponseOrchestrator
from .store import RecordStore, mood_store, turn_store


# API Request/Response Schemas
class MessageSubmit(BaseModel):
    """Payload for sending a message to the support agent."""

    message: str = Field(..., description="What the user said")
    session_id: str = Field(..., description="Conversation identifier chosen by the client")
    audio_transcript: str | None = Field(
        None, description="Transcript text when the message came from a recording"
    )


class SubmitResponse(BaseModel):
    success: bool = True


class MoodLogRequest(BaseModel):
    """Payload for logging a mood."""

    mood: str
    intensity: float
    notes: str | None = None
    triggers: list[str] | None = None


def current_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str | None:
    """Identity of the caller, or None when the request is anonymous."""
    return x_user_id or None


CurrentUser = Annotated[str | None, Depends(current_user)]


def create_app(
    settings: Settings | None = None,
    *,
    turns: RecordStore[Turn] | None = None,
    moods: RecordStore[MoodEntry] | None = None,
    generator: Generator | None = None,
) -> FastAPI:
    """
    Create a FastAPI application wired to the given collaborators.

    Args:
        settings: Service settings, read from the environment when omitted
        turns: Store for conversation turns
        moods: Store for mood entries
        generator: Reply generator, an OpenAI-compatible client by default

    Returns:
        Configured FastAPI application
    """
    settings = settings or Settings.from_env()
    turns = turns if turns is not None else turn_store()
    moods = moods if moods is not None else mood_store()
    generator = generator or OpenAIGenerator(settings)

    orchestrator = ResponseOrchestrator(
        turns,
        generator,
        context=ContextWindowBuilder(turns, limit=settings.context_window),
        prompt_history=settings.prompt_history,
        generation_timeout=settings.generation_timeout,
        workers=settings.turn_workers,
        shutdown_timeout=settings.shutdown_timeout,
    )
    mood_log = MoodLog(moods)
    analytics = MoodAnalytics(
        moods,
        turns,
        history_limit=settings.mood_history_limit,
        trend_window=settings.trend_window,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Run the turn workers for the lifetime of the application."""
        async with orchestrator:
            yield

    app = FastAPI(
        title="Mindful Support",
        description="Conversational support agent with mood analytics",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    @app.exception_handler(AuthorizationError)
    async def authorization_error(request: Request, exc: AuthorizationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": str(exc)})

    @app.get("/")
    async def root() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "mindful-support"}

    # MARK: - Conversations

    @app.post("/conversations", status_code=status.HTTP_202_ACCEPTED)
    async def send_message(payload: MessageSubmit, user_id: CurrentUser) -> SubmitResponse:
        """
        Queue a message for a reply.

        Returns as soon as the message is queued. The reply becomes visible
        through ``GET /conversations`` or the stream once it is persisted.
        """
        await orchestrator.submit(
            user_id,
            payload.message,
            payload.session_id,
            audio_transcript=payload.audio_transcript,
        )
        return SubmitResponse()

    @app.get("/conversations")
    async def get_conversations(user_id: CurrentUser, session_id: str | None = None) -> list[Turn]:
        """Newest turns of a session, or of all the user's sessions."""
        if not user_id:
            return []
        if session_id:
            found = await turns.query("by_session", session_id)
            own = [turn for turn in found if turn.user_id == user_id]
            return own[: settings.conversation_page_size]
        return await turns.query("by_user", user_id, take=settings.conversation_page_size)

    @app.get("/conversations/summary")
    async def get_sentiment_summary(user_id: CurrentUser) -> SentimentSummary | None:
        return await analytics.sentiment_summary(user_id)

    @app.get("/conversations/stream")
    async def stream_turns(user_id: CurrentUser) -> StreamingResponse:
        """
        Stream the caller's newly persisted turns via Server-Sent Events.

        Returns:
            StreamingResponse with text/event-stream content type
        """
        if not user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

        async def event_generator() -> AsyncGenerator[str, None]:
            """Generate SSE events for new turns."""
            try:
                async with turns.stream() as turn_stream:
                    async for turn in turn_stream:
                        if turn.user_id != user_id:
                            continue
                        yield f"data: {turn.model_dump_json()}\n\n"
            except asyncio.CancelledError:
                # Client disconnected
                pass
            except Exception as e:
                error_data = json.dumps({"error": str(e)})
                yield f"event: error\ndata: {error_data}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            },
        )

    # MARK: - Moods

    @app.post("/moods", status_code=status.HTTP_201_CREATED)
    async def log_mood(payload: MoodLogRequest, user_id: CurrentUser) -> MoodEntry:
        return await mood_log.log(
            user_id,
            payload.mood,
            payload.intensity,
            notes=payload.notes,
            triggers=payload.triggers,
        )

    @app.get("/moods")
    async def get_mood_history(user_id: CurrentUser) -> list[MoodEntry]:
        return await analytics.history(user_id)

    @app.get("/moods/summary")
    async def get_mood_summary(user_id: CurrentUser) -> MoodSummary | None:
        return await analytics.summarize(user_id)

    return app


def main() -> None:
    """Main entry point for the server."""
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(
        "mindful_support.server:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
