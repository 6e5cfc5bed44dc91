"""
Turn processing for the Mindful Support service.

A submitted message is accepted immediately and queued. Background workers
then score it, assemble conversation context, generate a reply and persist
the resulting turn. Readers only see the turn once it is persisted.

Turns in one session are not serialised: with more than one worker, two
turns of the same session may be persisted in either completion order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from .context import DEFAULT_PROMPT_HISTORY, ContextWindowBuilder, to_exchanges
from .generation import (
    CallFailed,
    GenerationResult,
    Generator,
    build_system_prompt,
    generate,
    resolve_reply,
)
from .models import AuthorizationError, PendingTurn, Turn
from .sentiment import SentimentScorer
from .store import RecordStore

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    RECEIVED = "received"
    SCORED = "scored"
    CONTEXT_ASSEMBLED = "context_assembled"
    GENERATION_FAILED = "generation_failed"
    GENERATED = "generated"
    PERSISTED = "persisted"


@dataclass
class TurnOutcome:
    """What happened while processing one turn."""

    turn: Turn
    result: GenerationResult
    states: list[TurnState] = field(default_factory=list)


class ResponseOrchestrator:
    """
    Accepts user messages and produces persisted turns in the background.

    Use as an async context manager, or call ``start`` and ``stop``, to run
    the worker tasks. Messages submitted before the workers start wait in
    the queue.
    """

    def __init__(
        self,
        turns: RecordStore[Turn],
        generator: Generator,
        *,
        scorer: SentimentScorer | None = None,
        context: ContextWindowBuilder | None = None,
        prompt_history: int = DEFAULT_PROMPT_HISTORY,
        generation_timeout: float | None = None,
        workers: int = 1,
        shutdown_timeout: float | None = None,
    ) -> None:
        self.turns = turns
        self.generator = generator
        self.scorer = scorer or SentimentScorer()
        self.context = context or ContextWindowBuilder(turns)
        self.prompt_history = prompt_history
        self.generation_timeout = generation_timeout
        self.worker_count = workers
        self.shutdown_timeout = shutdown_timeout
        self._queue: asyncio.Queue[PendingTurn] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []

    # MARK: - Accept

    async def submit(
        self,
        user_id: str | None,
        message: str,
        session_id: str,
        audio_transcript: str | None = None,
    ) -> PendingTurn:
        """
        Queue a message for a reply and return without waiting for it.

        Raises:
            AuthorizationError: If no user is attached to the request
        """
        if not user_id:
            raise AuthorizationError()

        job = PendingTurn(
            user_id=user_id,
            session_id=session_id,
            message=message,
            audio_transcript=audio_transcript,
        )
        await self._queue.put(job)
        logger.debug("Queued message for session %s", session_id)
        return job

    # MARK: - Process

    async def process(self, job: PendingTurn) -> TurnOutcome:
        """Score, assemble context, generate and persist a single turn."""
        states = [TurnState.RECEIVED]

        sentiment = self.scorer.score(job.message)
        states.append(TurnState.SCORED)

        window = await self.context.build(job.session_id)
        history = to_exchanges(window, self.prompt_history)
        states.append(TurnState.CONTEXT_ASSEMBLED)

        result = await generate(
            self.generator,
            build_system_prompt(sentiment),
            history,
            job.message,
            timeout=self.generation_timeout,
        )
        if isinstance(result, CallFailed):
            states.append(TurnState.GENERATION_FAILED)
        states.append(TurnState.GENERATED)

        turn = Turn(
            user_id=job.user_id,
            session_id=job.session_id,
            message=job.message,
            response=resolve_reply(result),
            sentiment=sentiment,
            audio_transcript=job.audio_transcript,
        )
        await self.turns.insert(turn)
        states.append(TurnState.PERSISTED)

        logger.info(
            "Persisted turn %s for session %s (%s, sentiment=%s)",
            turn.id,
            turn.session_id,
            type(result).__name__,
            sentiment.label,
        )
        return TurnOutcome(turn=turn, result=result, states=states)

    # MARK: - Workers

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"turn-worker-{i}")
            for i in range(self.worker_count)
        ]

    async def stop(self) -> None:
        """
        Finish every accepted message, then stop the workers.

        Waits at most ``shutdown_timeout`` seconds when one is set; turns
        still unfinished after that are abandoned.
        """
        workers, self._workers = self._workers, []
        if workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self.shutdown_timeout)
            except TimeoutError:
                logger.warning(
                    "Stopping with %d queued messages unprocessed", self._queue.qsize()
                )
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def join(self) -> None:
        """Wait until every queued message has been processed."""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _work(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            except Exception:
                logger.exception("Failed to process turn for session %s", job.session_id)
            finally:
                self._queue.task_done()

    async def __aenter__(self) -> "ResponseOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
