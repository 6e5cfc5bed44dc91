"""
Record storage implementation for the Mindful Support service.

This module provides an in-memory, append-only record store with indexed
range queries and real-time streaming of new records to subscribers. The
design allows for easy replacement with persistent storage backends in the
future: the engine only relies on insert, indexed query and stream.
"""

import asyncio
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from .models import MoodEntry, Turn

RecordT = TypeVar("RecordT", bound=BaseModel)

TURN_INDEXES = {"by_user": "user_id", "by_session": "session_id"}
MOOD_INDEXES = {"by_user": "user_id"}


class RecordStore(Generic[RecordT]):
    """
    In-memory append-only storage with real-time streaming capabilities.

    Records are never updated or deleted once inserted. Every record must
    carry a ``created_at`` timestamp; queries order on it, falling back to
    insertion order for equal timestamps. All operations are safe across
    concurrent tasks through asyncio primitives.
    """

    def __init__(self, indexes: Mapping[str, str]) -> None:
        self._indexes = dict(indexes)
        self._records: list[RecordT] = []
        self._by_id: dict[str, RecordT] = {}
        self._condition = asyncio.Condition()

    async def insert(self, record: RecordT) -> RecordT:
        """
        Append a record and notify all subscribers.

        Args:
            record: A complete, immutable record

        Returns:
            The stored record
        """
        async with self._condition:
            self._records.append(record)
            self._by_id[getattr(record, "id")] = record
            self._condition.notify_all()
            return record

    async def get(self, record_id: str) -> RecordT | None:
        async with self._condition:
            return self._by_id.get(record_id)

    async def query(
        self,
        index: str,
        key: Any,
        *,
        descending: bool = True,
        take: int | None = None,
    ) -> list[RecordT]:
        """
        Read records whose indexed field equals ``key``.

        Args:
            index: Name of the index, e.g. "by_user"
            key: Value the indexed field must equal
            descending: Newest first when true
            take: Maximum number of records to return

        Returns:
            Matching records ordered by creation time
        """
        try:
            field = self._indexes[index]
        except KeyError:
            raise ValueError(f"Unknown index: {index}") from None

        async with self._condition:
            matches = [
                (position, record)
                for position, record in enumerate(self._records)
                if getattr(record, field) == key
            ]

        matches.sort(
            key=lambda item: (getattr(item[1], "created_at"), item[0]),
            reverse=descending,
        )
        records = [record for _, record in matches]
        if take is not None:
            records = records[: max(take, 0)]
        return records

    async def count(self) -> int:
        async with self._condition:
            return len(self._records)

    @asynccontextmanager
    async def stream(self) -> AsyncGenerator[AsyncGenerator[RecordT, None], None]:
        """
        Stream newly inserted records to a subscriber.

        This context manager yields an async generator that produces every
        record inserted after the subscription started, in insertion order.

        Yields:
            An async generator of records
        """

        async def record_generator() -> AsyncGenerator[RecordT, None]:
            async with self._condition:
                last_seen = len(self._records)

            try:
                while True:
                    async with self._condition:
                        await self._condition.wait_for(
                            lambda: len(self._records) > last_seen
                        )
                        fresh = self._records[last_seen:]
                        last_seen = len(self._records)

                    for record in fresh:
                        yield record

            except (asyncio.CancelledError, GeneratorExit):
                # Subscriber disconnected or generator closed
                return

        yield record_generator()


def turn_store() -> RecordStore[Turn]:
    return RecordStore(TURN_INDEXES)


def mood_store() -> RecordStore[MoodEntry]:
    return RecordStore(MOOD_INDEXES)
