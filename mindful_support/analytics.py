"""
Mood logging and summary statistics.

Summaries are derived on every request from already persisted records and
are never stored.
"""

import logging
from collections import Counter
from decimal import ROUND_HALF_UP, Decimal

from .models import (
    AuthorizationError,
    MoodEntry,
    MoodSummary,
    SentimentSummary,
    Turn,
)
from .store import RecordStore

logger = logging.getLogger(__name__)

MOOD_HISTORY_LIMIT = 30
TREND_WINDOW = 7
SENTIMENT_HISTORY_LIMIT = 50


def round_half_up(value: float, places: int = 1) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def most_common(values: list[str]) -> str:
    """Most frequent value; ties go to the value that appears first."""
    counts = Counter(values)
    best = values[0]
    for value in values:
        if counts[value] > counts[best]:
            best = value
    return best


def mean(values: list[float]) -> float:
    return sum(values) / len(values)


class MoodLog:
    """Write path for self-reported moods."""

    def __init__(self, store: RecordStore[MoodEntry]) -> None:
        self.store = store

    async def log(
        self,
        user_id: str | None,
        mood: str,
        intensity: float,
        notes: str | None = None,
        triggers: list[str] | None = None,
    ) -> MoodEntry:
        """
        Store a mood entry exactly as given.

        Intensity is conventionally 1-10 but is neither clamped nor rejected.

        Raises:
            AuthorizationError: If no user is attached to the request
        """
        if not user_id:
            raise AuthorizationError()

        entry = MoodEntry(
            user_id=user_id,
            mood=mood,
            intensity=intensity,
            notes=notes,
            triggers=triggers,
        )
        await self.store.insert(entry)
        logger.debug("Logged mood %s (%s) for user %s", mood, intensity, user_id)
        return entry


class MoodAnalytics:
    """Read path for mood history and summaries."""

    def __init__(
        self,
        moods: RecordStore[MoodEntry],
        turns: RecordStore[Turn] | None = None,
        *,
        history_limit: int = MOOD_HISTORY_LIMIT,
        trend_window: int = TREND_WINDOW,
    ) -> None:
        self.moods = moods
        self.turns = turns
        self.history_limit = history_limit
        self.trend_window = trend_window

    async def history(self, user_id: str | None) -> list[MoodEntry]:
        """Newest-first mood entries; empty when no user is attached."""
        if not user_id:
            return []
        return await self.moods.query(
            "by_user", user_id, descending=True, take=self.history_limit
        )

    async def summarize(self, user_id: str | None) -> MoodSummary | None:
        entries = await self.history(user_id)
        if not entries:
            return None

        intensities = [entry.intensity for entry in entries]
        return MoodSummary(
            avg_intensity=round_half_up(mean(intensities)),
            most_common_mood=most_common([entry.mood for entry in entries]),
            total_entries=len(entries),
            recent_trend=mean(intensities[: self.trend_window]),
        )

    async def sentiment_summary(self, user_id: str | None) -> SentimentSummary | None:
        """Label counts and mean score over the user's recent turns."""
        if not user_id or self.turns is None:
            return None

        turns = await self.turns.query(
            "by_user", user_id, descending=True, take=SENTIMENT_HISTORY_LIMIT
        )
        if not turns:
            return None

        labels = Counter(turn.sentiment.label for turn in turns)
        return SentimentSummary(
            total_turns=len(turns),
            average_score=mean([turn.sentiment.score for turn in turns]),
            positive=labels["positive"],
            negative=labels["negative"],
            neutral=labels["neutral"],
        )
