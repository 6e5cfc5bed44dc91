"""
Shared data models for the Mindful Support service.

This module defines the core domain models used across multiple layers
of the application (business logic, CLI, API). Persisted records are frozen:
once created they are never updated or deleted.
"""

import time
import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

SentimentLabel = Literal["positive", "negative", "neutral"]

# Vocabulary offered by the mood tracker UI. Not enforced on MoodEntry.
MOOD_CATEGORIES = (
    "Happy",
    "Sad",
    "Anxious",
    "Calm",
    "Angry",
    "Tired",
    "Grateful",
    "Confused",
)


class AuthorizationError(Exception):
    """Raised when a write is attempted without an authenticated user."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


def _record_id() -> str:
    return uuid.uuid4().hex


class Sentiment(BaseModel):
    """Emotional valence of a piece of text."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=-1.0, le=1.0, description="Valence, negative is negative affect")
    label: SentimentLabel = Field(..., description="Category derived from the score")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence in the label")


class Turn(BaseModel):
    """One user message and the assistant reply it produced."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_record_id)
    user_id: str = Field(..., description="Owning user")
    session_id: str = Field(..., description="Conversation the turn belongs to")
    message: str = Field(..., description="What the user said")
    response: str = Field(..., description="The assistant reply, real or fallback")
    sentiment: Sentiment
    audio_transcript: str | None = Field(
        None, description="Transcript text when the message came from a recording"
    )
    created_at: float = Field(
        default_factory=time.time, description="Unix timestamp when the turn was stored"
    )


class MoodEntry(BaseModel):
    """A self-reported mood sample."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_record_id)
    user_id: str
    mood: str = Field(..., description="Mood category, usually one of MOOD_CATEGORIES")
    intensity: float = Field(..., description="Intensity, 1-10 by convention")
    notes: str | None = None
    triggers: list[str] | None = None
    created_at: float = Field(default_factory=time.time)


class PendingTurn(BaseModel):
    """A submitted message waiting for a reply."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str
    message: str
    audio_transcript: str | None = None


class MoodSummary(BaseModel):
    """Statistics over a user's most recent mood entries."""

    avg_intensity: float
    most_common_mood: str
    total_entries: int
    recent_trend: float

    @computed_field  # type: ignore[prop-decorator]
    @property
    def intensity_level(self) -> str:
        if self.avg_intensity > 7:
            return "high"
        if self.avg_intensity > 4:
            return "moderate"
        return "low"


class SentimentSummary(BaseModel):
    """Statistics over the sentiment of a user's recent conversation turns."""

    total_turns: int
    average_score: float
    positive: int = 0
    negative: int = 0
    neutral: int = 0
