"""
Lexical sentiment scoring for user messages.

Scores are computed from two closed vocabularies of word stems. A token
matches a stem when it contains the stem ("happier" matches "happy"). Each
token counts at most once per vocabulary, but may count toward both.
"""

from dataclasses import dataclass

from .models import Sentiment, SentimentLabel

NO_EVIDENCE = Sentiment(score=0.0, label="neutral", confidence=0.5)
LABEL_THRESHOLD = 0.1


@dataclass(frozen=True)
class Lexicon:
    """Positive and negative word stems used by the scorer."""

    positive: tuple[str, ...]
    negative: tuple[str, ...]


DEFAULT_LEXICON = Lexicon(
    positive=(
        "happy",
        "good",
        "great",
        "wonderful",
        "amazing",
        "love",
        "joy",
        "excited",
        "grateful",
        "peaceful",
    ),
    negative=(
        "sad",
        "bad",
        "terrible",
        "awful",
        "hate",
        "angry",
        "depressed",
        "anxious",
        "worried",
        "stressed",
    ),
)


def label_for(score: float) -> SentimentLabel:
    """Map a score to its label, leaving a neutral band around zero."""
    if score > LABEL_THRESHOLD:
        return "positive"
    if score < -LABEL_THRESHOLD:
        return "negative"
    return "neutral"


class SentimentScorer:
    """Deterministic scorer with no side effects."""

    def __init__(self, lexicon: Lexicon = DEFAULT_LEXICON) -> None:
        self.lexicon = lexicon

    def count_matches(self, text: str) -> tuple[int, int]:
        """Return the positive and negative token match counts for ``text``."""
        positive = negative = 0
        for token in text.lower().split():
            if any(stem in token for stem in self.lexicon.positive):
                positive += 1
            if any(stem in token for stem in self.lexicon.negative):
                negative += 1
        return positive, negative

    def score(self, text: str) -> Sentiment:
        positive, negative = self.count_matches(text)
        total = positive + negative
        if total == 0:
            return NO_EVIDENCE

        score = (positive - negative) / total
        return Sentiment(score=score, label=label_for(score), confidence=abs(score))
