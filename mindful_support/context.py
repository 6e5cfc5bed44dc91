"""
Conversation context selection for reply generation.
"""

from .models import Turn
from .store import RecordStore

DEFAULT_WINDOW = 10
DEFAULT_PROMPT_HISTORY = 5


class ContextWindowBuilder:
    """Fetches a bounded, newest-first slice of a session's prior turns."""

    def __init__(self, store: RecordStore[Turn], limit: int = DEFAULT_WINDOW) -> None:
        if limit < 0:
            raise ValueError("limit must not be negative")
        self.store = store
        self.limit = limit

    async def build(self, session_id: str) -> list[Turn]:
        return await self.store.query(
            "by_session", session_id, descending=True, take=self.limit
        )


def to_exchanges(
    turns: list[Turn], depth: int = DEFAULT_PROMPT_HISTORY
) -> list[dict[str, str]]:
    """
    Project a newest-first window into chat messages, oldest first.

    Args:
        turns: Turns ordered newest first, as returned by ``build``
        depth: How many of the newest turns to include

    Returns:
        Alternating user/assistant messages in chronological order
    """
    messages: list[dict[str, str]] = []
    for turn in reversed(turns[:depth]):
        messages.append({"role": "user", "content": turn.message})
        messages.append({"role": "assistant", "content": turn.response})
    return messages
