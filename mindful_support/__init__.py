"""
Mindful Support - A conversational support service with mood analytics.

This package scores the sentiment of user messages, generates supportive
replies with a language model in the background, and summarises a user's
logged moods and conversation history.
"""

__version__ = "0.1.0"
