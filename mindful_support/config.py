"""
Runtime configuration for the Mindful Support service.

Values come from the environment, with a local ``.env`` file loaded first.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    """Service settings. Defaults suit local development."""

    # Generation
    openai_base_url: str | None = Field(None, description="OpenAI-compatible API root")
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    generation_timeout: float = Field(30.0, gt=0)
    generation_max_tokens: int = Field(300, gt=0)
    generation_temperature: float = 0.7

    # Engine
    context_window: int = Field(10, ge=0)
    prompt_history: int = Field(5, ge=0)
    mood_history_limit: int = Field(30, gt=0)
    trend_window: int = Field(7, gt=0)
    conversation_page_size: int = Field(50, gt=0)
    turn_workers: int = Field(2, gt=0)
    shutdown_timeout: float | None = Field(
        None, gt=0, description="Seconds to drain queued turns on shutdown"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, ignoring unset ones."""
        env = {
            "openai_base_url": os.getenv("OPENAI_BASE_URL"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "openai_model": os.getenv("OPENAI_MODEL"),
            "generation_timeout": os.getenv("GENERATION_TIMEOUT"),
            "generation_max_tokens": os.getenv("GENERATION_MAX_TOKENS"),
            "generation_temperature": os.getenv("GENERATION_TEMPERATURE"),
            "context_window": os.getenv("CONTEXT_WINDOW"),
            "prompt_history": os.getenv("PROMPT_HISTORY"),
            "mood_history_limit": os.getenv("MOOD_HISTORY_LIMIT"),
            "trend_window": os.getenv("TREND_WINDOW"),
            "conversation_page_size": os.getenv("CONVERSATION_PAGE_SIZE"),
            "turn_workers": os.getenv("TURN_WORKERS"),
            "shutdown_timeout": os.getenv("SHUTDOWN_TIMEOUT"),
            "host": os.getenv("HOST"),
            "port": os.getenv("PORT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        return cls.model_validate({k: v for k, v in env.items() if v is not None})
