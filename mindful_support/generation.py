"""
Reply generation for the Mindful Support service.

The language model is an external, fallible collaborator. Every call is
resolved into a tagged ``GenerationResult`` so that an empty reply and a
failed call stay distinguishable in logs, even though both end up as a
fixed supportive fallback message for the user.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Protocol

from openai import AsyncOpenAI

from .config import Settings
from .models import Sentiment

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_FALLBACK = (
    "I'm here to listen and support you. "
    "Could you tell me more about how you're feeling?"
)
CALL_FAILED_FALLBACK = (
    "I'm here to support you. Sometimes I have trouble finding the right words, "
    "but I want you to know that your feelings are valid and you're not alone."
)

SYSTEM_PROMPT_TEMPLATE = """You are a compassionate AI mental health support assistant. Your role is to:
- Provide empathetic, non-judgmental support
- Use active listening techniques
- Offer coping strategies and mindfulness exercises
- Encourage professional help when appropriate
- Never diagnose or provide medical advice
- Be warm, understanding, and supportive

Current user sentiment: {label} (confidence: {confidence}%)

Respond with empathy and provide helpful, therapeutic guidance."""


class Generator(Protocol):
    """Anything that can turn a prompt and history into reply text."""

    async def complete(
        self, system_prompt: str, history: list[dict[str, str]], message: str
    ) -> str | None: ...


# MARK: - Results


@dataclass(frozen=True)
class Ok:
    text: str


@dataclass(frozen=True)
class EmptyResult:
    pass


@dataclass(frozen=True)
class CallFailed:
    error: BaseException


GenerationResult = Ok | EmptyResult | CallFailed


def resolve_reply(result: GenerationResult) -> str:
    """Turn a generation result into the text shown to the user."""
    if isinstance(result, Ok):
        return result.text
    if isinstance(result, EmptyResult):
        return EMPTY_RESPONSE_FALLBACK
    if isinstance(result, CallFailed):
        return CALL_FAILED_FALLBACK
    raise TypeError(f"Unexpected generation result: {result!r}")


def build_system_prompt(sentiment: Sentiment) -> str:
    confidence = math.floor(sentiment.confidence * 100 + 0.5)
    return SYSTEM_PROMPT_TEMPLATE.format(label=sentiment.label, confidence=confidence)


async def generate(
    generator: Generator,
    system_prompt: str,
    history: list[dict[str, str]],
    message: str,
    timeout: float | None = None,
) -> GenerationResult:
    """
    Call the generator and classify the outcome.

    Args:
        generator: The language model collaborator
        system_prompt: Persona instructions with the sentiment interpolated
        history: Prior exchanges, oldest first
        message: The new user message
        timeout: Seconds to wait before treating the call as failed

    Returns:
        ``Ok`` with usable text, ``EmptyResult`` when the model returned
        nothing, or ``CallFailed`` when the call raised or timed out
    """
    try:
        text = await asyncio.wait_for(
            generator.complete(system_prompt, history, message), timeout=timeout
        )
    except Exception as e:
        logger.exception("Reply generation failed: %s", type(e).__name__)
        return CallFailed(error=e)

    if not text or not text.strip():
        logger.warning("Reply generation returned an empty result")
        return EmptyResult()
    return Ok(text=text)


# MARK: - OpenAI


class OpenAIGenerator:
    """Generator backed by an OpenAI-compatible chat completions API."""

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        self.settings = settings
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use: a missing API key fails the call, not startup.
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self.settings.openai_base_url,
                api_key=self.settings.openai_api_key,
                timeout=self.settings.generation_timeout,
            )
        return self._client

    async def complete(
        self, system_prompt: str, history: list[dict[str, str]], message: str
    ) -> str | None:
        messages = [
            {"role": "system", "content": system_prompt},
            *history,
            {"role": "user", "content": message},
        ]
        response = await self.client.chat.completions.create(
            model=self.settings.openai_model,
            messages=messages,  # type: ignore[arg-type]
            max_tokens=self.settings.generation_max_tokens,
            temperature=self.settings.generation_temperature,
        )
        if not response.choices:
            return None
        return response.choices[0].message.content
