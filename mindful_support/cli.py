"""
Command-line interface tools for the Mindful Support service.
"""

import asyncio
import json
import time
from collections.abc import Coroutine
from datetime import datetime
from typing import Any

import httpx
import typer
from httpx_sse import ServerSentEvent, aconnect_sse

from .models import MoodEntry, MoodSummary, Turn

DEFAULT_BASE_URL = "http://localhost:8000"

app = typer.Typer(help="Mindful Support CLI tools")

BaseUrlOption = typer.Option(
    DEFAULT_BASE_URL, "--url", "-u", help="Base URL of the Mindful Support service"
)
UserOption = typer.Option(..., "--user", envvar="MINDFUL_USER", help="User identifier")


def _headers(user: str) -> dict[str, str]:
    return {"X-User-Id": user}


# MARK: - Commands


@app.command()
def send(
    message: str = typer.Argument(..., help="The message to send"),
    session: str = typer.Option(
        None, "--session", "-s", help="Session identifier (a new one when omitted)"
    ),
    user: str = UserOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Send a message to the support agent."""
    session_id = session or f"session_{int(time.time() * 1000)}"

    async def _send() -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{base_url}/conversations",
                json={"message": message, "session_id": session_id},
                headers=_headers(user),
            )
            response.raise_for_status()
            print(f"Sent to session {session_id}")

    _run_with_error_handling(_send(), base_url)


@app.command()
def history(
    session: str = typer.Option(None, "--session", "-s", help="Only this session"),
    user: str = UserOption,
    base_url: str = BaseUrlOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Show recent conversation turns, oldest first."""

    async def _history() -> None:
        params = {"session_id": session} if session else {}
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{base_url}/conversations", params=params, headers=_headers(user)
            )
            response.raise_for_status()
            result = response.json()

            if json_output:
                print(json.dumps(result, indent=2))
                return

            if not result:
                print("No conversations yet")
            for raw in reversed(result):
                print(_format_turn(Turn.model_validate(raw)))

    _run_with_error_handling(_history(), base_url)


@app.command()
def log_mood(
    mood: str = typer.Argument(..., help="Mood category, e.g. Happy"),
    intensity: float = typer.Argument(..., help="Intensity, 1-10"),
    notes: str = typer.Option(None, "--notes", "-n", help="Free-text notes"),
    trigger: list[str] = typer.Option(None, "--trigger", "-t", help="Trigger label, repeatable"),
    user: str = UserOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Log a mood entry."""

    async def _log_mood() -> None:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{base_url}/moods",
                json={
                    "mood": mood,
                    "intensity": intensity,
                    "notes": notes,
                    "triggers": trigger or None,
                },
                headers=_headers(user),
            )
            response.raise_for_status()
            entry = MoodEntry.model_validate(response.json())
            print(f"Logged {entry.mood} ({entry.intensity:g}/10)")

    _run_with_error_handling(_log_mood(), base_url)


@app.command()
def summary(
    user: str = UserOption,
    base_url: str = BaseUrlOption,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output raw JSON"),
) -> None:
    """Show mood statistics."""

    async def _summary() -> None:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{base_url}/moods/summary", headers=_headers(user))
            response.raise_for_status()
            result = response.json()

            if json_output:
                print(json.dumps(result, indent=2))
                return

            if result is None:
                print("No mood entries yet")
                return

            stats = MoodSummary.model_validate(result)
            print(f"Most common mood: {stats.most_common_mood}")
            print(f"Average intensity: {stats.avg_intensity}/10 ({stats.intensity_level})")
            print(f"Recent trend: {stats.recent_trend:.1f}/10")
            print(f"Entries: {stats.total_entries}")

    _run_with_error_handling(_summary(), base_url)


@app.command()
def stream(
    user: str = UserOption,
    base_url: str = BaseUrlOption,
) -> None:
    """Stream replies as they are persisted."""

    async def _stream() -> None:
        print(f"Streaming from {base_url}/conversations/stream... (Ctrl+C to stop)")

        async with httpx.AsyncClient(timeout=None) as client:
            async with aconnect_sse(
                client, "GET", f"{base_url}/conversations/stream", headers=_headers(user)
            ) as event_source:
                async for sse in event_source.aiter_sse():
                    _handle_sse_event(sse)

    _run_with_error_handling(_stream(), base_url)


# MARK: - Private Helpers


def _format_turn(turn: Turn) -> str:
    timestamp = datetime.fromtimestamp(turn.created_at).strftime("%H:%M:%S")
    return (
        f"{timestamp} you ({turn.sentiment.label}) > {turn.message}\n"
        f"{timestamp} agent > {turn.response}"
    )


def _handle_sse_event(sse: ServerSentEvent) -> None:
    """Handle a single SSE event."""
    try:
        if sse.event == "error":
            error_data = json.loads(sse.data)
            print(f"Server error: {error_data.get('error', 'Unknown error')}")
            return

        turn = Turn.model_validate_json(sse.data)
        print(_format_turn(turn))

    except ValueError as e:
        print(f"Warning: Could not parse SSE data: {sse.data} - {e}")
    except Exception as e:
        print(f"Warning: Error processing turn data: {e}")


def _run_with_error_handling(coro: Coroutine[Any, Any, Any], base_url: str) -> None:
    """Run an async coroutine with standardized error handling."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        print("\nStopped")
        raise typer.Exit(0)
    except httpx.ConnectError:
        print(f"Error: Could not connect to {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        print(f"Error: HTTP {e.response.status_code}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
