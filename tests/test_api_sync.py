"""
End-to-end tests for the Mindful Support API endpoints.

These tests drive the HTTP API with a fake reply generator: sending messages,
polling for the persisted turns, logging moods and reading summaries.
"""

import asyncio
import contextlib
import json
import socket
import threading
import time

import httpx
import uvicorn
from fastapi.testclient import TestClient
from httpx_sse import aconnect_sse

from mindful_support.config import Settings
from mindful_support.generation import CALL_FAILED_FALLBACK
from mindful_support.server import create_app
from mindful_support.store import mood_store, turn_store

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


class EchoGenerator:
    async def complete(self, system_prompt, history, message):
        return f"You said: {message} ({len(history) // 2} earlier)"


class BrokenGenerator:
    async def complete(self, system_prompt, history, message):
        raise ConnectionError("model offline")


def wait_for_turns(client: TestClient, session_id: str, count: int, timeout: float = 3.0) -> list[dict]:
    """Poll the conversation until ``count`` turns are visible."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        response = client.get("/conversations", params={"session_id": session_id}, headers=ALICE)
        assert response.status_code == 200
        turns = response.json()
        if len(turns) >= count:
            return turns
        time.sleep(0.02)
    assert False, f"Expected {count} turns in {session_id}"


# MARK: - Conversations


class TestConversationAPI:
    """Integration tests covering the message send and read flow."""

    def setup_method(self):
        """Set up a fresh app with new stores for each test."""
        self.turns = turn_store()
        self.moods = mood_store()
        self.app = create_app(
            Settings(),
            turns=self.turns,
            moods=self.moods,
            generator=EchoGenerator(),
        )

    def test_health(self):
        with TestClient(self.app) as client:
            response = client.get("/")
            assert response.status_code == 200
            assert response.json()["status"] == "ok"

    def test_complete_workflow(self):
        """Send -> accepted -> poll -> reply persisted with sentiment."""
        with TestClient(self.app) as client:
            # 1. Sending is accepted immediately
            response = client.post(
                "/conversations",
                json={"message": "I had a wonderful day, felt so grateful", "session_id": "s1"},
                headers=ALICE,
            )
            assert response.status_code == 202
            assert response.json() == {"success": True}

            # 2. The reply shows up once the background worker persists it
            turns = wait_for_turns(client, "s1", 1)
            turn = turns[0]
            assert turn["message"] == "I had a wonderful day, felt so grateful"
            assert turn["response"] == "You said: I had a wonderful day, felt so grateful (0 earlier)"
            assert turn["sentiment"] == {"score": 1.0, "label": "positive", "confidence": 1.0}
            assert turn["audio_transcript"] is None

            # 3. A second message in the session sees the first as history
            client.post(
                "/conversations",
                json={"message": "but now I feel anxious", "session_id": "s1", "audio_transcript": "but now I feel anxious"},
                headers=ALICE,
            )
            turns = wait_for_turns(client, "s1", 2)
            latest = turns[0]
            assert latest["response"].endswith("(1 earlier)")
            assert latest["sentiment"]["label"] == "negative"
            assert latest["audio_transcript"] == "but now I feel anxious"

            # 4. The user's turns are listed across sessions
            response = client.get("/conversations", headers=ALICE)
            assert len(response.json()) == 2

            # 5. And summarised
            summary = client.get("/conversations/summary", headers=ALICE).json()
            assert summary["total_turns"] == 2
            assert summary["positive"] == 1
            assert summary["negative"] == 1

    def test_send_requires_user(self):
        with TestClient(self.app) as client:
            response = client.post("/conversations", json={"message": "hi", "session_id": "s1"})
            assert response.status_code == 401

    def test_reads_without_user_are_empty(self):
        with TestClient(self.app) as client:
            assert client.get("/conversations").json() == []
            assert client.get("/conversations/summary").json() is None

    def test_stream_requires_user(self):
        with TestClient(self.app) as client:
            response = client.get("/conversations/stream")
            assert response.status_code == 401

    def test_other_users_turns_are_hidden(self):
        with TestClient(self.app) as client:
            client.post("/conversations", json={"message": "hello", "session_id": "s1"}, headers=ALICE)
            wait_for_turns(client, "s1", 1)

            response = client.get("/conversations", params={"session_id": "s1"}, headers=BOB)
            assert response.json() == []

    def test_session_page_counts_only_own_turns(self):
        """Another user's turns in the same session do not push ours off the page."""
        app = create_app(
            Settings(conversation_page_size=2),
            turns=turn_store(),
            moods=mood_store(),
            generator=EchoGenerator(),
        )
        with TestClient(app) as client:
            client.post("/conversations", json={"message": "mine", "session_id": "shared"}, headers=ALICE)
            client.portal.call(app.state.orchestrator.join)
            for i in range(3):
                client.post(
                    "/conversations", json={"message": f"theirs {i}", "session_id": "shared"}, headers=BOB
                )
            client.portal.call(app.state.orchestrator.join)

            alice_turns = client.get(
                "/conversations", params={"session_id": "shared"}, headers=ALICE
            ).json()
            assert [turn["message"] for turn in alice_turns] == ["mine"]

            bob_turns = client.get(
                "/conversations", params={"session_id": "shared"}, headers=BOB
            ).json()
            assert len(bob_turns) == 2
            assert all(turn["user_id"] == "bob" for turn in bob_turns)

    def test_invalid_payload(self):
        with TestClient(self.app) as client:
            response = client.post("/conversations", json={"message": "hi"}, headers=ALICE)
            assert response.status_code == 422

    def test_generation_failure_is_not_surfaced(self):
        app = create_app(Settings(), turns=self.turns, moods=self.moods, generator=BrokenGenerator())
        with TestClient(app) as client:
            response = client.post(
                "/conversations", json={"message": "hello", "session_id": "s9"}, headers=ALICE
            )
            assert response.status_code == 202

            turns = wait_for_turns(client, "s9", 1)
            assert turns[0]["response"] == CALL_FAILED_FALLBACK


# MARK: - Streaming


class TestAPIStream:
    """Integration tests covering the turn stream over a live server."""

    def setup_method(self):
        self.app = create_app(
            Settings(),
            turns=turn_store(),
            moods=mood_store(),
            generator=EchoGenerator(),
        )

    async def test_streaming_api(self):
        """Alice's stream carries her persisted turn and not Bob's."""

        # Start a real HTTP server in a background thread on a free port
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        host, port = sock.getsockname()
        sock.close()
        base_url = f"http://{host}:{port}"

        config = uvicorn.Config(
            app=self.app,
            host=host,
            port=port,
            loop="asyncio",
            lifespan="on",
            log_level="warning",
            ws="none",
        )
        server = uvicorn.Server(config)

        def run_server() -> None:
            asyncio.run(server.serve())

        thread = threading.Thread(target=run_server, daemon=True)
        thread.start()

        # Wait for server to be ready
        start = time.time()
        while time.time() - start < 5.0:
            try:
                r = httpx.get(base_url + "/", timeout=0.2)
                if r.status_code == 200:
                    break
            except Exception:
                pass
            time.sleep(0.05)
        else:
            server.should_exit = True
            thread.join(timeout=1.0)
            assert False, "Server did not start in time"

        async with httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(5.0, read=None)
        ) as client:
            received: list[dict] = []
            connected = asyncio.Event()

            async def consume() -> None:
                async with aconnect_sse(
                    client, "GET", "/conversations/stream", headers=ALICE
                ) as es:
                    assert es.response.status_code == 200
                    content_type = es.response.headers.get("content-type", "")
                    assert content_type.startswith("text/event-stream")
                    connected.set()

                    async for sse in es.aiter_sse():
                        if sse.event == "error":
                            assert False, f"SSE error event: {sse.data}"
                        received.append(json.loads(sse.data))
                        break

            consumer_task = asyncio.create_task(consume())

            async def shutdown(reason: str) -> None:
                consumer_task.cancel()
                with contextlib.suppress(BaseException):
                    await consumer_task
                server.should_exit = True
                thread.join(timeout=1.0)
                assert False, reason

            try:
                await asyncio.wait_for(connected.wait(), timeout=3.0)
            except TimeoutError:
                await shutdown("Consumer did not connect in time")

            # Give the stream time to subscribe to the store
            await asyncio.sleep(0.2)

            # Bob's turn is persisted first and must not reach Alice
            resp = await client.post(
                "/conversations", json={"message": "bob here", "session_id": "b1"}, headers=BOB
            )
            assert resp.status_code == 202
            deadline = time.time() + 3.0
            while time.time() < deadline:
                bob_turns = await client.get(
                    "/conversations", params={"session_id": "b1"}, headers=BOB
                )
                if bob_turns.json():
                    break
                await asyncio.sleep(0.02)
            else:
                await shutdown("Bob's turn was not persisted in time")

            resp = await client.post(
                "/conversations", json={"message": "alice here", "session_id": "a1"}, headers=ALICE
            )
            assert resp.status_code == 202

            try:
                await asyncio.wait_for(consumer_task, timeout=3.0)
            except TimeoutError:
                await shutdown(f"Streaming test timed out. Received: {received}")

            assert len(received) == 1
            assert received[0]["user_id"] == "alice"
            assert received[0]["message"] == "alice here"
            assert received[0]["response"] == "You said: alice here (0 earlier)"
            assert received[0]["sentiment"]["label"] == "neutral"

        # Shutdown server
        server.should_exit = True
        thread.join(timeout=2.0)


# MARK: - Moods


class TestMoodAPI:
    """Integration tests covering mood logging and summaries."""

    def setup_method(self):
        self.app = create_app(
            Settings(),
            turns=turn_store(),
            moods=mood_store(),
            generator=EchoGenerator(),
        )

    def test_mood_workflow(self):
        with TestClient(self.app) as client:
            # No entries yet
            assert client.get("/moods/summary", headers=ALICE).json() is None

            for intensity in (4, 6, 8):
                response = client.post(
                    "/moods",
                    json={"mood": "Happy", "intensity": intensity, "triggers": ["Weather"]},
                    headers=ALICE,
                )
                assert response.status_code == 201
                assert response.json()["mood"] == "Happy"

            history = client.get("/moods", headers=ALICE).json()
            assert [entry["intensity"] for entry in history] == [8, 6, 4]
            assert history[0]["triggers"] == ["Weather"]

            summary = client.get("/moods/summary", headers=ALICE).json()
            assert summary == {
                "avg_intensity": 6.0,
                "most_common_mood": "Happy",
                "total_entries": 3,
                "recent_trend": 6.0,
                "intensity_level": "moderate",
            }

            # Other users see nothing
            assert client.get("/moods", headers=BOB).json() == []

    def test_out_of_range_intensity_is_accepted(self):
        with TestClient(self.app) as client:
            response = client.post("/moods", json={"mood": "Happy", "intensity": 11}, headers=ALICE)
            assert response.status_code == 201
            assert response.json()["intensity"] == 11

    def test_log_mood_requires_user(self):
        with TestClient(self.app) as client:
            response = client.post("/moods", json={"mood": "Happy", "intensity": 5})
            assert response.status_code == 401
            assert client.get("/moods").json() == []
            assert client.get("/moods/summary").json() is None
