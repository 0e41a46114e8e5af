"""Tests for HTTP, OpenAI and WebSocket adapters."""

import asyncio
import json
from datetime import timedelta
from pathlib import Path

import httpx
import pytest

from standup_sync.adapters.openai_ai_client import OpenAIAIClient
from standup_sync.adapters.sendgrid_client import HttpxSendGridClient
from standup_sync.client import ws_channel
from standup_sync.client.api_client import HttpxSessionApiClient
from standup_sync.client.reconciler import ReconcilerState
from standup_sync.client.storage import JsonFileClientStorage
from standup_sync.client.ws_channel import WebSocketChannel, events_url
from standup_sync.domain.sessions import SessionSnapshot, SessionStatus
from standup_sync.errors import UpstreamError
from tests.conftest import START


class _FakeTranscriptions:
    def __init__(self) -> None:
        self.last_payload: dict[str, object] | None = None

    async def create(self, **kwargs):  # type: ignore[no-untyped-def]
        self.last_payload = kwargs
        return type("Transcript", (), {"text": "  Hola equipo \n", "language": "es"})()


class _FakeAudio:
    def __init__(self) -> None:
        self.transcriptions = _FakeTranscriptions()


class _FakeResponses:
    def __init__(self, output_text: str) -> None:
        self.output_text = output_text
        self.last_payload: dict[str, object] | None = None

    async def create(self, **kwargs):  # type: ignore[no-untyped-def]
        self.last_payload = kwargs
        return type("Resp", (), {"output_text": self.output_text})()


class _FakeOpenAI:
    def __init__(self, output_text: str = "**Alice**:") -> None:
        self.audio = _FakeAudio()
        self.responses = _FakeResponses(output_text)


def _snapshot_json() -> dict[str, object]:
    return {
        "id": "ABC123",
        "createdAt": START.isoformat(),
        "expiresAt": (START + timedelta(hours=2)).isoformat(),
        "status": "waiting",
        "passwordRequired": False,
        "leaderId": "leader",
        "participants": [
            {
                "id": "leader",
                "name": "Alice",
                "joinedAt": START.isoformat(),
                "status": "waiting",
            }
        ],
        "timerRunning": False,
    }


def test_openai_client_transcribes_with_language() -> None:
    fake = _FakeOpenAI()
    client = OpenAIAIClient(client=fake)

    result = asyncio.run(
        client.transcribe(model="whisper-1", audio=b"abc", filename="recording.webm")
    )

    assert result.text == "Hola equipo"
    assert result.language == "es"
    payload = fake.audio.transcriptions.last_payload
    assert payload["file"] == ("recording.webm", b"abc")
    assert payload["response_format"] == "verbose_json"


def test_openai_client_summarizes() -> None:
    fake = _FakeOpenAI()
    client = OpenAIAIClient(client=fake)

    text = asyncio.run(
        client.summarize(model="gpt-test", instructions="Be brief", prompt="Alice:\nhi")
    )

    assert text == "**Alice**:"
    assert fake.responses.last_payload["store"] is False
    assert fake.responses.last_payload["input"] == "Alice:\nhi"


def test_openai_client_rejects_empty_summary() -> None:
    client = OpenAIAIClient(client=_FakeOpenAI(output_text=""))

    with pytest.raises(UpstreamError):
        asyncio.run(client.summarize(model="gpt-test", instructions="", prompt="x"))


def test_sendgrid_client_posts_plain_text_mail() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    async_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = HttpxSendGridClient(
        api_key="sg-key", from_email="noreply@test", http_client=async_client
    )

    asyncio.run(client.send_email("bob@x.io", "Code", "Your code is 123456"))

    request = seen[0]
    payload = json.loads(request.content.decode())
    assert request.headers["Authorization"] == "Bearer sg-key"
    assert payload["personalizations"][0]["to"][0]["email"] == "bob@x.io"
    assert payload["content"][0]["value"] == "Your code is 123456"


def test_sendgrid_client_failure_is_upstream() -> None:
    async_client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )
    client = HttpxSendGridClient(
        api_key="sg-key", from_email="noreply@test", http_client=async_client
    )

    with pytest.raises(UpstreamError):
        asyncio.run(client.send_email("bob@x.io", "Code", "body"))


def test_session_api_client_reads_snapshots() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/ABC123"):
            return httpx.Response(200, json=_snapshot_json())
        if request.url.path.endswith("/OLD123"):
            return httpx.Response(410, json={"error": "expired", "code": "EXPIRED"})
        if request.url.path.endswith("/BAD123"):
            return httpx.Response(503)
        return httpx.Response(404, json={"error": "missing", "code": "NOT_FOUND"})

    async_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = HttpxSessionApiClient(
        base_url="https://standup.test", http_client=async_client
    )

    snapshot = asyncio.run(client.fetch_session("ABC123"))

    assert snapshot.status == SessionStatus.WAITING
    assert snapshot.participants[0].name == "Alice"
    assert asyncio.run(client.fetch_session("OLD123")) is None
    assert asyncio.run(client.fetch_session("NOPE12")) is None
    with pytest.raises(UpstreamError):
        asyncio.run(client.fetch_session("BAD123"))


def test_client_storage_round_trip(tmp_path: Path) -> None:
    storage = JsonFileClientStorage(tmp_path / "state" / "session.json")
    state = ReconcilerState(
        session=SessionSnapshot.model_validate(_snapshot_json()),
        user_id="leader",
        user_name="Alice",
    )

    assert storage.load() is None
    storage.save(state)

    assert storage.load() == state
    raw = json.loads((tmp_path / "state" / "session.json").read_text())
    assert raw["userId"] == "leader"
    storage.clear()
    assert storage.load() is None


def test_client_storage_discards_unreadable_state(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    path.write_text('{"session": 42}', encoding="utf-8")

    assert JsonFileClientStorage(path).load() is None


def test_events_url_maps_channel_to_relay() -> None:
    assert (
        events_url("ws://localhost:8000/", "session-ABC123")
        == "ws://localhost:8000/api/sessions/ABC123/events"
    )


class _FakeConnection:
    def __init__(self, messages: list[str]) -> None:
        self.messages = messages
        self.closed = False

    def __aiter__(self) -> "_FakeConnection":
        return self

    async def __anext__(self) -> str:
        if not self.messages:
            raise StopAsyncIteration
        return self.messages.pop(0)

    async def close(self) -> None:
        self.closed = True


def test_websocket_channel_dispatches_relay_messages(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    connection = _FakeConnection(
        [
            json.dumps({"event": "subscribed", "data": {"channel": "session-A"}}),
            "not json",
            json.dumps({"event": "user-left", "data": {"participantId": "p2"}}),
        ]
    )
    urls: list[str] = []

    async def fake_connect(url: str, open_timeout: float) -> _FakeConnection:
        urls.append(url)
        return connection

    monkeypatch.setattr(ws_channel, "connect", fake_connect)
    received: list[dict[str, object]] = []

    async def scenario() -> bool:
        channel = WebSocketChannel("ws://relay.test")
        await channel.subscribe("session-A", {"user-left": received.append})
        await asyncio.sleep(0.01)
        return channel.is_subscribed("session-A")

    still_subscribed = asyncio.run(scenario())

    assert urls == ["ws://relay.test/api/sessions/A/events"]
    assert received == [{"participantId": "p2"}]
    assert still_subscribed is False


def test_websocket_channel_connect_failure_is_upstream(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def refuse(url: str, open_timeout: float) -> _FakeConnection:
        raise OSError("connection refused")

    monkeypatch.setattr(ws_channel, "connect", refuse)

    with pytest.raises(UpstreamError):
        asyncio.run(WebSocketChannel("ws://relay.test").subscribe("session-A", {}))


def test_websocket_channel_survives_failing_handler(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    started = json.dumps({"event": "timer-started", "data": {}})
    connection = _FakeConnection([started, started])

    async def fake_connect(url: str, open_timeout: float) -> _FakeConnection:
        return connection

    monkeypatch.setattr(ws_channel, "connect", fake_connect)
    received: list[dict[str, object]] = []

    def flaky(payload: dict[str, object]) -> None:
        received.append(payload)
        if len(received) == 1:
            raise OSError("handler crashed")

    async def scenario() -> bool:
        channel = WebSocketChannel("ws://relay.test")
        await channel.subscribe("session-A", {"timer-started": flaky})
        await asyncio.sleep(0.01)
        return channel.is_subscribed("session-A")

    still_subscribed = asyncio.run(scenario())

    assert received == [{}, {}]
    assert still_subscribed is False
