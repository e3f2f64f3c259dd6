"""
End-to-end tests for the translator HTTP surface.

Tests:
1. Health check
2. Model listing
3. Non-streaming chat completion
4. Streaming chat completion
5. Request validation and upstream failures
"""

import json

import pytest
from fastapi.testclient import TestClient

import translator.api
from conftest import PENDING, FakeSquadClient
from translator.config import config
from translator.errors import CreationError, PollError, UpstreamError
from translator.frames import DONE_EVENT, FrameEncoder
from translator.main import app
from translator.models import SessionState
from translator.sinks import SSESink
from translator.stream_controller import StreamingController

CHAT = "/v1/chat/completions"


@pytest.fixture
def fast_config(monkeypatch):
    monkeypatch.setattr(config, "min_poll_interval", 0.001)
    monkeypatch.setattr(config, "max_poll_interval", 0.005)
    monkeypatch.setattr(config, "blocking_poll_interval", 0.001)
    monkeypatch.setattr(config, "default_agent_id", "default_agent")
    return config


@pytest.fixture
def use_squad(monkeypatch, fast_config):
    def install(client):
        monkeypatch.setattr(translator.api, "squad", client)
        return client
    return install


@pytest.fixture
def client():
    return TestClient(app)


def chat_body(content: str = "What is 6x7?", **extra) -> dict:
    body = {"model": "squad/deep_thought", "messages": [{"role": "user", "content": content}]}
    body.update(extra)
    return body


def sse_events(text: str) -> list:
    """Split an SSE body into decoded chunk payloads, keeping [DONE] as-is."""
    events = []
    for block in text.split("\n\n"):
        if not block.strip():
            continue
        assert block.startswith("data: ")
        data = block[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


class FakeAgentsClient(FakeSquadClient):

    def __init__(self, agents=None, error=None):
        super().__init__([PENDING])
        self.agents = agents or []
        self.error = error

    async def list_agents(self):
        self.calls.append("agents")
        if self.error:
            raise self.error
        return self.agents


class TestService:

    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "timestamp" in data
        assert data["uptime"] >= 0
        assert isinstance(data["environment"]["squad_api_configured"], bool)
        assert isinstance(data["session_count"], int)
        assert isinstance(data["sessions"], list)

    def test_request_id_header(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Request-ID"].startswith("req-")

    def test_root(self, client):
        data = client.get("/").json()
        assert data["endpoints"]["chat"] == CHAT
        assert data["endpoints"]["models"] == "/v1/models"


class TestModels:

    def test_agents_listed(self, client, use_squad):
        use_squad(FakeAgentsClient(agents=[{"name": "deep_thought", "readme": "Answers everything"}]))

        data = client.get("/v1/models").json()

        ids = [m["id"] for m in data["data"]]
        assert ids == ["squad/deep_thought", "squad/default_agent"]

    def test_falls_back_to_default_agent(self, client, use_squad):
        use_squad(FakeAgentsClient(error=UpstreamError("down", status_code=503)))

        resp = client.get("/v1/models")

        assert resp.status_code == 200
        assert [m["id"] for m in resp.json()["data"]] == ["squad/default_agent"]


class TestChatCompletion:

    def test_non_streaming(self, client, use_squad):
        squad = use_squad(FakeSquadClient([PENDING, {"status": "success", "message": "42"}]))

        resp = client.post(CHAT, json=chat_body())

        assert resp.status_code == 200
        data = resp.json()
        assert data["object"] == "chat.completion"
        assert data["model"] == "squad/deep_thought"
        assert data["choices"][0]["message"] == {"role": "assistant", "content": "42"}
        assert data["choices"][0]["finish_reason"] == "stop"
        assert squad.tasks == [("What is 6x7?", "deep_thought")]

    def test_default_agent_when_model_is_not_squad(self, client, use_squad):
        squad = use_squad(FakeSquadClient([{"status": "success", "message": "ok"}]))

        client.post(CHAT, json=chat_body(model="gpt-4o"))

        assert squad.tasks[0][1] == "default_agent"

    def test_upstream_error_in_body(self, client, use_squad):
        use_squad(FakeSquadClient([{"status": "error", "error": "tool crashed"}]))

        data = client.post(CHAT, json=chat_body()).json()

        assert data["choices"][0]["message"]["content"] == "Error: tool crashed"
        assert data["choices"][0]["finish_reason"] == "error"

    def test_creation_failure(self, client, use_squad):
        use_squad(FakeSquadClient([PENDING], create_error=CreationError("Invalid API key", status_code=401)))

        resp = client.post(CHAT, json=chat_body())

        assert resp.status_code == 502
        data = resp.json()
        assert data["error"] == "Bad Gateway"
        assert "Invalid API key" in data["details"]
        assert data["request_id"] == resp.headers["X-Request-ID"]

    def test_polling_failures(self, client, use_squad):
        use_squad(FakeSquadClient([PollError("down", status_code=503)]))

        resp = client.post(CHAT, json=chat_body())

        assert resp.status_code == 502
        assert "5 consecutive times" in resp.json()["details"]


class TestStreaming:

    def test_stream_events(self, client, use_squad):
        use_squad(FakeSquadClient([PENDING, {"status": "success", "message": "42"}]))

        resp = client.post(CHAT, json=chat_body(stream=True))

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text.endswith(DONE_EVENT)

        events = sse_events(resp.text)
        role, content, final, done = events
        assert role["choices"][0]["delta"] == {"role": "assistant"}
        assert content["choices"][0]["delta"] == {"content": "42"}
        assert final["choices"][0]["finish_reason"] == "stop"
        assert done == "[DONE]"

        ids = {e["id"] for e in events[:-1]}
        assert len(ids) == 1
        assert ids.pop().startswith("chatcmpl-req-")
        assert {e["object"] for e in events[:-1]} == {"chat.completion.chunk"}

    def test_stream_relays_log_lines(self, client, use_squad):
        use_squad(FakeSquadClient(
            [PENDING, PENDING, {"status": "success", "message": "Thinking\n42"}],
            logs=[["Thinking"], ["Thinking"], ["Thinking"]],
        ))

        events = sse_events(client.post(CHAT, json=chat_body(stream=True)).text)

        text = "".join(
            e["choices"][0]["delta"].get("content", "") for e in events if isinstance(e, dict)
        )
        assert text == "Thinking\n42"

    def test_stream_upstream_error(self, client, use_squad):
        use_squad(FakeSquadClient([{"status": "error", "error": "tool crashed"}]))

        events = sse_events(client.post(CHAT, json=chat_body(stream=True)).text)

        assert events[1]["choices"][0]["delta"] == {"content": "Error: tool crashed"}
        assert events[-2]["choices"][0]["finish_reason"] == "error"
        assert events[-1] == "[DONE]"

    def test_stream_creation_failure(self, client, use_squad):
        use_squad(FakeSquadClient([PENDING], create_error=CreationError("no key")))

        resp = client.post(CHAT, json=chat_body(stream=True))

        assert resp.status_code == 502
        assert resp.json()["message"] == "Failed to create invocation"

    def test_title_request_single_unit(self, client, use_squad):
        squad = use_squad(FakeSquadClient([{"status": "success", "message": "Deep Questions"}]))
        body = {
            "messages": [
                {"role": "system", "content": "Please generate a title for this conversation."},
                {"role": "user", "content": "What is 6x7?"},
            ],
            "stream": True,
        }

        events = sse_events(client.post(CHAT, json=body).text)

        assert len(events) == 4
        assert events[1]["choices"][0]["delta"] == {"content": "Deep Questions"}
        assert events[2]["choices"][0]["finish_reason"] == "stop"
        # One-shot answers never read the log feed
        assert squad.count("log") == 0


class TestValidation:

    @pytest.mark.parametrize("body", [
        {"messages": []},
        {"model": "squad/x"},
        {"messages": [{"role": "user"}]},
        {"messages": [{"role": "user", "content": ""}]},
        {"messages": [{"role": "tool", "content": "x"}]},
    ])
    def test_bad_requests(self, client, use_squad, body):
        squad = use_squad(FakeSquadClient([PENDING]))

        resp = client.post(CHAT, json=body)

        assert resp.status_code == 400
        data = resp.json()
        assert data["error"] == "Bad Request"
        assert data["message"]
        assert squad.calls == []

    @pytest.mark.parametrize("stream", ["true", 1, "yes"])
    def test_stream_must_be_boolean(self, client, use_squad, stream):
        squad = use_squad(FakeSquadClient([PENDING]))

        resp = client.post(CHAT, json=chat_body(stream=stream))

        assert resp.status_code == 400
        assert resp.json()["message"].startswith("stream")
        assert squad.calls == []


class FakeRequest:
    """Just enough of a Starlette request for the session relay."""

    def __init__(self, disconnected: bool = False):
        self.disconnected = disconnected

    async def is_disconnected(self) -> bool:
        return self.disconnected


class TestStreamSession:

    def make_controller(self, client, settings, registry):
        settings.min_poll_interval = 30.0
        settings.max_poll_interval = 30.0
        sink = SSESink(FrameEncoder("chatcmpl-test", "squad/deep_thought", 1700000000))
        controller = StreamingController(
            client, sink, "What is 6x7?", "deep_thought", settings=settings, registry=registry,
        )
        return controller, sink

    @pytest.mark.asyncio
    async def test_closing_the_stream_stops_polling(self, settings, registry):
        client = FakeSquadClient([PENDING], logs=[["working"]])
        controller, sink = self.make_controller(client, settings, registry)
        await controller.start()

        stream = translator.api._stream_session(controller, sink, FakeRequest())
        role = await stream.__anext__()
        content = await stream.__anext__()
        await stream.aclose()

        assert '"role": "assistant"' in role
        assert '"content": "working"' in content
        assert controller.cancelled
        assert controller.state == SessionState.TERMINATED
        assert client.count("status") == 1
        assert sink.closed
        assert registry.session_count == 0

    @pytest.mark.asyncio
    async def test_idle_stream_notices_disconnect(self, settings, registry, monkeypatch):
        monkeypatch.setattr(translator.api, "DISCONNECT_CHECK_INTERVAL", 0.01)
        client = FakeSquadClient([PENDING])
        controller, sink = self.make_controller(client, settings, registry)
        await controller.start()

        events = [e async for e in translator.api._stream_session(controller, sink, FakeRequest(True))]

        assert len(events) == 1
        assert DONE_EVENT not in events
        assert controller.cancelled
        assert client.count("status") <= 1
        assert registry.session_count == 0
