"""Tests for debug server."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import FakeCompleter, FakeTransport
from relay_bot.core.addressing import InboundMessage
from relay_bot.core.coordinator import BotCoordinator
from relay_bot.core.names import NameRegistry
from relay_bot.debug.server import create_app
from relay_bot.tracing import EventTrace, TraceStore


class TestDebugServer:
    """Tests for debug server routes."""

    @pytest.fixture
    def store(self, tmp_path: Path) -> TraceStore:
        """Create a test trace store."""
        return TraceStore(tmp_path / "traces.db")

    @pytest.fixture
    def registry(self) -> NameRegistry:
        return NameRegistry()

    @pytest.fixture
    def coordinator(self, persona, registry, store) -> BotCoordinator:
        return BotCoordinator(
            persona, FakeCompleter(), registry, transport=FakeTransport(), trace_store=store
        )

    @pytest.fixture
    def client(self, coordinator, store, registry) -> TestClient:
        """Create a test client."""
        app = create_app(coordinators=[coordinator], trace_store=store, name_registry=registry)
        return TestClient(app)

    def test_root_redirects_to_traces(self, client: TestClient):
        """Test that root redirects to traces."""
        response = client.get("/", follow_redirects=False)
        assert response.status_code == 307
        assert "/traces" in response.headers["location"]

    def test_traces_list_empty(self, client: TestClient):
        """Test traces list with no traces."""
        response = client.get("/traces")
        assert response.status_code == 200
        assert response.json() == {"traces": []}

    def test_traces_list_with_data(self, client: TestClient, store: TraceStore):
        """Test traces list with some traces."""
        trace = EventTrace(persona="bot", room_id="!test:x", event_id="$1", trigger_text="hello")
        trace.final_state = "ignored"
        store.save(trace)

        response = client.get("/traces", params={"persona": "bot"})
        assert response.status_code == 200
        traces = response.json()["traces"]
        assert len(traces) == 1
        assert traces[0]["room_id"] == "!test:x"
        assert client.get("/traces", params={"persona": "other"}).json() == {"traces": []}

    def test_trace_detail_found(self, client: TestClient, store: TraceStore):
        """Test viewing a trace detail."""
        trace = EventTrace(persona="bot", room_id="!test:x", event_id="$1", trigger_text="hello world")
        trace.add_step(stage="classify", inputs={"body": "hello world"}, outputs={}, decision="ignored_not_for_us")
        store.save(trace)

        response = client.get(f"/traces/{trace.id}")
        assert response.status_code == 200
        data = response.json()
        assert data["trigger_text"] == "hello world"
        assert data["steps"][0]["stage"] == "classify"

    def test_trace_detail_not_found(self, client: TestClient):
        """Test viewing a nonexistent trace."""
        response = client.get("/traces/nonexistent-id")
        assert response.status_code == 404
        assert "not found" in response.text.lower()

    def test_traces_without_store(self, coordinator):
        """Trace routes report tracing as unavailable when disabled."""
        client = TestClient(create_app(coordinators=[coordinator]))
        assert client.get("/traces").status_code == 503
        assert client.get("/traces/anything").status_code == 503

    def test_personas(self, client: TestClient):
        """Running personas are listed with the known names."""
        data = client.get("/personas").json()
        assert data["known_names"] == ["bot"]
        assert data["personas"][0]["display_name"] == "Bot"
        assert data["personas"][0]["conversations"] == 0

    @pytest.mark.asyncio
    async def test_conversations(self, client: TestClient, coordinator: BotCoordinator):
        """A persona's conversations are dumped most recent first."""
        await coordinator.handle_message(
            InboundMessage(event_id="$1", sender="@u:x", room_id="!r:x", body="Bot: first")
        )
        await coordinator.handle_message(
            InboundMessage(event_id="$2", sender="@u:x", room_id="!r:x", body="Bot: second")
        )

        data = client.get("/personas/bot/conversations").json()
        conversations = data["conversations"]
        assert len(conversations) == 2
        assert conversations[0]["messages"][1]["content"] == "Bot: second"
        assert conversations[0]["messages"][2]["role"] == "assistant"

    def test_unknown_persona(self, client: TestClient):
        """Unknown personas are 404."""
        assert client.get("/personas/nobody/conversations").status_code == 404

    def test_stats(self, client: TestClient):
        """Session counters are exposed."""
        data = client.get("/stats").json()
        assert data["received"] == 0
        assert data["failures"] == {"completion": 0, "send": 0, "join": 0}
        assert data["trace_states"] == {}

    @pytest.mark.asyncio
    async def test_stats_trace_states(self, client: TestClient, coordinator: BotCoordinator):
        """Stored trace outcomes are counted per final state."""
        await coordinator.handle_message(
            InboundMessage(event_id="$1", sender="@u:x", room_id="!r:x", body="Bot: hi")
        )
        await coordinator.handle_message(
            InboundMessage(event_id="$2", sender="@u:x", room_id="!r:x", body="chatter")
        )

        data = client.get("/stats").json()
        assert data["received"] == 2
        assert data["trace_states"] == {"linked": 1, "ignored": 1}
