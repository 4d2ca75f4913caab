"""
Tests for the viewer HTTP API.

Routers are mounted on a bare FastAPI app with fake services injected
through their set_* functions; the real lifespan is not run.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import (
    blinding_message,
    demo_snapshot,
    game_event_payload,
    hand_created_payload,
    player_actor,
    shuffle_message,
)
from models.envelope import decode_stream_event
from routers import health, session as session_router
from services.demo_session import DemoSession
from services.interactive_demo import InteractiveDemo
from stores.ledger_client import DemoSessionInfo, LedgerApiError, LedgerClient
from stores.stream_transport import TransportError

DEMO_ID = "5e1f0c2a-7b3d-4e8f-a9b0-c1d2e3f4a5b6"


class FakeTransport:

    def __init__(self):
        self.callbacks = None
        self.disconnects = 0

    def connect(self, on_event, on_error=None, on_complete=None, on_open=None):
        self.callbacks = (on_event, on_error, on_complete, on_open)
        return self.disconnect

    def disconnect(self):
        self.disconnects += 1


class FakePhaseStream:

    def __init__(self, url):
        self.url = url
        self.on_event = None
        self.on_complete = None

    def connect(self, on_event, on_error=None, on_complete=None, on_open=None):
        self.on_event = on_event
        self.on_complete = on_complete
        return self.disconnect

    def disconnect(self):
        pass


@pytest.fixture
def services():
    transport = FakeTransport()
    live = DemoSession(transport, MagicMock())

    ledger = LedgerClient("http://ledger.test")
    ledger.create_demo_session = AsyncMock(return_value=DemoSessionInfo(
        demo_id=DEMO_ID,
        game_id=2,
        hand_id=1,
        viewer_public_key="0xbeef",
        initial_snapshot=demo_snapshot(player_count=3, shuffler_count=2),
    ))
    streams = []

    def factory(url):
        stream = FakePhaseStream(url)
        streams.append(stream)
        return stream

    demo = InteractiveDemo(ledger, transport_factory=factory)
    viewer = DemoSession(None, MagicMock())

    session_router.set_session(live)
    session_router.set_interactive_demo(demo, viewer)
    health.set_health_dependencies(session=live)

    yield {
        "transport": transport,
        "live": live,
        "ledger": ledger,
        "demo": demo,
        "viewer": viewer,
        "streams": streams,
    }

    session_router.set_session(None)
    session_router.set_interactive_demo(None, None)
    health.set_health_dependencies()


@pytest.fixture
def client(services):
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(session_router.router)
    return TestClient(app)


# -------------------------------------------------------------------------
# Health
# -------------------------------------------------------------------------

class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready_while_connected(self, client, services):
        client.post("/api/session/connect")
        services["transport"].callbacks[3]()

        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["live_feed"]["status"] == "connected"
        assert response.json()["checks"]["redis"]["status"] == "not_configured"

    def test_ready_degraded_on_feed_error(self, client, services):
        client.post("/api/session/connect")
        services["transport"].callbacks[1](TransportError("Connection lost. Reconnecting in 4s..."))

        response = client.get("/ready")

        assert response.status_code == 503
        live_feed = response.json()["checks"]["live_feed"]
        assert live_feed["message"] == "Connection lost. Reconnecting in 4s..."

    def test_ready_degraded_when_redis_down(self, client, services):
        redis_client = MagicMock()
        redis_client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        health.set_health_dependencies(redis_client=redis_client, session=services["live"])

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["checks"]["redis"]["status"] == "error"


# -------------------------------------------------------------------------
# Live session
# -------------------------------------------------------------------------

class TestLiveSession:

    def test_initial_state(self, client):
        response = client.get("/api/session")

        body = response.json()
        assert response.status_code == 200
        assert body["connection_status"] == "idle"
        assert body["state"]["phase"] == "idle"
        assert body["state"]["status_message"] == "Initializing..."

    def test_connect_and_follow_hand(self, client, services):
        response = client.post("/api/session/connect")
        assert response.json()["connection_status"] == "connecting"

        on_event, _, _, on_open = services["transport"].callbacks
        on_open()
        on_event(decode_stream_event("hand_created", hand_created_payload(player_count=4)))

        state = client.get("/api/session").json()["state"]
        assert state["phase"] == "shuffling"
        assert state["player_count"] == 4

    def test_reset(self, client, services):
        client.post("/api/session/connect")

        response = client.post("/api/session/reset")

        assert response.json()["connection_status"] == "idle"
        assert services["transport"].disconnects == 1

    def test_debug(self, client):
        body = client.get("/api/session/debug").json()

        assert body["expected_seq_id"] == 0
        assert body["pending_seq_ids"] == []

    def test_uninitialized_session(self, client):
        session_router.set_session(None)

        assert client.get("/api/session").status_code == 503


# -------------------------------------------------------------------------
# Interactive demo
# -------------------------------------------------------------------------

class TestInteractiveDemo:

    def test_create_demo(self, client):
        response = client.post("/api/demo")

        body = response.json()
        assert response.status_code == 200
        assert body["demo"]["phase"] == "ready"
        assert body["demo"]["demo_id"] == DEMO_ID

    def test_create_demo_starts_viewer_hand(self, client):
        body = client.post("/api/demo").json()

        state = body["state"]
        assert state["phase"] == "shuffling"
        assert state["game_id"] == 2
        assert state["hand_id"] == 1
        assert state["player_count"] == 3
        assert state["total_shuffle_steps"] == 2
        assert state["viewer_public_key"] == "0xbeef"

    def test_create_demo_failure(self, client, services):
        services["ledger"].create_demo_session = AsyncMock(
            side_effect=LedgerApiError("POST /games/demo returned 502: Bad Gateway", status=502),
        )

        response = client.post("/api/demo")

        assert response.status_code == 502

    def test_shuffle_before_create_conflicts(self, client):
        response = client.post("/api/demo/shuffle")

        assert response.status_code == 409
        assert response.json()["detail"] == "No demo ID available"

    def test_phase_streams_drive_viewer_to_dealing(self, client, services):
        client.post("/api/demo")

        response = client.post("/api/demo/shuffle")
        assert response.json()["demo"]["phase"] == "shuffling"

        shuffle_stream = services["streams"][0]
        assert shuffle_stream.url.endswith(f"/games/demo/{DEMO_ID}/shuffle")
        for seq_id in range(2):
            shuffle_stream.on_event(decode_stream_event(
                "game_event", game_event_payload(seq_id, shuffle_message(seq_id), game_id=2),
            ))

        state = client.get("/api/demo").json()["state"]
        assert state["current_shuffle_step"] == 2
        assert state["error_message"] is None

        shuffle_stream.on_complete()
        response = client.post("/api/demo/deal")
        assert response.json()["demo"]["phase"] == "dealing"

        deal_stream = services["streams"][1]
        assert deal_stream.url.endswith("/deal")
        deal_stream.on_event(decode_stream_event(
            "game_event",
            game_event_payload(2, blinding_message(0), actor=player_actor(1), game_id=2),
        ))

        state = client.get("/api/demo").json()["state"]
        assert state["phase"] == "dealing"
        assert state["last_seq_id"] == 2
        assert len(state["cards"]) == 6
        assert all(card["dealt"] for card in state["cards"])

    def test_deal_before_shuffle_completes_conflicts(self, client, services):
        client.post("/api/demo")
        client.post("/api/demo/shuffle")

        response = client.post("/api/demo/deal")

        assert response.status_code == 409
        assert response.json()["detail"] == "Shuffle must complete before dealing"
        assert len(services["streams"]) == 1

    def test_reset_demo(self, client):
        client.post("/api/demo")

        body = client.post("/api/demo/reset").json()

        assert body["demo"]["phase"] == "idle"
        assert body["state"]["phase"] == "idle"
