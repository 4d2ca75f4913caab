"""
Tests for the interactive demo walk-through.

Phase streams are replaced by fakes whose close and error callbacks the
tests fire directly.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from services.interactive_demo import DemoPhase, InteractiveDemo, InteractiveDemoState
from stores.ledger_client import DemoSessionInfo, LedgerApiError, LedgerClient
from stores.stream_transport import TransportError

DEMO_ID = "0b7c9a52-1d3e-4f6a-8b2c-9e0d1f2a3b4c"


class FakePhaseStream:

    def __init__(self, url: str):
        self.url = url
        self.on_event = None
        self.on_error = None
        self.on_complete = None
        self.disconnects = 0

    def connect(self, on_event, on_error=None, on_complete=None, on_open=None):
        self.on_event = on_event
        self.on_error = on_error
        self.on_complete = on_complete
        return self.disconnect

    def disconnect(self):
        self.disconnects += 1


class FakeClock:

    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def session_info() -> DemoSessionInfo:
    return DemoSessionInfo(
        demo_id=DEMO_ID,
        game_id=11,
        hand_id=3,
        viewer_public_key="0xbeef",
    )


def make_demo(create=None):
    ledger = LedgerClient("http://ledger.test")
    ledger.create_demo_session = create or AsyncMock(return_value=session_info())
    streams = []

    def factory(url):
        stream = FakePhaseStream(url)
        streams.append(stream)
        return stream

    clock = FakeClock()
    demo = InteractiveDemo(ledger, transport_factory=factory, clock=clock)
    return demo, streams, clock


async def ready_demo():
    demo, streams, clock = make_demo()
    await demo.start_demo()
    return demo, streams, clock


class TestStartDemo:

    @pytest.mark.asyncio
    async def test_creates_session(self):
        demo, _, _ = make_demo()

        await demo.start_demo()

        assert demo.state.phase == DemoPhase.READY
        assert demo.state.demo_id == DEMO_ID
        assert demo.state.game_id == 11
        assert demo.state.hand_id == 3
        assert demo.state.error is None

    @pytest.mark.asyncio
    async def test_failure_returns_to_idle(self):
        demo, _, _ = make_demo(AsyncMock(side_effect=LedgerApiError("POST /games/demo returned 500")))

        await demo.start_demo()

        assert demo.state.phase == DemoPhase.IDLE
        assert "500" in demo.state.error

    @pytest.mark.asyncio
    async def test_concurrent_start_is_ignored(self):
        release = asyncio.Event()

        async def slow_create():
            await release.wait()
            return session_info()

        create = AsyncMock(side_effect=slow_create)
        demo, _, _ = make_demo(create)

        first = asyncio.create_task(demo.start_demo())
        await asyncio.sleep(0)
        assert demo.state.phase == DemoPhase.LOADING

        await demo.start_demo()
        release.set()
        await first

        assert create.await_count == 1
        assert demo.state.phase == DemoPhase.READY


class TestPhaseStreams:

    def test_shuffle_requires_demo(self):
        demo, streams, _ = make_demo()

        assert demo.start_shuffle(lambda event: None) is False
        assert demo.state.error == "No demo ID available"
        assert streams == []

    def test_deal_requires_demo(self):
        demo, _, _ = make_demo()

        assert demo.start_deal(lambda event: None) is False

    @pytest.mark.asyncio
    async def test_shuffle_stream_close_completes_phase(self):
        demo, streams, clock = await ready_demo()
        on_event = lambda event: None

        assert demo.start_shuffle(on_event)
        assert demo.state.phase == DemoPhase.SHUFFLING
        assert streams[0].url == f"http://ledger.test/games/demo/{DEMO_ID}/shuffle"
        assert streams[0].on_event is on_event

        clock.now += 2.5
        streams[0].on_complete()

        assert demo.state.phase == DemoPhase.SHUFFLE_COMPLETE
        assert demo.state.shuffle_duration == pytest.approx(2.5)

    @pytest.mark.asyncio
    async def test_deal_stream_close_completes_demo(self):
        demo, streams, clock = await ready_demo()
        demo.start_shuffle(lambda event: None)
        streams[0].on_complete()

        demo.start_deal(lambda event: None)
        assert demo.state.phase == DemoPhase.DEALING
        assert streams[1].url.endswith("/deal")

        clock.now += 4.0
        streams[1].on_complete()

        assert demo.state.phase == DemoPhase.COMPLETE
        assert demo.state.deal_duration == pytest.approx(4.0)
        assert demo.state.to_dict()["phase"] == "complete"

    @pytest.mark.asyncio
    async def test_stream_error_keeps_phase(self):
        demo, streams, _ = await ready_demo()
        demo.start_shuffle(lambda event: None)

        streams[0].on_error(TransportError("Connection lost: stream closed by server"))

        assert demo.state.phase == DemoPhase.SHUFFLING
        assert demo.state.error == "Connection lost: stream closed by server"

    @pytest.mark.asyncio
    async def test_restarting_shuffle_closes_previous_stream(self):
        demo, streams, _ = await ready_demo()
        demo.start_shuffle(lambda event: None)

        demo.start_shuffle(lambda event: None)

        assert streams[0].disconnects == 1
        assert len(streams) == 2

    @pytest.mark.asyncio
    async def test_reset_closes_streams(self):
        demo, streams, _ = await ready_demo()
        demo.start_shuffle(lambda event: None)

        demo.reset()

        assert streams[0].disconnects == 1
        assert demo.state == InteractiveDemoState()

    @pytest.mark.asyncio
    async def test_deal_waits_for_shuffle_to_complete(self):
        demo, streams, _ = await ready_demo()

        assert demo.start_deal(lambda event: None) is False
        assert demo.state.error == "Shuffle must complete before dealing"

        demo.start_shuffle(lambda event: None)
        assert demo.start_deal(lambda event: None) is False
        assert demo.state.phase == DemoPhase.SHUFFLING
        assert len(streams) == 1


class TestSessionInfo:

    @pytest.mark.asyncio
    async def test_kept_until_reset(self):
        demo, _, _ = await ready_demo()

        assert demo.session_info == session_info()

        demo.reset()

        assert demo.session_info is None

    @pytest.mark.asyncio
    async def test_cleared_when_creation_fails(self):
        demo, _, _ = await ready_demo()
        demo.ledger_client.create_demo_session = AsyncMock(side_effect=LedgerApiError("down"))

        await demo.start_demo()

        assert demo.session_info is None
