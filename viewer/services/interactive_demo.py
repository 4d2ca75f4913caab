"""
Interactive demo: a user-driven walk through one hand.

Phase flow:
    idle -> loading -> ready -> shuffling -> shuffle_complete -> dealing -> complete

shuffle_complete and complete are reached when the ledger closes the
corresponding phase stream; there is no explicit completion event for the
shuffle phase.
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from stores.ledger_client import DemoSessionInfo, LedgerApiError, LedgerClient
from stores.stream_transport import SseStreamTransport, TransportError

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str], Any]


class DemoPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SHUFFLING = "shuffling"
    SHUFFLE_COMPLETE = "shuffle_complete"
    DEALING = "dealing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class InteractiveDemoState:
    """
    Attributes:
        phase: Current step of the walk-through.
        demo_id: Session id returned by the ledger.
        game_id: Ledger game id.
        hand_id: Ledger hand id.
        error: Last error, cleared when the next step starts.
        shuffle_started_at: Monotonic clock reading when shuffling began.
        shuffle_duration: Seconds the shuffle stream stayed open.
        deal_started_at: Monotonic clock reading when dealing began.
        deal_duration: Seconds the deal stream stayed open.
    """
    phase: DemoPhase = DemoPhase.IDLE
    demo_id: Optional[str] = None
    game_id: Optional[int] = None
    hand_id: Optional[int] = None
    error: Optional[str] = None
    shuffle_started_at: Optional[float] = None
    shuffle_duration: Optional[float] = None
    deal_started_at: Optional[float] = None
    deal_duration: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "demo_id": self.demo_id,
            "game_id": self.game_id,
            "hand_id": self.hand_id,
            "error": self.error,
            "shuffle_duration": self.shuffle_duration,
            "deal_duration": self.deal_duration,
        }


class InteractiveDemo:
    """Drives the create-session, shuffle and deal steps of a demo."""

    def __init__(
        self,
        ledger_client: LedgerClient,
        transport_factory: Optional[TransportFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger_client = ledger_client
        self.transport_factory = transport_factory or self._phase_stream_transport
        self.clock = clock
        self.state = InteractiveDemoState()
        self.session_info: Optional[DemoSessionInfo] = None
        self._starting = False
        self._shuffle_stream = None
        self._deal_stream = None
        self._stream_client: Optional[httpx.AsyncClient] = None

    def _phase_stream_transport(self, url: str) -> SseStreamTransport:
        """Phase streams end with a clean close and are never reconnected."""
        if self._stream_client is None:
            self._stream_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
        return SseStreamTransport(
            url,
            client=self._stream_client,
            reconnect=False,
            complete_on_close=True,
        )

    def _update(self, **changes) -> None:
        self.state = replace(self.state, **changes)

    async def start_demo(self) -> None:
        """Create a session on the ledger. Concurrent calls are ignored."""
        if self._starting:
            logger.debug("start_demo already in progress, skipping")
            return

        self._starting = True
        try:
            self._update(phase=DemoPhase.LOADING, error=None)
            self.session_info = None
            info = await self.ledger_client.create_demo_session()
            self.session_info = info
            self.state = InteractiveDemoState(
                phase=DemoPhase.READY,
                demo_id=str(info.demo_id),
                game_id=info.game_id,
                hand_id=info.hand_id,
            )
        except LedgerApiError as e:
            logger.warning(f"Failed to create demo: {e}")
            # Back to idle so the user can retry
            self._update(phase=DemoPhase.IDLE, error=str(e))
        finally:
            self._starting = False

    def start_shuffle(self, on_event: Callable[[Any], None]) -> bool:
        """
        Open the shuffle phase stream.

        Returns:
            False if there is no demo session to shuffle.
        """
        if not self.state.demo_id:
            self._update(error="No demo ID available")
            return False

        self._close_stream("_shuffle_stream")
        self._update(
            phase=DemoPhase.SHUFFLING,
            error=None,
            shuffle_started_at=self.clock(),
        )

        stream = self.transport_factory(
            self.ledger_client.shuffle_stream_url(self.state.demo_id)
        )
        self._shuffle_stream = stream
        stream.connect(
            on_event,
            on_error=self._on_stream_error,
            on_complete=self._on_shuffle_closed,
        )
        return True

    def start_deal(self, on_event: Callable[[Any], None]) -> bool:
        """
        Open the deal phase stream.

        Returns:
            False if there is no demo session to deal, or the shuffle
            stream has not completed yet.
        """
        if not self.state.demo_id:
            self._update(error="No demo ID available")
            return False
        if self.state.phase != DemoPhase.SHUFFLE_COMPLETE:
            self._update(error="Shuffle must complete before dealing")
            return False

        self._close_stream("_deal_stream")
        self._update(
            phase=DemoPhase.DEALING,
            error=None,
            deal_started_at=self.clock(),
        )

        stream = self.transport_factory(
            self.ledger_client.deal_stream_url(self.state.demo_id)
        )
        self._deal_stream = stream
        stream.connect(
            on_event,
            on_error=self._on_stream_error,
            on_complete=self._on_deal_closed,
        )
        return True

    def _on_shuffle_closed(self) -> None:
        started = self.state.shuffle_started_at
        duration = self.clock() - started if started is not None else None
        logger.info(f"Shuffle stream closed after {duration or 0:.2f}s")
        self._update(phase=DemoPhase.SHUFFLE_COMPLETE, shuffle_duration=duration)
        self._shuffle_stream = None

    def _on_deal_closed(self) -> None:
        started = self.state.deal_started_at
        duration = self.clock() - started if started is not None else None
        logger.info(f"Deal stream closed after {duration or 0:.2f}s")
        self._update(phase=DemoPhase.COMPLETE, deal_duration=duration)
        self._deal_stream = None

    def _on_stream_error(self, error: TransportError) -> None:
        logger.warning(f"Demo phase stream failed: {error}")
        self._update(error=str(error))

    def _close_stream(self, attr: str) -> None:
        stream = getattr(self, attr)
        if stream is not None:
            stream.disconnect()
            setattr(self, attr, None)

    def reset(self) -> None:
        """Close both phase streams and return to idle."""
        self._close_stream("_shuffle_stream")
        self._close_stream("_deal_stream")
        self._starting = False
        self.session_info = None
        self.state = InteractiveDemoState()

    async def aclose(self) -> None:
        streams = [s for s in (self._shuffle_stream, self._deal_stream) if s is not None]
        self.reset()
        for stream in streams:
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()
        if self._stream_client is not None:
            await self._stream_client.aclose()
            self._stream_client = None
