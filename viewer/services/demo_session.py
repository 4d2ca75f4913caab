"""
Live session orchestration.

DemoSession wires a live feed transport to the codec, gap detector, event
handler and reducer, and owns the only reference to the current DemoState.
Everything except the recovery fetch runs synchronously inside the transport
callbacks, so no two events are ever processed at the same time.

Usage:
    session = DemoSession(transport, RecoveryFetcher(ledger_client))
    session.add_listener(lambda state: print(state.status_message))
    session.start()
    ...
    session.reset()
"""

import asyncio
import uuid
from enum import Enum
from typing import Any, Callable, Optional

from config import GapRecoverySettings, config
from constants import HAND_CREATED
from handlers import DemoEventHandler, EventHandlerCallbacks
from logging_config import bind_hand_context, get_logger, session_id_var
from models import actions
from models.actions import DemoAction
from models.demo_state import DemoState, demo_reducer
from models.envelope import FinalizedEnvelope, HandCreated
from services.gap_detector import GapDetector
from services.recovery import RecoveryFetcher
from stores.stream_transport import TransportError, safe_call

logger = get_logger(__name__)

StateListener = Callable[[DemoState], None]


class ConnectionStatus(str, Enum):
    """Live feed connection status."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    COMPLETED = "completed"


class DemoSession:
    """
    One viewer session following one live feed.

    The transport may be anything with connect(on_event, on_error,
    on_complete, on_open) -> disconnect: SseStreamTransport or LedgerPubSub.
    Without a transport, events are fed in through handle_stream_event().
    """

    def __init__(
        self,
        transport: Optional[Any],
        recovery: RecoveryFetcher,
        callbacks: Optional[EventHandlerCallbacks] = None,
        gap_settings: Optional[GapRecoverySettings] = None,
        handler: Optional[DemoEventHandler] = None,
    ):
        """
        Args:
            transport: Live feed transport, or None.
            recovery: Gap-fill fetcher.
            callbacks: Presentation hooks passed to the event handler.
            gap_settings: Stall warning tuning (from config by default).
            handler: Event handler; one dispatching into this session is
                created if omitted.
        """
        self.transport = transport
        self.recovery = recovery
        self.gap_settings = gap_settings or config.gap_recovery
        self.session_id = str(uuid.uuid4())

        self.state = DemoState()
        self.status = ConnectionStatus.IDLE
        self.detector = GapDetector()
        self.handler = handler or DemoEventHandler(self.dispatch, callbacks)

        self._listeners: list[StateListener] = []
        self._disconnect: Optional[Callable[[], None]] = None
        self._recovery_task: Optional[asyncio.Task] = None
        self._has_opened = False
        self._stall_rounds = 0
        self._stalled = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def dispatch(self, action: DemoAction) -> None:
        """Apply an action and notify listeners if the state changed."""
        new_state = demo_reducer(self.state, action)
        if new_state is self.state:
            return
        self.state = new_state
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            safe_call(listener, self.state)

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """
        Subscribe to state changes.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._disconnect is not None

    def start(self) -> None:
        """Connect the transport. No-op while already connected."""
        if self.active:
            return
        if self.transport is None:
            raise RuntimeError("Session has no live feed transport")
        # The transport's read task inherits this context
        session_id_var.set(self.session_id)
        self.status = ConnectionStatus.CONNECTING
        logger.info("Connecting live feed")
        self._disconnect = self.transport.connect(
            self.handle_stream_event,
            self._on_error,
            self._on_complete,
            self._on_open,
        )

    def _on_open(self) -> None:
        if self._has_opened:
            # Buffered events from the previous connection would corrupt ordering
            logger.info("Live feed reconnected; resetting session state")
            self._reset_pipeline()
        self._has_opened = True
        self.status = ConnectionStatus.CONNECTED
        self.dispatch(actions.set_error(None))

    def _on_error(self, error: TransportError) -> None:
        self.status = ConnectionStatus.ERROR
        self.dispatch(actions.set_error(str(error)))

    def _on_complete(self) -> None:
        logger.info("Live feed completed")
        self.status = ConnectionStatus.COMPLETED
        self._disconnect = None

    def reset(self) -> None:
        """
        Tear the session down to idle.

        Closes the transport (cancelling any reconnect wait), cancels an
        in-flight recovery, and resets detector, handler and state together.
        """
        if self._disconnect is not None:
            self._disconnect()
            self._disconnect = None
        self._has_opened = False
        self.status = ConnectionStatus.IDLE
        self._reset_pipeline()

    def _reset_pipeline(self) -> None:
        self._cancel_recovery()
        self.detector.reset()
        self.handler.reset()
        self._stall_rounds = 0
        self._stalled = False
        self.state = DemoState()
        self._notify()

    async def aclose(self) -> None:
        self.reset()
        close = getattr(self.transport, "aclose", None) if self.transport else None
        if close is not None:
            await close()

    # -------------------------------------------------------------------------
    # Event intake
    # -------------------------------------------------------------------------

    def handle_stream_event(self, event) -> None:
        """
        Route one decoded live feed event.

        Finalized envelopes go through the gap detector; everything else goes
        straight to the event handler.
        """
        if isinstance(event, FinalizedEnvelope):
            self._handle_envelope(event)
            return

        if getattr(event, "type", None) == HAND_CREATED:
            # New hand: sequence numbering restarts
            self._cancel_recovery()
            self.detector.reset()
            self._clear_stall()
            bind_hand_context(event.game_id, event.hand_id)
            logger.info(f"Hand {event.hand_id} created with {event.player_count} players")

        self.handler.handle_demo_event(event)

    def begin_hand(self, event: HandCreated, viewer_public_key: Optional[str] = None) -> None:
        """Start a hand announced outside the feed, e.g. by the demo create call."""
        if viewer_public_key:
            self.handler.context.viewer_public_key = viewer_public_key
        self.handle_stream_event(event)

    def _handle_envelope(self, envelope: FinalizedEnvelope) -> None:
        result = self.detector.detect_gaps(envelope)
        self._apply_ready(result.ready_events)

        if result.has_gap:
            logger.with_context(seq_id=envelope.seq_id).debug(
                f"Gap before seq {envelope.seq_id}: missing {result.missing_seq_ids}"
            )
            self._request_recovery(
                envelope.envelope.game_id,
                envelope.envelope.hand_id,
                result.missing_seq_ids,
            )
        elif not self.detector.has_pending_events():
            self._clear_stall()

    def _apply_ready(self, envelopes: list[FinalizedEnvelope]) -> None:
        for envelope in envelopes:
            self.handler.handle_game_envelope(envelope)

    # -------------------------------------------------------------------------
    # Gap recovery
    # -------------------------------------------------------------------------

    @property
    def recovery_in_flight(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    def _request_recovery(self, game_id: int, hand_id: int, missing: list[int]) -> None:
        if self.recovery_in_flight:
            # The next arrival ahead of the gap will ask again
            return
        self._recovery_task = asyncio.get_running_loop().create_task(
            self._recover(game_id, hand_id, missing)
        )

    async def _recover(self, game_id: int, hand_id: int, missing: list[int]) -> None:
        try:
            result = await self.recovery.recover(game_id, hand_id, missing)
            self._apply_ready(self.detector.process_fetched_events(result.envelopes))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error during gap recovery: {e}", exc_info=True)

        still_missing = self.detector.missing_seq_ids()
        if not still_missing:
            self._clear_stall()
            return

        self._stall_rounds += 1
        if self._stall_rounds >= self.gap_settings.stall_warning_attempts and not self._stalled:
            self._stalled = True
            logger.warning(
                f"Gap stalled after {self._stall_rounds} recovery rounds; "
                f"still missing {still_missing}"
            )
            self.dispatch(actions.set_error(
                f"Waiting for missing events ({len(still_missing)} outstanding)"
            ))

    def _cancel_recovery(self) -> None:
        if self._recovery_task is not None:
            self._recovery_task.cancel()
            self._recovery_task = None

    def _clear_stall(self) -> None:
        self._stall_rounds = 0
        if self._stalled:
            self._stalled = False
            logger.info("Gap stall cleared")
            self.dispatch(actions.set_error(None))

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def debug_info(self) -> dict:
        return {
            "session_id": self.session_id,
            "connection_status": self.status.value,
            "recovery_in_flight": self.recovery_in_flight,
            "stall_rounds": self._stall_rounds,
            "stalled": self._stalled,
            "last_seq_id": self.state.last_seq_id,
            **self.detector.debug_info(),
        }
