"""Live feed event handlers for the protocol viewer.

Each handler corresponds to a single event type from the ledger feed and turns
it into reducer actions. Handlers are dispatched via the HANDLERS dict;
protocol messages inside game_event are dispatched via GAME_MESSAGE_HANDLERS.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional

from constants import (
    CARD_DECRYPTABLE,
    CARDS_PER_SEAT,
    COMMUNITY_DECRYPTED,
    DEFAULT_PLAYER_COUNT,
    GAME_EVENT,
    HAND_COMPLETED,
    HAND_CREATED,
    HOLE_CARDS_DECRYPTED,
    PLAYER_CREATED,
    VIEWER_SEAT,
)
from models import actions
from models.actions import DemoAction
from models.cards import shuffled_display_deck
from models.demo_state import deal_order
from models.envelope import (
    Actor,
    CardDecryptable,
    CommunityDecrypted,
    FinalizedEnvelope,
    HandCompleted,
    HandCreated,
    HoleCardsDecrypted,
    PlayerCreated,
)

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """Counters that span several events of one hand."""

    shuffle_event_count: int = 0
    total_shuffle_events: Optional[int] = None
    dealing_started: bool = False
    shuffle_completed: bool = False
    viewer_public_key: Optional[str] = None
    player_count: int = DEFAULT_PLAYER_COUNT
    missing_total_reported: bool = False

    def reset(self) -> None:
        self.shuffle_event_count = 0
        self.total_shuffle_events = None
        self.dealing_started = False
        self.shuffle_completed = False
        self.viewer_public_key = None
        self.player_count = DEFAULT_PLAYER_COUNT
        self.missing_total_reported = False


@dataclass
class EventHandlerCallbacks:
    """Optional presentation hooks. Exceptions raised by them are logged and ignored."""

    on_shuffle_progress: Optional[Callable[[int, int], None]] = None
    on_card_dealt: Optional[Callable[[int, int, int], None]] = None
    on_card_reveal: Optional[Callable[[int, int], None]] = None
    on_phase_change: Optional[Callable[[str], None]] = None


def card_slot(card_in_deck_position: int) -> tuple[int, int]:
    """Map a deck position to (target seat, card index): two cards per seat in seat order."""
    return card_in_deck_position // CARDS_PER_SEAT, card_in_deck_position % CARDS_PER_SEAT


def contributor_key(actor: Actor) -> str:
    """Stable key identifying who contributed a share."""
    if actor.kind == "player":
        return f"seat:{actor.seat_id}"
    if actor.kind == "shuffler":
        return f"shuffler:{actor.shuffler_id}"
    return "none"


def _viewer_key_from_snapshot(snapshot: Optional[dict]) -> Optional[str]:
    """Find the viewer seat's public key in a hand_created snapshot, if present."""
    if not snapshot:
        return None
    players = snapshot.get("players")
    if isinstance(players, dict):
        players = list(players.values())
    if not isinstance(players, list):
        return None
    for player in players:
        if isinstance(player, dict) and player.get("seat") == VIEWER_SEAT:
            return player.get("public_key")
    return None


# ---------------------------------------------------------------------------
# Feed event handlers
# ---------------------------------------------------------------------------


def handle_player_created(event: PlayerCreated, handler: "DemoEventHandler") -> None:
    if event.seat == VIEWER_SEAT:
        handler.context.viewer_public_key = event.public_key
        logger.debug(f"Viewer public key captured: {event.public_key[:18]}...")
        handler.dispatch(actions.set_viewer_public_key(event.public_key))

    handler.dispatch(actions.update_status(f"Player {event.seat + 1} joined"))


def handle_hand_created(event: HandCreated, handler: "DemoEventHandler") -> None:
    ctx = handler.context
    ctx.shuffle_event_count = 0
    ctx.total_shuffle_events = event.shuffler_count
    ctx.dealing_started = False
    ctx.shuffle_completed = False
    ctx.missing_total_reported = False
    ctx.player_count = event.player_count

    # The viewer's key may arrive after hand_created; fall back to the snapshot
    if not ctx.viewer_public_key:
        ctx.viewer_public_key = _viewer_key_from_snapshot(event.snapshot)

    handler.dispatch(actions.init_game(
        game_id=event.game_id,
        hand_id=event.hand_id,
        player_count=event.player_count,
        public_key=ctx.viewer_public_key,
    ))
    handler.dispatch(actions.start_shuffle())
    handler.notify("on_phase_change", "shuffling")

    if ctx.total_shuffle_events:
        handler.dispatch(actions.shuffle_progress(0, ctx.total_shuffle_events))

    handler.dispatch(actions.update_status("Hand started - shuffling deck..."))


def handle_game_event(event: FinalizedEnvelope, handler: "DemoEventHandler") -> None:
    handler.dispatch(actions.event_processed(event.seq_id))

    message_handler = GAME_MESSAGE_HANDLERS.get(event.message.type)
    if message_handler is None:
        # Betting and showdown messages carry nothing the dealing view shows
        return
    message_handler(event, handler)


def handle_community_decrypted(event: CommunityDecrypted, handler: "DemoEventHandler") -> None:
    labels = " ".join(card.label for card in event.cards)
    handler.dispatch(actions.update_status(f"Community cards: {labels}"))


def handle_card_decryptable(event: CardDecryptable, handler: "DemoEventHandler") -> None:
    handler.dispatch(actions.card_decryptable(event.seat, event.card_position))

    if event.seat == VIEWER_SEAT:
        message = f"Your card {event.card_position + 1} is ready to reveal!"
    else:
        message = f"Player {event.seat}'s card ready"
    handler.dispatch(actions.update_status(message))


def handle_hole_cards_decrypted(event: HoleCardsDecrypted, handler: "DemoEventHandler") -> None:
    handler.dispatch(actions.card_revealed(event.seat, event.card_position, event.card))
    handler.notify("on_card_reveal", event.seat, event.card_position)

    if event.seat == VIEWER_SEAT:
        message = f"Your {event.card.label} revealed!"
    else:
        # Never echo another seat's card face
        message = f"Player {event.seat} card revealed"
    handler.dispatch(actions.update_status(message))


def handle_hand_completed(event: HandCompleted, handler: "DemoEventHandler") -> None:
    handler.dispatch(actions.hand_complete())
    handler.notify("on_phase_change", "complete")
    handler.dispatch(actions.update_status("Hand complete!"))


# ---------------------------------------------------------------------------
# Protocol message handlers (inside game_event)
# ---------------------------------------------------------------------------


def handle_shuffle_message(event: FinalizedEnvelope, handler: "DemoEventHandler") -> None:
    ctx = handler.context
    ctx.shuffle_event_count += 1
    total = ctx.total_shuffle_events

    if not total:
        # No authoritative shuffler count: keep counting, never guess a total
        if not ctx.missing_total_reported:
            ctx.missing_total_reported = True
            logger.warning("Shuffle message received without a known shuffler count")
            handler.dispatch(actions.set_error(
                "Shuffle progress unavailable: shuffler count unknown"
            ))
        handler.dispatch(actions.shuffle_progress(ctx.shuffle_event_count, 0))
        return

    handler.dispatch(actions.shuffle_progress(ctx.shuffle_event_count, total))
    handler.notify("on_shuffle_progress", ctx.shuffle_event_count, total)

    if ctx.shuffle_event_count >= total and not ctx.shuffle_completed:
        ctx.shuffle_completed = True
        handler.dispatch(actions.shuffle_complete())


def _start_dealing(handler: "DemoEventHandler") -> None:
    ctx = handler.context
    ctx.dealing_started = True

    if not ctx.shuffle_completed:
        ctx.shuffle_completed = True
        handler.dispatch(actions.shuffle_complete())

    handler.dispatch(actions.start_dealing(shuffled_display_deck(handler.rng)))
    handler.notify("on_phase_change", "dealing")

    for deck_position, (seat, card_index) in enumerate(deal_order(ctx.player_count)):
        handler.dispatch(actions.card_dealt(seat, card_index))
        handler.notify("on_card_dealt", seat, card_index, deck_position)


def _share_target(event: FinalizedEnvelope, handler: "DemoEventHandler") -> Optional[tuple[int, int]]:
    seat, card_index = card_slot(event.message.card_in_deck_position)
    if seat >= handler.context.player_count:
        logger.debug(
            f"Share for deck position {event.message.card_in_deck_position} "
            f"is outside the dealt hole cards",
        )
        return None
    return seat, card_index


def handle_blinding_message(event: FinalizedEnvelope, handler: "DemoEventHandler") -> None:
    # The first blinding share marks the start of dealing
    if not handler.context.dealing_started:
        _start_dealing(handler)

    target = _share_target(event, handler)
    if target is None:
        return
    actor = event.envelope.actor
    handler.dispatch(actions.blinding_share_received(
        seat=target[0],
        card_index=target[1],
        from_seat=actor.seat,
        contributor=contributor_key(actor),
        share=event.message.share,
    ))


def handle_partial_unblinding_message(event: FinalizedEnvelope, handler: "DemoEventHandler") -> None:
    target = _share_target(event, handler)
    if target is None:
        return
    actor = event.envelope.actor
    handler.dispatch(actions.partial_unblinding_share_received(
        seat=target[0],
        card_index=target[1],
        from_seat=actor.seat,
        contributor=contributor_key(actor),
        share=event.message.share,
    ))


# ---------------------------------------------------------------------------
# Handler dispatch tables
# ---------------------------------------------------------------------------

HANDLERS = {
    PLAYER_CREATED: handle_player_created,
    HAND_CREATED: handle_hand_created,
    GAME_EVENT: handle_game_event,
    COMMUNITY_DECRYPTED: handle_community_decrypted,
    CARD_DECRYPTABLE: handle_card_decryptable,
    HOLE_CARDS_DECRYPTED: handle_hole_cards_decrypted,
    HAND_COMPLETED: handle_hand_completed,
}

GAME_MESSAGE_HANDLERS = {
    "shuffle": handle_shuffle_message,
    "blinding": handle_blinding_message,
    "partial_unblinding": handle_partial_unblinding_message,
}


class DemoEventHandler:
    """
    Turns decoded feed events into reducer actions.

    One instance per session; reset() between hands. game_event envelopes
    must be passed in sequence order (the gap detector's job).
    """

    def __init__(
        self,
        dispatch: Callable[[DemoAction], None],
        callbacks: Optional[EventHandlerCallbacks] = None,
        context: Optional[HandlerContext] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            dispatch: Receives every action produced.
            callbacks: Presentation hooks.
            context: Cross-event counters; a fresh one by default.
            rng: Random source for the display deck.
        """
        self.dispatch = dispatch
        self.callbacks = callbacks or EventHandlerCallbacks()
        self.context = context or HandlerContext()
        self.rng = rng

    def handle_demo_event(self, event) -> None:
        """Dispatch one decoded feed event. Unknown event types are ignored."""
        event_type = getattr(event, "type", None)
        handler = HANDLERS.get(event_type)
        if handler is None:
            return
        self._run(handler, event, event_type)

    def handle_game_envelope(self, envelope: FinalizedEnvelope) -> None:
        """Apply one finalized envelope released in sequence order."""
        self._run(handle_game_event, envelope, GAME_EVENT)

    def _run(self, handler, event, event_type: str) -> None:
        try:
            handler(event, self)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping {event_type} event that could not be handled: {e}")

    def notify(self, name: str, *args) -> None:
        callback = getattr(self.callbacks, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Callback {name} failed: {e}", exc_info=True)

    def reset(self) -> None:
        """Clear cross-event counters before a new hand."""
        self.context.reset()
