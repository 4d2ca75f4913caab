"""
Demo state and its reducer.

DemoState is the viewer's whole picture of one hand: connection identity,
shuffle progress, per-card decryption progress and the deal queue. It is
immutable; demo_reducer() returns a new state for every action and is the only
way the picture changes.

Usage:
    state = DemoState()
    state = demo_reducer(state, init_game(1, 1, player_count=3))
    state = demo_reducer(state, start_shuffle())
    print(state.phase, shuffle_progress_percent(state))
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from constants import CARDS_PER_SEAT, DEFAULT_PLAYER_COUNT, VIEWER_SEAT
from models.actions import ActionType, DemoAction
from models.cards import Card

CardKey = tuple[int, int]


class ClientPhase(str, Enum):
    """Client-side projection of the hand lifecycle."""
    IDLE = "idle"
    SHUFFLING = "shuffling"
    DEALING = "dealing"
    COMPLETE = "complete"


# Each phase may only be entered from the one before it
PHASE_PREDECESSOR = {
    ClientPhase.SHUFFLING: ClientPhase.IDLE,
    ClientPhase.DEALING: ClientPhase.SHUFFLING,
    ClientPhase.COMPLETE: ClientPhase.DEALING,
}


@dataclass(frozen=True)
class CardDecryptionState:
    """
    Decryption progress of one hole card.

    Attributes:
        position: Card index within the seat (0 or 1).
        target_seat: Seat the card is dealt to.
        target_public_key: Public key of the receiving player, if known.
        blinding_shares: Contributor key -> opaque share.
        partial_unblinding_shares: Contributor key -> opaque share.
        required_shares_per_type: Shares of each kind needed (participant count).
        dealt: Whether the deal animation for this card has been triggered.
        decryptable: Mirrors the ledger's card_decryptable notice.
        revealed: Face is shown. Only ever true for the viewer's seat.
        display_card: The face, when revealed.
        reveal_received: A reveal arrived, whether or not it was shown.
    """
    position: int
    target_seat: int
    target_public_key: Optional[str] = None
    blinding_shares: dict[str, str] = field(default_factory=dict)
    partial_unblinding_shares: dict[str, str] = field(default_factory=dict)
    required_shares_per_type: int = DEFAULT_PLAYER_COUNT
    dealt: bool = False
    decryptable: bool = False
    revealed: bool = False
    display_card: Optional[Card] = None
    reveal_received: bool = False

    def has_all_shares(self) -> bool:
        return (
            len(self.blinding_shares) >= self.required_shares_per_type
            and len(self.partial_unblinding_shares) >= self.required_shares_per_type
        )

    def share_progress(self) -> float:
        """Fraction of all shares (both kinds) collected, 0.0 to 1.0."""
        total_required = self.required_shares_per_type * 2
        if total_required == 0:
            return 0.0
        collected = len(self.blinding_shares) + len(self.partial_unblinding_shares)
        return min(collected / total_required, 1.0)

    def share_status_text(self) -> str:
        if self.revealed and self.display_card is not None:
            return self.display_card.label
        if self.has_all_shares():
            return "All shares collected"

        total_required = self.required_shares_per_type * 2
        collected = len(self.blinding_shares) + len(self.partial_unblinding_shares)
        if collected == 0:
            return "Waiting for shares..."
        return f"Collecting shares ({collected}/{total_required})..."

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "target_seat": self.target_seat,
            "target_public_key": self.target_public_key,
            "blinding_shares": len(self.blinding_shares),
            "partial_unblinding_shares": len(self.partial_unblinding_shares),
            "required_shares_per_type": self.required_shares_per_type,
            "dealt": self.dealt,
            "decryptable": self.decryptable,
            "revealed": self.revealed,
            "display_card": self.display_card.to_dict() if self.display_card else None,
            "status": self.share_status_text(),
        }


@dataclass(frozen=True)
class DemoState:
    """
    The viewer's reconstruction of one hand.

    Attributes:
        game_id: Ledger game id, once known.
        hand_id: Ledger hand id, once known.
        viewer_public_key: Public key of the player at the viewer seat.
        viewer_seat: The only seat whose cards are ever shown face up.
        player_count: Seats dealt in this hand.
        phase: Client-side phase.
        total_shuffle_steps: Shuffle messages expected.
        current_shuffle_step: Shuffle messages seen.
        client_deck: Display-only deck used by the deal animation.
        cards: (seat, card_index) -> CardDecryptionState.
        deal_queue: Deal animation order as (seat, card_index) pairs.
        last_seq_id: Highest sequence id applied; diagnostic only.
        status_message: Human-readable progress line.
        error_message: Coarse error for the presentation layer.
    """
    game_id: Optional[int] = None
    hand_id: Optional[int] = None
    viewer_public_key: Optional[str] = None
    viewer_seat: int = VIEWER_SEAT
    player_count: int = DEFAULT_PLAYER_COUNT
    phase: ClientPhase = ClientPhase.IDLE
    total_shuffle_steps: int = 0
    current_shuffle_step: int = 0
    client_deck: tuple[Card, ...] = ()
    cards: dict[CardKey, CardDecryptionState] = field(default_factory=dict)
    deal_queue: tuple[CardKey, ...] = ()
    last_seq_id: int = -1
    status_message: str = "Initializing..."
    error_message: Optional[str] = None

    def card(self, seat: int, card_index: int) -> Optional[CardDecryptionState]:
        return self.cards.get((seat, card_index))

    def to_dict(self) -> dict:
        """Serialize for the viewer API."""
        return {
            "game_id": self.game_id,
            "hand_id": self.hand_id,
            "viewer_public_key": self.viewer_public_key,
            "viewer_seat": self.viewer_seat,
            "player_count": self.player_count,
            "phase": self.phase.value,
            "total_shuffle_steps": self.total_shuffle_steps,
            "current_shuffle_step": self.current_shuffle_step,
            "shuffle_progress": shuffle_progress_percent(self),
            "cards": [
                {"seat": seat, "card_index": index, **card.to_dict()}
                for (seat, index), card in sorted(self.cards.items())
            ],
            "deal_queue": [
                {"seat": seat, "card_index": index} for seat, index in self.deal_queue
            ],
            "last_seq_id": self.last_seq_id,
            "status_message": self.status_message,
            "error_message": self.error_message,
        }


# =============================================================================
# Helpers
# =============================================================================


def deal_order(player_count: int) -> list[CardKey]:
    """
    Dealing order: card 0 for every seat, then card 1 for every seat.

    Args:
        player_count: Seats at the table.

    Returns:
        (seat, card_index) pairs in the order cards leave the deck.
    """
    return [
        (seat, card_index)
        for card_index in range(CARDS_PER_SEAT)
        for seat in range(player_count)
    ]


def shuffle_progress_percent(state: DemoState) -> int:
    """Shuffle progress rounded to a whole percentage."""
    if state.total_shuffle_steps <= 0:
        return 0
    return round(state.current_shuffle_step / state.total_shuffle_steps * 100)


def cards_for_seat(state: DemoState, seat: int) -> list[CardDecryptionState]:
    cards = [card for (s, _), card in state.cards.items() if s == seat]
    return sorted(cards, key=lambda c: c.position)


def viewer_cards_revealed(state: DemoState) -> bool:
    """True once both of the viewer's hole cards are face up."""
    viewer_cards = cards_for_seat(state, state.viewer_seat)
    return len(viewer_cards) == CARDS_PER_SEAT and all(c.revealed for c in viewer_cards)


def _card_label(state: DemoState, seat: int, card_index: int) -> str:
    if seat == state.viewer_seat:
        return f"your card {card_index + 1}"
    return f"card {card_index + 1} of Player {seat}"


def _enter_phase(state: DemoState, target: ClientPhase, **changes) -> DemoState:
    """Move to `target` only from its predecessor; otherwise leave state unchanged."""
    if state.phase != PHASE_PREDECESSOR[target]:
        return state
    return replace(state, phase=target, **changes)


def _update_card(state: DemoState, key: CardKey, **changes) -> Optional[DemoState]:
    card = state.cards.get(key)
    if card is None:
        return None
    cards = dict(state.cards)
    cards[key] = replace(card, **changes)
    return replace(state, cards=cards)


# =============================================================================
# Reducer
# =============================================================================


def _apply_init_game(state: DemoState, data: dict) -> DemoState:
    public_key = data.get("public_key") or state.viewer_public_key
    return DemoState(
        game_id=data["game_id"],
        hand_id=data["hand_id"],
        viewer_public_key=public_key,
        player_count=data["player_count"],
        status_message=(
            f"Game {data['game_id']} initialized with {data['player_count']} players"
        ),
    )


def _apply_set_viewer_public_key(state: DemoState, data: dict) -> DemoState:
    return replace(state, viewer_public_key=data["public_key"])


def _apply_start_shuffle(state: DemoState, data: dict) -> DemoState:
    return _enter_phase(
        state,
        ClientPhase.SHUFFLING,
        current_shuffle_step=0,
        status_message="Starting shuffle protocol...",
    )


def _apply_shuffle_progress(state: DemoState, data: dict) -> DemoState:
    if state.phase != ClientPhase.SHUFFLING:
        return state
    current, total = data["current_step"], data["total_steps"]
    if total > 0:
        message = f"Shuffling deck: {current}/{total}"
    else:
        message = f"Shuffling deck: step {current}"
    return replace(
        state,
        current_shuffle_step=current,
        total_shuffle_steps=total,
        status_message=message,
    )


def _apply_shuffle_complete(state: DemoState, data: dict) -> DemoState:
    return _enter_phase(
        state,
        ClientPhase.DEALING,
        status_message="Shuffle complete! Preparing to deal cards...",
    )


def _apply_start_dealing(state: DemoState, data: dict) -> DemoState:
    # Seeding happens once per hand
    if state.cards or state.phase == ClientPhase.COMPLETE:
        return state

    order = deal_order(state.player_count)
    cards = {
        (seat, card_index): CardDecryptionState(
            position=card_index,
            target_seat=seat,
            target_public_key=(
                state.viewer_public_key if seat == state.viewer_seat else None
            ),
            required_shares_per_type=state.player_count,
        )
        for seat, card_index in order
    }
    new_state = replace(
        state,
        client_deck=tuple(data.get("client_deck") or ()),
        cards=cards,
        deal_queue=tuple(order),
        status_message="Dealing hole cards...",
    )
    if new_state.phase == ClientPhase.SHUFFLING:
        new_state = replace(new_state, phase=ClientPhase.DEALING)
    return new_state


def _apply_card_dealt(state: DemoState, data: dict) -> DemoState:
    seat, card_index = data["seat"], data["card_index"]
    new_state = _update_card(state, (seat, card_index), dealt=True)
    if new_state is None:
        return state
    if seat == state.viewer_seat:
        message = f"Card {card_index + 1} dealt to you"
    else:
        message = f"Card {card_index + 1} dealt to Player {seat}"
    return replace(new_state, status_message=message)


def _apply_share(state: DemoState, data: dict, attr: str, kind: str) -> DemoState:
    key = (data["seat"], data["card_index"])
    card = state.cards.get(key)
    if card is None:
        return state

    shares = dict(getattr(card, attr))
    contributor = data.get("contributor") or f"seat:{data['from_seat']}"
    shares[contributor] = data.get("share") or f"{kind}_share_from_{contributor}"
    new_state = _update_card(state, key, **{attr: shares})

    if data["seat"] != state.viewer_seat:
        return new_state
    return replace(
        new_state,
        status_message=(
            f"Collecting {kind} shares for your card {data['card_index'] + 1}... "
            f"({len(shares)}/{card.required_shares_per_type})"
        ),
    )


def _apply_blinding_share_received(state: DemoState, data: dict) -> DemoState:
    return _apply_share(state, data, "blinding_shares", "blinding")


def _apply_partial_unblinding_share_received(state: DemoState, data: dict) -> DemoState:
    return _apply_share(state, data, "partial_unblinding_shares", "unblinding")


def _apply_card_decryptable(state: DemoState, data: dict) -> DemoState:
    seat, card_index = data["seat"], data["card_index"]
    new_state = _update_card(state, (seat, card_index), decryptable=True)
    if new_state is None:
        return state
    if seat != state.viewer_seat:
        return new_state
    return replace(
        new_state,
        status_message=f"Your card {card_index + 1} is ready to reveal!",
    )


def _apply_card_revealed(state: DemoState, data: dict) -> DemoState:
    seat, card_index = data["seat"], data["card_index"]
    if seat != state.viewer_seat:
        # Other seats stay face down no matter what the ledger sends
        new_state = _update_card(state, (seat, card_index), reveal_received=True)
        return new_state if new_state is not None else state

    new_state = _update_card(
        state,
        (seat, card_index),
        revealed=True,
        display_card=data["card"],
        reveal_received=True,
    )
    if new_state is None:
        return state
    return replace(new_state, status_message=f"Your card {card_index + 1} revealed!")


def _apply_hand_complete(state: DemoState, data: dict) -> DemoState:
    return _enter_phase(state, ClientPhase.COMPLETE, status_message="Hand complete!")


def _apply_update_status(state: DemoState, data: dict) -> DemoState:
    return replace(state, status_message=data["message"])


def _apply_set_error(state: DemoState, data: dict) -> DemoState:
    return replace(state, error_message=data.get("error"))


def _apply_event_processed(state: DemoState, data: dict) -> DemoState:
    return replace(state, last_seq_id=max(state.last_seq_id, data["seq_id"]))


REDUCERS: dict[ActionType, Callable[[DemoState, dict], DemoState]] = {
    ActionType.INIT_GAME: _apply_init_game,
    ActionType.SET_VIEWER_PUBLIC_KEY: _apply_set_viewer_public_key,
    ActionType.START_SHUFFLE: _apply_start_shuffle,
    ActionType.SHUFFLE_PROGRESS: _apply_shuffle_progress,
    ActionType.SHUFFLE_COMPLETE: _apply_shuffle_complete,
    ActionType.START_DEALING: _apply_start_dealing,
    ActionType.CARD_DEALT: _apply_card_dealt,
    ActionType.BLINDING_SHARE_RECEIVED: _apply_blinding_share_received,
    ActionType.PARTIAL_UNBLINDING_SHARE_RECEIVED: _apply_partial_unblinding_share_received,
    ActionType.CARD_DECRYPTABLE: _apply_card_decryptable,
    ActionType.CARD_REVEALED: _apply_card_revealed,
    ActionType.HAND_COMPLETE: _apply_hand_complete,
    ActionType.UPDATE_STATUS: _apply_update_status,
    ActionType.SET_ERROR: _apply_set_error,
    ActionType.EVENT_PROCESSED: _apply_event_processed,
}


def demo_reducer(state: DemoState, action: DemoAction) -> DemoState:
    """
    Apply one action and return the resulting state.

    Unknown action types and actions that do not fit the current phase
    return the state unchanged.

    Args:
        state: Current state (not modified).
        action: Action to apply.

    Returns:
        The new state.
    """
    reducer = REDUCERS.get(action.type)
    if reducer is None:
        return state
    return reducer(state, action.data)


def reduce_all(actions: list[DemoAction], state: Optional[DemoState] = None) -> DemoState:
    """Fold a list of actions over a state (a fresh one by default)."""
    state = state or DemoState()
    for action in actions:
        state = demo_reducer(state, action)
    return state
