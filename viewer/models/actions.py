"""
Actions accepted by the demo state reducer.

The action set is closed: every state change the viewer makes goes through one
of the factories below and then through demo_reducer(). Actions are plain
records; they carry no behavior.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from models.cards import Card


class ActionType(str, Enum):
    """All reducer actions."""

    # Hand lifecycle
    INIT_GAME = "init_game"
    SET_VIEWER_PUBLIC_KEY = "set_viewer_public_key"
    START_SHUFFLE = "start_shuffle"
    SHUFFLE_PROGRESS = "shuffle_progress"
    SHUFFLE_COMPLETE = "shuffle_complete"
    START_DEALING = "start_dealing"
    HAND_COMPLETE = "hand_complete"

    # Per-card progress
    CARD_DEALT = "card_dealt"
    BLINDING_SHARE_RECEIVED = "blinding_share_received"
    PARTIAL_UNBLINDING_SHARE_RECEIVED = "partial_unblinding_share_received"
    CARD_DECRYPTABLE = "card_decryptable"
    CARD_REVEALED = "card_revealed"

    # Bookkeeping
    UPDATE_STATUS = "update_status"
    SET_ERROR = "set_error"
    EVENT_PROCESSED = "event_processed"


@dataclass(frozen=True)
class DemoAction:
    """
    A reducer action.

    Attributes:
        type: Which action this is.
        data: Action-specific fields.
    """
    type: ActionType
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "data": self.data}


# =============================================================================
# Action Factories
# =============================================================================


def init_game(
    game_id: int,
    hand_id: int,
    player_count: int,
    public_key: Optional[str] = None,
) -> DemoAction:
    """
    Create an INIT_GAME action.

    Starts a fresh hand; any state from a previous hand is discarded.

    Args:
        game_id: Ledger game id.
        hand_id: Ledger hand id.
        player_count: Seats dealt in this hand.
        public_key: Viewer's public key, if already known.
    """
    return DemoAction(
        type=ActionType.INIT_GAME,
        data={
            "game_id": game_id,
            "hand_id": hand_id,
            "player_count": player_count,
            "public_key": public_key,
        },
    )


def set_viewer_public_key(public_key: str) -> DemoAction:
    return DemoAction(type=ActionType.SET_VIEWER_PUBLIC_KEY, data={"public_key": public_key})


def start_shuffle() -> DemoAction:
    return DemoAction(type=ActionType.START_SHUFFLE)


def shuffle_progress(current_step: int, total_steps: int) -> DemoAction:
    """Create a SHUFFLE_PROGRESS action (steps completed out of total)."""
    return DemoAction(
        type=ActionType.SHUFFLE_PROGRESS,
        data={"current_step": current_step, "total_steps": total_steps},
    )


def shuffle_complete() -> DemoAction:
    return DemoAction(type=ActionType.SHUFFLE_COMPLETE)


def start_dealing(client_deck: Optional[list[Card]] = None) -> DemoAction:
    """
    Create a START_DEALING action.

    Args:
        client_deck: Display-only shuffled deck for the dealing animation.
    """
    return DemoAction(
        type=ActionType.START_DEALING,
        data={"client_deck": list(client_deck or [])},
    )


def card_dealt(seat: int, card_index: int) -> DemoAction:
    return DemoAction(type=ActionType.CARD_DEALT, data={"seat": seat, "card_index": card_index})


def blinding_share_received(
    seat: int,
    card_index: int,
    from_seat: int,
    contributor: str,
    share: Optional[str] = None,
) -> DemoAction:
    """
    Create a BLINDING_SHARE_RECEIVED action.

    Args:
        seat: Seat the card is dealt to.
        card_index: 0 or 1.
        from_seat: Seat of the contributing player, or UNKNOWN_SEAT.
        contributor: Stable contributor key; shares are counted per contributor.
        share: Opaque share value as received.
    """
    return DemoAction(
        type=ActionType.BLINDING_SHARE_RECEIVED,
        data={
            "seat": seat,
            "card_index": card_index,
            "from_seat": from_seat,
            "contributor": contributor,
            "share": share,
        },
    )


def partial_unblinding_share_received(
    seat: int,
    card_index: int,
    from_seat: int,
    contributor: str,
    share: Optional[str] = None,
) -> DemoAction:
    """Create a PARTIAL_UNBLINDING_SHARE_RECEIVED action (see blinding_share_received)."""
    return DemoAction(
        type=ActionType.PARTIAL_UNBLINDING_SHARE_RECEIVED,
        data={
            "seat": seat,
            "card_index": card_index,
            "from_seat": from_seat,
            "contributor": contributor,
            "share": share,
        },
    )


def card_decryptable(seat: int, card_index: int) -> DemoAction:
    return DemoAction(
        type=ActionType.CARD_DECRYPTABLE,
        data={"seat": seat, "card_index": card_index},
    )


def card_revealed(seat: int, card_index: int, card: Card) -> DemoAction:
    return DemoAction(
        type=ActionType.CARD_REVEALED,
        data={"seat": seat, "card_index": card_index, "card": card},
    )


def hand_complete() -> DemoAction:
    return DemoAction(type=ActionType.HAND_COMPLETE)


def update_status(message: str) -> DemoAction:
    return DemoAction(type=ActionType.UPDATE_STATUS, data={"message": message})


def set_error(error: Optional[str]) -> DemoAction:
    """Set or clear (None) the coarse error message."""
    return DemoAction(type=ActionType.SET_ERROR, data={"error": error})


def event_processed(seq_id: int) -> DemoAction:
    return DemoAction(type=ActionType.EVENT_PROCESSED, data={"seq_id": seq_id})
