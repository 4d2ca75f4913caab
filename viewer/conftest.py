"""
Shared payload builders for the viewer test suite.

Builders are plain functions so they can be called directly; the fixtures
below expose them to test modules in both test directories.
"""

import pytest

from models.envelope import FinalizedEnvelope

DECK_HEX = [f"0x{i:04x}" for i in range(52)]


# =============================================================================
# Protocol messages
# =============================================================================

def shuffle_message(turn_index: int = 0) -> dict:
    return {
        "type": "shuffle",
        "turn_index": turn_index,
        "deck_in": list(DECK_HEX),
        "deck_out": list(reversed(DECK_HEX)),
        "proof": "0xfeed",
    }


def blinding_message(position: int, share: str = "0xb1", target: str = "0xbeef") -> dict:
    return {
        "type": "blinding",
        "card_in_deck_position": position,
        "share": share,
        "target_player_public_key": target,
    }


def partial_unblinding_message(position: int, share: str = "0xc1", target: str = "0xbeef") -> dict:
    return {
        "type": "partial_unblinding",
        "card_in_deck_position": position,
        "share": share,
        "target_player_public_key": target,
    }


def player_actor(seat: int) -> dict:
    return {"player": {"seat_id": seat, "player_id": 100 + seat}}


def shuffler_actor(shuffler_id: int) -> dict:
    return {"shuffler": {"shuffler_id": shuffler_id}}


# =============================================================================
# Envelopes
# =============================================================================

def finalized_payload(
    seq_id: int,
    message: dict = None,
    actor=None,
    game_id: int = 1,
    hand_id: int = 1,
    phase: str = "dealing",
) -> dict:
    """Nested finalized envelope as the ledger serializes it."""
    return {
        "envelope": {
            "hand_id": hand_id,
            "game_id": game_id,
            "actor": actor if actor is not None else shuffler_actor(0),
            "nonce": seq_id,
            "public_key": "0x0a0b",
            "message": {
                "value": message if message is not None else shuffle_message(),
                "signature": "0x5151",
                "transcript": [],
            },
        },
        "snapshot_status": "success",
        "applied_phase": phase,
        "snapshot_sequence_id": seq_id,
    }


def build_envelope(seq_id: int, message: dict = None, **kwargs) -> FinalizedEnvelope:
    return FinalizedEnvelope.model_validate(finalized_payload(seq_id, message, **kwargs))


def game_event_payload(seq_id: int, message: dict = None, **kwargs) -> dict:
    return {"type": "game_event", **finalized_payload(seq_id, message, **kwargs)}


def hand_created_payload(
    player_count: int = 3,
    shuffler_count=2,
    game_id: int = 1,
    hand_id: int = 1,
) -> dict:
    payload = {
        "type": "hand_created",
        "game_id": game_id,
        "hand_id": hand_id,
        "player_count": player_count,
    }
    if shuffler_count is not None:
        payload["shuffler_count"] = shuffler_count
    return payload


def demo_snapshot(player_count: int = 3, shuffler_count: int = 2) -> dict:
    """Initial table snapshot returned by the demo create call (one empty seat)."""
    seating = {str(seat): 100 + seat for seat in range(player_count)}
    seating[str(player_count)] = None
    return {
        "game_id": 2,
        "hand_id": 1,
        "seating": seating,
        "players": {
            str(100 + seat): {"seat": seat, "public_key": f"0x{seat:02x}ab"}
            for seat in range(player_count)
        },
        "shufflers": {str(i): {"public_key": f"0x5{i}"} for i in range(shuffler_count)},
    }


def ledger_row(seq_id: int, message: dict = None, **overrides) -> dict:
    """A ledger events-table row as published on the broker channel."""
    row = {
        "hand_id": 1,
        "game_id": 1,
        "entity_kind": 1,
        "entity_id": 7,
        "actor_kind": 2,
        "seat_id": None,
        "shuffler_id": 7,
        "public_key": "\\x0a0b",
        "nonce": seq_id,
        "snapshot_number": seq_id,
        "is_successful": True,
        "failure_message": None,
        "resulting_phase": "shuffling",
        "payload": message if message is not None else shuffle_message(),
        "signature": "5151",
    }
    row.update(overrides)
    return row


@pytest.fixture
def make_envelope():
    return build_envelope
