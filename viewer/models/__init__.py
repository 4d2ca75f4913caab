"""Models package for the protocol viewer."""

from .cards import Card, Suit, decode_card, encode_card
from .envelope import (
    Actor,
    DecodeError,
    Envelope,
    FinalizedEnvelope,
    Phase,
    SnapshotStatus,
    decode_finalized_envelope,
    decode_stream_event,
    map_hand_message,
    map_ledger_row,
)
from .actions import ActionType, DemoAction
from .demo_state import CardDecryptionState, ClientPhase, DemoState, demo_reducer

__all__ = [
    # Cards
    "Card",
    "Suit",
    "decode_card",
    "encode_card",
    # Wire envelopes
    "Actor",
    "DecodeError",
    "Envelope",
    "FinalizedEnvelope",
    "Phase",
    "SnapshotStatus",
    "decode_finalized_envelope",
    "decode_stream_event",
    "map_hand_message",
    "map_ledger_row",
    # Reducer
    "ActionType",
    "DemoAction",
    "CardDecryptionState",
    "ClientPhase",
    "DemoState",
    "demo_reducer",
]
