"""
Envelope codec for the ledger's live feed and gap-fill responses.

Every payload that enters the viewer passes through this module. Validation is
structural and exhaustive over the closed set of protocol message variants;
anything that does not match raises DecodeError and is dropped by the caller.
Cryptographic fields (ciphertexts, proofs, shares) are checked only for being
hex-encoded and are otherwise opaque.

Usage:
    event = decode_stream_event("game_event", raw_json)
    if isinstance(event, FinalizedEnvelope):
        print(event.seq_id, event.message.type)
"""

import json
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from constants import DECK_SIZE, MAX_SEATS, UNKNOWN_SEAT
from models.cards import Card


class DecodeError(ValueError):
    """A payload could not be decoded into a known message."""

    def __init__(self, message: str, event_name: Optional[str] = None):
        super().__init__(message)
        self.event_name = event_name


HEX_PATTERN = r"^(?:0x|\\x)?[0-9a-fA-F]+$"

HexString = Annotated[str, StringConstraints(pattern=HEX_PATTERN)]
SeatId = Annotated[int, Field(ge=0, le=255)]
DeckPosition = Annotated[int, Field(ge=0, le=255)]
HoleCardIndex = Annotated[int, Field(ge=0, le=1)]
Chips = Union[NonNegativeInt, Annotated[str, StringConstraints(pattern=r"^\d+$")]]


class WireModel(BaseModel):
    """Base for feed payloads: snake_case on the wire, camelCase also accepted."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# Envelope Metadata
# =============================================================================


class Phase(str, Enum):
    """Server-authoritative hand phase recorded with each finalized envelope."""
    PENDING = "pending"
    SHUFFLING = "shuffling"
    DEALING = "dealing"
    BETTING = "betting"
    REVEALS = "reveals"
    SHOWDOWN = "showdown"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class Actor(WireModel):
    """
    Who produced an envelope.

    The ledger serializes this as "none", {"player": {...}} or
    {"shuffler": {...}}; a flat {"kind": ...} form is accepted as well.
    """

    kind: Literal["none", "player", "shuffler"]
    seat_id: Optional[SeatId] = None
    player_id: Optional[NonNegativeInt] = None
    shuffler_id: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_wire_form(cls, value: Any) -> Any:
        if value is None or value == "none":
            return {"kind": "none"}
        if isinstance(value, dict) and "kind" not in value:
            for kind in ("player", "shuffler"):
                if kind in value:
                    inner = value[kind]
                    if not isinstance(inner, dict):
                        raise ValueError(f"{kind} actor must be an object")
                    return {"kind": kind, **inner}
        return value

    @model_validator(mode="after")
    def _check_ids(self) -> "Actor":
        if self.kind == "player" and (self.seat_id is None or self.player_id is None):
            raise ValueError("player actor requires seat_id and player_id")
        if self.kind == "shuffler" and self.shuffler_id is None:
            raise ValueError("shuffler actor requires shuffler_id")
        return self

    @property
    def seat(self) -> int:
        """Seat of the contributing player, or UNKNOWN_SEAT for shufflers/none."""
        if self.kind == "player" and self.seat_id is not None:
            return self.seat_id
        return UNKNOWN_SEAT


class SnapshotStatus(WireModel):
    """
    Outcome of applying the envelope to the ledger snapshot.

    Wire forms: "success", {"failure": "reason"}, {"failure": {"reason": ...}}.
    """

    ok: bool
    reason: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_wire_form(cls, value: Any) -> Any:
        if value == "success":
            return {"ok": True}
        if isinstance(value, dict):
            if value.get("status") == "success":
                return {"ok": True}
            if value.get("status") == "failure":
                return {"ok": False, "reason": value.get("reason")}
            if "failure" in value:
                failure = value["failure"]
                if isinstance(failure, dict):
                    failure = failure.get("reason")
                return {"ok": False, "reason": failure}
        return value

    @model_validator(mode="after")
    def _require_reason(self) -> "SnapshotStatus":
        if not self.ok and not self.reason:
            raise ValueError("failure status requires a reason")
        return self


# =============================================================================
# Protocol Messages
# =============================================================================


class ShuffleMessage(WireModel):
    type: Literal["shuffle"]
    turn_index: int = Field(ge=0, le=0xFFFF)
    deck_in: list[HexString] = Field(min_length=DECK_SIZE, max_length=DECK_SIZE)
    deck_out: list[HexString] = Field(min_length=DECK_SIZE, max_length=DECK_SIZE)
    proof: HexString


class BlindingMessage(WireModel):
    type: Literal["blinding"]
    card_in_deck_position: DeckPosition
    share: HexString
    target_player_public_key: HexString


class PartialUnblindingMessage(WireModel):
    type: Literal["partial_unblinding"]
    card_in_deck_position: DeckPosition
    share: HexString
    target_player_public_key: HexString


class BetAmount(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    to: Chips


class BetTo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    bet_to: BetAmount = Field(alias="BetTo")


class RaiseTo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    raise_to: BetAmount = Field(alias="RaiseTo")


PlayerBetAction = Union[Literal["Fold", "Check", "Call", "AllIn"], BetTo, RaiseTo]


class PlayerPreflopMessage(WireModel):
    type: Literal["player_preflop"]
    action: PlayerBetAction


class PlayerFlopMessage(WireModel):
    type: Literal["player_flop"]
    action: PlayerBetAction


class PlayerTurnMessage(WireModel):
    type: Literal["player_turn"]
    action: PlayerBetAction


class PlayerRiverMessage(WireModel):
    type: Literal["player_river"]
    action: PlayerBetAction


class ShowdownMessage(WireModel):
    type: Literal["showdown"]
    chaum_pedersen_proofs: list[HexString] = Field(min_length=2, max_length=2)
    card_in_deck_position: list[DeckPosition] = Field(min_length=2, max_length=2)
    hole_ciphertexts: list[HexString] = Field(min_length=2, max_length=2)


ProtocolMessage = Annotated[
    Union[
        ShuffleMessage,
        BlindingMessage,
        PartialUnblindingMessage,
        PlayerPreflopMessage,
        PlayerFlopMessage,
        PlayerTurnMessage,
        PlayerRiverMessage,
        ShowdownMessage,
    ],
    Field(discriminator="type"),
]


class WithSignature(WireModel):
    """Signed protocol message."""

    value: ProtocolMessage
    signature: HexString
    transcript: list[Annotated[int, Field(ge=0, le=255)]] = Field(default_factory=list)


class Envelope(WireModel):
    """Signed protocol message plus routing and attribution metadata."""

    hand_id: NonNegativeInt
    game_id: NonNegativeInt
    actor: Actor
    nonce: NonNegativeInt
    public_key: HexString
    message: WithSignature


class FinalizedEnvelope(WireModel):
    """
    An envelope as recorded by the ledger.

    Attributes:
        envelope: The signed envelope.
        snapshot_status: Whether the ledger accepted it.
        applied_phase: Phase of the hand after applying it.
        snapshot_sequence_id: Global ordering key.
        created_timestamp: Ledger timestamp in epoch milliseconds, if sent.
    """

    envelope: Envelope
    snapshot_status: SnapshotStatus
    applied_phase: Phase
    snapshot_sequence_id: NonNegativeInt
    created_timestamp: Optional[NonNegativeInt] = None

    @property
    def seq_id(self) -> int:
        return self.snapshot_sequence_id

    @property
    def message(self):
        """The protocol message carried by the envelope."""
        return self.envelope.message.value


# =============================================================================
# Live Feed Events
# =============================================================================


class PlayerCreated(WireModel):
    type: Literal["player_created"]
    game_id: NonNegativeInt
    seat: SeatId
    display_name: str = Field(min_length=1)
    public_key: HexString


class HandCreated(WireModel):
    type: Literal["hand_created"]
    game_id: NonNegativeInt
    hand_id: NonNegativeInt
    player_count: int = Field(ge=1, le=MAX_SEATS)
    # Absent on older ledgers; the event handler treats absence as an error
    shuffler_count: Optional[int] = Field(default=None, ge=1)
    snapshot: Optional[dict[str, Any]] = None


class GameEventMessage(FinalizedEnvelope):
    type: Literal["game_event"]


class CommunityDecrypted(WireModel):
    type: Literal["community_decrypted"]
    game_id: NonNegativeInt
    hand_id: NonNegativeInt
    cards: list[Card]


class CardDecryptable(WireModel):
    type: Literal["card_decryptable"]
    game_id: NonNegativeInt
    hand_id: NonNegativeInt
    seat: SeatId
    card_position: HoleCardIndex


class HoleCardsDecrypted(WireModel):
    type: Literal["hole_cards_decrypted"]
    game_id: NonNegativeInt
    hand_id: NonNegativeInt
    seat: SeatId
    card_position: HoleCardIndex
    card: Card


class HandCompleted(WireModel):
    type: Literal["hand_completed"]
    game_id: NonNegativeInt
    hand_id: NonNegativeInt


DemoStreamEvent = Annotated[
    Union[
        PlayerCreated,
        HandCreated,
        GameEventMessage,
        CommunityDecrypted,
        CardDecryptable,
        HoleCardsDecrypted,
        HandCompleted,
    ],
    Field(discriminator="type"),
]

_stream_event_adapter: TypeAdapter = TypeAdapter(DemoStreamEvent)


# =============================================================================
# Decoding
# =============================================================================

# (wire name, camelCase name) of the fields the ledger adds when finalizing
FINALIZED_FIELDS = (
    ("snapshot_status", "snapshotStatus"),
    ("applied_phase", "appliedPhase"),
    ("snapshot_sequence_id", "snapshotSequenceId"),
    ("created_timestamp", "createdTimestamp"),
)

ENVELOPE_FIELDS = (
    ("hand_id", "handId"),
    ("game_id", "gameId"),
    ("actor", "actor"),
    ("nonce", "nonce"),
    ("public_key", "publicKey"),
    ("message", "message"),
)


def merge_finalized_fields(payload: dict) -> dict:
    """
    Bring a finalized envelope payload into the nested shape.

    The finalized fields are expected next to `envelope`; some producers put
    them inside it, others flatten the envelope fields to the top level.
    Both variants are rearranged here before validation.
    """
    merged = dict(payload)
    envelope = merged.get("envelope")

    if envelope is None and "message" in merged:
        envelope = {}
        for names in ENVELOPE_FIELDS:
            for name in names:
                if name in merged:
                    envelope[name] = merged.pop(name)

    if not isinstance(envelope, dict):
        return merged

    inner = dict(envelope)
    for names in FINALIZED_FIELDS:
        for name in names:
            if name in inner:
                value = inner.pop(name)
                if not any(n in merged for n in names):
                    merged[names[0]] = value
    merged["envelope"] = inner
    return merged


def _load_payload(data: Union[str, bytes, dict], event_name: Optional[str]) -> dict:
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Invalid JSON: {e}", event_name=event_name) from e
    if not isinstance(data, dict):
        raise DecodeError(
            f"Expected a JSON object, got {type(data).__name__}",
            event_name=event_name,
        )
    return data


def decode_stream_event(event_name: Optional[str], data: Union[str, bytes, dict]):
    """
    Decode one live feed message.

    Args:
        event_name: SSE event name, used as the type tag when the payload
            carries none.
        data: Raw JSON text or an already-parsed object.

    Returns:
        One of the DemoStreamEvent variants.

    Raises:
        DecodeError: On invalid JSON, unknown type tags or schema violations.
    """
    payload = _load_payload(data, event_name)
    if "type" not in payload and event_name:
        payload = {**payload, "type": event_name}
    if payload.get("type") == "game_event":
        payload = merge_finalized_fields(payload)

    try:
        return _stream_event_adapter.validate_python(payload)
    except ValidationError as e:
        raise DecodeError(
            f"Invalid {payload.get('type', 'untyped')} event: {e.error_count()} error(s): {e}",
            event_name=event_name,
        ) from e


def decode_finalized_envelope(data: Union[str, bytes, dict]) -> FinalizedEnvelope:
    """
    Decode a finalized envelope from a gap-fill response entry.

    Raises:
        DecodeError: If the entry does not validate.
    """
    payload = merge_finalized_fields(_load_payload(data, None))
    payload.pop("type", None)
    try:
        return FinalizedEnvelope.model_validate(payload)
    except ValidationError as e:
        raise DecodeError(f"Invalid finalized envelope: {e}") from e


# =============================================================================
# Ledger Rows
# =============================================================================

ENTITY_PLAYER = 0
ENTITY_SHUFFLER = 1

ACTOR_NONE = 0
ACTOR_PLAYER = 1
ACTOR_SHUFFLER = 2


class LedgerRow(BaseModel):
    """
    A row of the ledger's events table as published on the broker channel.

    Numeric columns may arrive stringified; pydantic's lax mode coerces them.
    """

    hand_id: int
    game_id: int
    entity_kind: int
    entity_id: int
    actor_kind: int
    seat_id: Optional[int] = None
    shuffler_id: Optional[int] = None
    public_key: str
    nonce: int
    snapshot_number: int
    is_successful: bool
    failure_message: Optional[str] = None
    resulting_phase: Phase
    payload: dict[str, Any]
    signature: str


def normalize_hex(value: str) -> str:
    """Rewrite Postgres bytea ('\\x..') and bare hex to '0x..'."""
    if value.startswith("\\x"):
        return f"0x{value[2:]}"
    if value.startswith("0x"):
        return value
    return f"0x{value}"


def _row_actor(row: LedgerRow) -> dict:
    if row.actor_kind == ACTOR_NONE:
        return {"kind": "none"}
    if row.actor_kind == ACTOR_PLAYER:
        if row.seat_id is None:
            raise DecodeError("player actor missing seat_id")
        if row.entity_kind != ENTITY_PLAYER:
            raise DecodeError("player actor stored with mismatched entity_kind")
        return {"kind": "player", "seat_id": row.seat_id, "player_id": row.entity_id}
    if row.actor_kind == ACTOR_SHUFFLER:
        if row.entity_kind != ENTITY_SHUFFLER:
            raise DecodeError("shuffler actor stored with mismatched entity_kind")
        shuffler_id = row.shuffler_id if row.shuffler_id is not None else row.entity_id
        return {"kind": "shuffler", "shuffler_id": shuffler_id}
    raise DecodeError(f"unknown actor_kind value {row.actor_kind}")


def map_ledger_row(data: Union[str, bytes, dict]) -> FinalizedEnvelope:
    """
    Map a raw ledger events row into a FinalizedEnvelope.

    Raises:
        DecodeError: If the row or its payload does not validate.
    """
    raw = _load_payload(data, None)
    try:
        row = LedgerRow.model_validate(raw)
    except ValidationError as e:
        raise DecodeError(f"Invalid ledger row: {e}") from e

    if row.is_successful:
        status: Any = "success"
    else:
        status = {"failure": row.failure_message or "unknown failure"}

    candidate = {
        "envelope": {
            "hand_id": row.hand_id,
            "game_id": row.game_id,
            "actor": _row_actor(row),
            "nonce": row.nonce,
            "public_key": normalize_hex(row.public_key),
            "message": {
                "value": row.payload,
                "signature": normalize_hex(row.signature),
                "transcript": [],
            },
        },
        "snapshot_status": status,
        "applied_phase": row.resulting_phase,
        "snapshot_sequence_id": row.snapshot_number,
    }
    try:
        return FinalizedEnvelope.model_validate(candidate)
    except ValidationError as e:
        raise DecodeError(f"Invalid ledger row payload: {e}") from e


def map_hand_message(data: Union[str, bytes, dict], game_id: int, hand_id: int) -> FinalizedEnvelope:
    """
    Map one entry of the ledger's hand-messages response.

    Entries are flat ({sequence, nonce, status, phase, message_type, actor,
    public_key, signature, payload}); game and hand ids come from the
    enclosing response.

    Raises:
        DecodeError: If the entry does not validate.
    """
    raw = _load_payload(data, None)
    payload = raw.get("payload")
    if isinstance(payload, dict) and "type" not in payload and raw.get("message_type"):
        payload = {**payload, "type": raw["message_type"]}

    candidate = {
        "envelope": {
            "hand_id": hand_id,
            "game_id": game_id,
            "actor": raw.get("actor"),
            "nonce": raw.get("nonce"),
            "public_key": normalize_hex(str(raw.get("public_key", ""))),
            "message": {
                "value": payload,
                "signature": normalize_hex(str(raw.get("signature", ""))),
                "transcript": [],
            },
        },
        "snapshot_status": raw.get("status"),
        "applied_phase": raw.get("phase"),
        "snapshot_sequence_id": raw.get("sequence"),
    }
    try:
        return FinalizedEnvelope.model_validate(candidate)
    except ValidationError as e:
        raise DecodeError(f"Invalid hand message: {e}") from e
