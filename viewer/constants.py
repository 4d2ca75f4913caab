"""
Protocol and table constants for the protocol viewer.

The dealing layout is two hole cards per seat, assigned in seat order:
deck position p belongs to seat p // 2, card index p % 2.
"""

# =============================================================================
# Table Layout
# =============================================================================

DECK_SIZE = 52
CARDS_PER_SEAT = 2
MAX_SEATS = 9

# The local viewer always sits at seat 0
VIEWER_SEAT = 0

# Seat reported for shares whose contributor is not a seated player
UNKNOWN_SEAT = -1

# Player count assumed until hand_created says otherwise
DEFAULT_PLAYER_COUNT = 7


# =============================================================================
# Live Feed Event Names
# =============================================================================

PLAYER_CREATED = "player_created"
HAND_CREATED = "hand_created"
GAME_EVENT = "game_event"
COMMUNITY_DECRYPTED = "community_decrypted"
CARD_DECRYPTABLE = "card_decryptable"
HOLE_CARDS_DECRYPTED = "hole_cards_decrypted"
HAND_COMPLETED = "hand_completed"

STREAM_EVENT_TYPES = (
    PLAYER_CREATED,
    HAND_CREATED,
    GAME_EVENT,
    COMMUNITY_DECRYPTED,
    CARD_DECRYPTABLE,
    HOLE_CARDS_DECRYPTED,
    HAND_COMPLETED,
)

# Terminal event: the transport closes deliberately after delivering it
TERMINAL_EVENT = HAND_COMPLETED
