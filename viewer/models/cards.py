"""
Playing cards as they appear on the live feed.

The ledger reports ranks numerically (2-14, where 11=J, 12=Q, 13=K, 14=A).
A separate display deck is generated client-side for the dealing animation;
it carries no information about the real encrypted deck.
"""

import random
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Suit(str, Enum):
    """Card suits, in encoding order."""
    SPADES = "spades"
    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"


SUITS: list[Suit] = [Suit.SPADES, Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS]
RANKS: list[str] = ["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]

SUIT_SYMBOLS = {
    Suit.SPADES: "♠",
    Suit.HEARTS: "♥",
    Suit.DIAMONDS: "♦",
    Suit.CLUBS: "♣",
}


class Card(BaseModel):
    """
    A face-up card.

    Attributes:
        rank: Numeric rank, 2 through 14 (ace high).
        suit: Card suit.
    """

    model_config = ConfigDict(frozen=True)

    rank: int = Field(ge=2, le=14)
    suit: Suit

    @property
    def rank_label(self) -> str:
        return rank_to_string(self.rank)

    @property
    def label(self) -> str:
        """Short display label, e.g. 'A♠'."""
        return f"{self.rank_label}{SUIT_SYMBOLS[self.suit]}"

    def to_dict(self) -> dict:
        return {"rank": self.rank, "suit": self.suit.value}


def rank_to_string(rank: int) -> str:
    """Convert a numeric rank (2-14) to its display string ('2'-'A')."""
    if rank < 2 or rank > 14:
        raise ValueError(f"Invalid rank: {rank}. Must be between 2 and 14.")
    return RANKS[rank - 2]


def generate_ordered_deck() -> list[Card]:
    """Generate the 52-card deck in encoding order (suit-major)."""
    return [Card(rank=rank, suit=suit) for suit in SUITS for rank in range(2, 15)]


def shuffled_display_deck(rng: Optional[random.Random] = None) -> list[Card]:
    """
    Shuffle a fresh deck for display purposes only.

    Args:
        rng: Random source; pass a seeded instance for reproducible tests.
    """
    deck = generate_ordered_deck()
    (rng or random.Random()).shuffle(deck)
    return deck


def encode_card(card: Card) -> int:
    """Encode as 0-51: spades 0-12, hearts 13-25, diamonds 26-38, clubs 39-51."""
    return SUITS.index(card.suit) * 13 + (card.rank - 2)


def decode_card(value: int) -> Optional[Card]:
    """Inverse of encode_card; None when out of range."""
    if value < 0 or value >= 52:
        return None
    return Card(rank=value % 13 + 2, suit=SUITS[value // 13])
