"""Models package for Plus Stack cards and inbound messages."""

from .cards import (
    Card,
    CardType,
    Color,
    NumberCard,
    PlusCard,
    ReverseCard,
    SkipCard,
    SwapCard,
    WildCard,
    card_from_dict,
)
from .messages import Envelope, parse_message

__all__ = [
    "Card",
    "CardType",
    "Color",
    "NumberCard",
    "PlusCard",
    "ReverseCard",
    "SkipCard",
    "SwapCard",
    "WildCard",
    "card_from_dict",
    "Envelope",
    "parse_message",
]
