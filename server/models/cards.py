"""
Card model for the Plus Stack card game.

A card is one of six variants (a tagged union). PlusCard covers four of the
nine generated archetypes through its magnitude and optional color:

    NumberCard(color, value)      number
    WildCard(resolved_color)      wild
    PlusCard(2, color)            plus2
    PlusCard(4)                   plus4        (colorless)
    PlusCard(20)                  plus20       (colorless)
    PlusCard(20, color)           plus20color
    SkipCard(color)               skip
    ReverseCard(color)            reverse
    SwapCard(color)               swap

Colorless cards (wild, +4, +20) need the player to supply a color when
played. Cards are immutable; a played wild is replaced by a copy carrying
its resolved color.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from constants import NUMBER_VALUES, PLUS_MAGNITUDES


class Color(str, Enum):
    """The four playable colors."""

    RED = "red"
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"


COLORS: tuple[Color, ...] = tuple(Color)


class CardType(str, Enum):
    """Wire names of the nine card archetypes."""

    NUMBER = "number"
    WILD = "wild"
    PLUS2 = "plus2"
    PLUS4 = "plus4"
    PLUS20 = "plus20"
    PLUS20_COLOR = "plus20color"
    SKIP = "skip"
    REVERSE = "reverse"
    SWAP = "swap"


@dataclass(frozen=True)
class NumberCard:
    color: Color
    value: int

    def __post_init__(self) -> None:
        if self.value not in NUMBER_VALUES:
            raise ValueError(f"Invalid number card value: {self.value}")

    @property
    def card_type(self) -> CardType:
        return CardType.NUMBER

    def to_dict(self) -> dict:
        return {"type": self.card_type.value, "color": self.color.value, "value": self.value}


@dataclass(frozen=True)
class WildCard:
    resolved_color: Optional[Color] = None

    @property
    def card_type(self) -> CardType:
        return CardType.WILD

    def to_dict(self) -> dict:
        return {
            "type": self.card_type.value,
            "chosenColor": self.resolved_color.value if self.resolved_color else None,
        }


@dataclass(frozen=True)
class PlusCard:
    """
    Draw-penalty card.

    Attributes:
        magnitude: Cards added to the pending draw total (2, 4 or 20).
        color: Own color; None for the colorless +4 and +20.
    """

    magnitude: int
    color: Optional[Color] = None

    def __post_init__(self) -> None:
        if self.magnitude not in PLUS_MAGNITUDES:
            raise ValueError(f"Invalid plus card magnitude: {self.magnitude}")
        if self.magnitude == 2 and self.color is None:
            raise ValueError("+2 cards must have a color")
        if self.magnitude == 4 and self.color is not None:
            raise ValueError("+4 cards are colorless")

    @property
    def card_type(self) -> CardType:
        if self.magnitude == 2:
            return CardType.PLUS2
        if self.magnitude == 4:
            return CardType.PLUS4
        return CardType.PLUS20_COLOR if self.color else CardType.PLUS20

    def to_dict(self) -> dict:
        data = {"type": self.card_type.value}
        if self.color:
            data["color"] = self.color.value
        return data


@dataclass(frozen=True)
class SkipCard:
    color: Color

    @property
    def card_type(self) -> CardType:
        return CardType.SKIP

    def to_dict(self) -> dict:
        return {"type": self.card_type.value, "color": self.color.value}


@dataclass(frozen=True)
class ReverseCard:
    color: Color

    @property
    def card_type(self) -> CardType:
        return CardType.REVERSE

    def to_dict(self) -> dict:
        return {"type": self.card_type.value, "color": self.color.value}


@dataclass(frozen=True)
class SwapCard:
    color: Color

    @property
    def card_type(self) -> CardType:
        return CardType.SWAP

    def to_dict(self) -> dict:
        return {"type": self.card_type.value, "color": self.color.value}


Card = Union[NumberCard, WildCard, PlusCard, SkipCard, ReverseCard, SwapCard]


def card_color(card: Card) -> Optional[Color]:
    """
    Get a card's own color.

    Returns None for colorless cards. A played wild's resolved color is
    not its own color; the room's active color tracks that.
    """
    if isinstance(card, NumberCard):
        return card.color
    if isinstance(card, WildCard):
        return None
    if isinstance(card, PlusCard):
        return card.color
    if isinstance(card, (SkipCard, ReverseCard, SwapCard)):
        return card.color
    raise TypeError(f"Unknown card variant: {card!r}")


def is_colorless(card: Card) -> bool:
    """Check whether playing this card requires a color choice."""
    return card_color(card) is None


def _parse_color(raw) -> Color:
    try:
        return Color(raw)
    except ValueError:
        raise ValueError(f"Invalid color: {raw!r}") from None


def card_from_dict(data: dict) -> Card:
    """
    Build a card from its wire representation.

    Args:
        data: Dict with "type" plus "color"/"value"/"chosenColor" as needed.

    Returns:
        The parsed Card.

    Raises:
        ValueError: If the type, color or value is not valid.
    """
    try:
        card_type = CardType(data.get("type"))
    except ValueError:
        raise ValueError(f"Unknown card type: {data.get('type')!r}") from None

    if card_type == CardType.NUMBER:
        value = data.get("value")
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"Invalid number card value: {value!r}")
        return NumberCard(_parse_color(data.get("color")), value)
    if card_type == CardType.WILD:
        chosen = data.get("chosenColor")
        return WildCard(_parse_color(chosen) if chosen else None)
    if card_type == CardType.PLUS2:
        return PlusCard(2, _parse_color(data.get("color")))
    if card_type == CardType.PLUS4:
        return PlusCard(4)
    if card_type == CardType.PLUS20:
        return PlusCard(20)
    if card_type == CardType.PLUS20_COLOR:
        return PlusCard(20, _parse_color(data.get("color")))
    if card_type == CardType.SKIP:
        return SkipCard(_parse_color(data.get("color")))
    if card_type == CardType.REVERSE:
        return ReverseCard(_parse_color(data.get("color")))
    if card_type == CardType.SWAP:
        return SwapCard(_parse_color(data.get("color")))
    raise ValueError(f"Unhandled card type: {card_type!r}")
