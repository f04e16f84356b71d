"""
Game rules engine for Plus Stack.

Pure transition functions over a Room's turn state: card generation,
the initial deal, legality checks, effect resolution and turn-pointer
arithmetic. Nothing here touches connections or the registry; every
function validates fully before mutating, so a raised TurnError means the
room is unchanged.

Rules Summary:
    - Each player starts with 7 cards; cards are generated on demand from a
      weighted distribution (there is no deck to run out of)
    - Match the active color, or a number card's value
    - Wild, +4, +20 and Swap can always be played (colorless ones need a
      color choice)
    - Draw penalties stack: while a penalty is pending only +cards may be
      played, each adding to the total; drawing takes the whole total
    - Reverse flips direction; at most 4 reverses in a row
    - Skip bypasses the next two seats
    - Swap trades hands with whoever is next
    - First player to empty their hand wins
"""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Optional

from constants import (
    CARD_WEIGHTS,
    DISCARD_HISTORY_LIMIT,
    HAND_SIZE,
    MAX_REVERSE_STACK,
    NUMBER_VALUES,
    WIN_END_REASON,
    ADMIN_END_REASON,
)
from errors import ErrorCode, TurnError
from models.cards import (
    COLORS,
    Card,
    CardType,
    Color,
    NumberCard,
    PlusCard,
    ReverseCard,
    SkipCard,
    SwapCard,
    WildCard,
    card_color,
    is_colorless,
)
from room import Room, RoomStatus

logger = logging.getLogger(__name__)

# Seats moved by a skip card: the two seats after the player are bypassed
SKIP_STEPS = 3


# =============================================================================
# Card Generation
# =============================================================================

class CardGenerator:
    """
    Synthesizes cards from a weighted archetype distribution.

    Each draw is independent. Pass a seeded random.Random for
    reproducible sequences (tests, simulations).
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        weights: Optional[dict[str, float]] = None,
    ):
        self.rng = rng or random.Random()
        weights = weights or CARD_WEIGHTS
        self._archetypes = [CardType(name) for name in weights]
        self._weights = list(weights.values())

    def random_color(self) -> Color:
        return self.rng.choice(COLORS)

    def generate(self) -> Card:
        """Generate one card."""
        archetype = self.rng.choices(self._archetypes, weights=self._weights)[0]

        if archetype == CardType.NUMBER:
            return NumberCard(self.random_color(), self.rng.choice(NUMBER_VALUES))
        if archetype == CardType.WILD:
            return WildCard()
        if archetype == CardType.PLUS2:
            return PlusCard(2, self.random_color())
        if archetype == CardType.PLUS4:
            return PlusCard(4)
        if archetype == CardType.PLUS20:
            return PlusCard(20)
        if archetype == CardType.PLUS20_COLOR:
            return PlusCard(20, self.random_color())
        if archetype == CardType.SKIP:
            return SkipCard(self.random_color())
        if archetype == CardType.REVERSE:
            return ReverseCard(self.random_color())
        if archetype == CardType.SWAP:
            return SwapCard(self.random_color())
        raise ValueError(f"Unhandled card archetype: {archetype!r}")


_generator = CardGenerator()


def generate_card() -> Card:
    """Generate a card from the module's default generator."""
    return _generator.generate()


def random_color() -> Color:
    """Pick a color from the module's default generator."""
    return _generator.random_color()


def is_neutral(card: Card) -> bool:
    """Check whether a card can open the discard pile (number or wild)."""
    return isinstance(card, (NumberCard, WildCard))


# =============================================================================
# Game Lifecycle
# =============================================================================

def deal(room: Room, hand_size: int = HAND_SIZE) -> None:
    """
    Deal hands, open the discard pile and flip the room to PLAYING.

    Each seated player receives hand_size fresh cards. Opening cards are
    regenerated until a number or wild comes up; a wild opener resolves to
    a random color so the first player has something definite to match.

    Args:
        room: The room to start.
        hand_size: Cards per player.
    """
    for player_id in room.seating:
        room.players[player_id].hand = [generate_card() for _ in range(hand_size)]

    opener = generate_card()
    while not is_neutral(opener):
        opener = generate_card()

    if isinstance(opener, WildCard):
        color = random_color()
        opener = replace(opener, resolved_color=color)
    else:
        color = card_color(opener)

    room.discard_pile = [opener]
    room.active_color = color
    room.turn_index = 0
    room.direction = 1
    room.pending_draws = 0
    room.reverse_stack_count = 0
    room.winner = None
    room.end_reason = None
    room.status = RoomStatus.PLAYING


def end_game(room: Room, reason: str = ADMIN_END_REASON, winner: Optional[str] = None) -> None:
    """
    Finish the game without a hand-empty win (administrative end).

    Args:
        room: The room to finish.
        reason: endReason reported to clients.
        winner: Optional winner to declare.
    """
    room.status = RoomStatus.FINISHED
    room.winner = winner
    room.end_reason = reason
    logger.info(f"Game in room {room.code} ended ({reason})")


# =============================================================================
# Legality
# =============================================================================

def can_play(card: Card, top_card: Optional[Card], room: Room) -> bool:
    """
    Check whether a card may be played onto the discard pile.

    Rules, in order:
        1. While a draw penalty is pending only +cards are legal.
        2. Wild, +4, +20 and Swap are always legal.
        3. Reverse is illegal once the reverse stack is full.
        4. Number cards match the active color or the top number's value;
           other colored cards match the active color.

    Args:
        card: The card to test.
        top_card: Current top of the discard pile.
        room: Room supplying active color, pending draws and reverse stack.

    Returns:
        True if the card is playable.
    """
    if room.pending_draws > 0:
        return isinstance(card, PlusCard)

    active = room.active_color

    if isinstance(card, WildCard):
        return True
    if isinstance(card, PlusCard):
        return card.color is None or card.color == active
    if isinstance(card, SwapCard):
        return True
    if isinstance(card, ReverseCard):
        if room.reverse_stack_count >= MAX_REVERSE_STACK:
            return False
        return card.color == active
    if isinstance(card, SkipCard):
        return card.color == active
    if isinstance(card, NumberCard):
        if card.color == active:
            return True
        return isinstance(top_card, NumberCard) and top_card.value == card.value
    raise TypeError(f"Unknown card variant: {card!r}")


# =============================================================================
# Turn Pointer Arithmetic
# =============================================================================

def _step(room: Room, seat: int, steps: int = 1) -> int:
    return (seat + steps * room.direction) % len(room.seating)


def _resolve_connected(room: Room, seat: int) -> int:
    """
    Move forward from seat until a connected player is found.

    Disconnected players keep their seat but are passed over. When nobody
    is connected the seat is returned unchanged.
    """
    if room.connected_count() == 0:
        return seat
    while not room.player_at(seat).connected:
        seat = _step(room, seat)
    return seat


def next_seat(room: Room) -> int:
    """Get the seat that would take the next turn in the current direction."""
    return _resolve_connected(room, _step(room, room.turn_index))


def advance_turn(room: Room, steps: int = 1) -> None:
    """
    Move the turn pointer by steps seats in the current direction.

    Args:
        room: The room whose pointer moves.
        steps: Seats to move (1 normally, SKIP_STEPS for a skip).
    """
    room.turn_index = _resolve_connected(room, _step(room, room.turn_index, steps))


def settle_turn(room: Room) -> bool:
    """
    Hand the turn on if the turn-holder is disconnected.

    Returns:
        True if the pointer moved.
    """
    if room.status != RoomStatus.PLAYING or not room.seating:
        return False
    settled = _resolve_connected(room, room.turn_index)
    if settled == room.turn_index:
        return False
    room.turn_index = settled
    return True


def pass_turn(room: Room) -> None:
    """Advance the pointer one seat without any play or draw."""
    advance_turn(room)


def _require_turn(room: Room, player_id: str) -> None:
    if room.status != RoomStatus.PLAYING:
        raise TurnError(ErrorCode.GAME_NOT_IN_PROGRESS)
    if room.current_player_id() != player_id:
        raise TurnError(ErrorCode.NOT_YOUR_TURN)


# =============================================================================
# Turn Actions
# =============================================================================

@dataclass
class CardEffect:
    """
    A side effect of a play, for client notification.

    Attributes:
        effect: "skipped", "reversed", "swapped" or "drawPenalty".
        target_ids: Players the effect lands on.
        amount: New pending draw total for "drawPenalty".
    """

    effect: str
    target_ids: list[str] = field(default_factory=list)
    amount: Optional[int] = None


@dataclass
class PlayResult:
    """Outcome of a successful play."""

    player_id: str
    card: Card
    effects: list[CardEffect] = field(default_factory=list)
    winner: Optional[str] = None


def play_card(
    room: Room,
    player_id: str,
    card_index: int,
    chosen_color: Optional[Color] = None,
) -> PlayResult:
    """
    Play a card from a player's hand.

    Args:
        room: The room being played in.
        player_id: ID of the player acting.
        card_index: Index into the player's hand.
        chosen_color: Color to resolve a colorless card to.

    Returns:
        PlayResult describing the card and its effects.

    Raises:
        TurnError: NOT_YOUR_TURN, INVALID_CARD_INDEX, CARD_NOT_PLAYABLE,
            MISSING_COLOR_CHOICE or GAME_NOT_IN_PROGRESS.
    """
    _require_turn(room, player_id)
    player = room.players[player_id]

    if isinstance(card_index, bool) or not isinstance(card_index, int):
        raise TurnError(ErrorCode.INVALID_CARD_INDEX)
    if card_index < 0 or card_index >= len(player.hand):
        raise TurnError(ErrorCode.INVALID_CARD_INDEX)

    card = player.hand[card_index]
    if not can_play(card, room.top_card(), room):
        raise TurnError(ErrorCode.CARD_NOT_PLAYABLE)

    colorless = is_colorless(card)
    if colorless and chosen_color is None:
        raise TurnError(ErrorCode.MISSING_COLOR_CHOICE)

    # Validation complete; mutate from here on
    player.hand.pop(card_index)
    played = replace(card, resolved_color=chosen_color) if isinstance(card, WildCard) else card
    room.discard_pile.append(played)
    if len(room.discard_pile) > DISCARD_HISTORY_LIMIT:
        room.discard_pile = room.discard_pile[-DISCARD_HISTORY_LIMIT:]

    result = PlayResult(player_id=player_id, card=played)
    steps = 1

    if isinstance(card, PlusCard):
        room.pending_draws += card.magnitude
        result.effects.append(CardEffect("drawPenalty", amount=room.pending_draws))

    if isinstance(card, ReverseCard):
        room.direction = -room.direction
        room.reverse_stack_count += 1
        result.effects.append(CardEffect("reversed", target_ids=list(room.seating)))
    else:
        room.reverse_stack_count = 0

    if isinstance(card, SkipCard):
        steps = SKIP_STEPS
        bypassed = []
        for offset in range(1, SKIP_STEPS):
            pid = room.seating[_step(room, room.turn_index, offset)]
            if pid != player_id and pid not in bypassed:
                bypassed.append(pid)
        result.effects.append(CardEffect("skipped", target_ids=bypassed))

    # Swap resolves before the win check, so a last-card swap takes the partner's hand
    if isinstance(card, SwapCard):
        partner = room.player_at(next_seat(room))
        if partner.id != player_id:
            player.hand, partner.hand = partner.hand, player.hand
            result.effects.append(CardEffect("swapped", target_ids=[partner.id]))

    room.active_color = chosen_color if colorless else card_color(card)

    if not player.hand:
        room.status = RoomStatus.FINISHED
        room.winner = player_id
        room.end_reason = WIN_END_REASON
        result.winner = player_id
        logger.info(f"Player {player_id} won in room {room.code}")
        return result

    advance_turn(room, steps)
    return result


def draw_card(room: Room, player_id: str) -> list[Card]:
    """
    Draw for the current player and pass the turn.

    With a pending penalty the player takes the whole total and the
    penalty resets; otherwise they take exactly one card.

    Args:
        room: The room being played in.
        player_id: ID of the player drawing.

    Returns:
        The drawn cards, in the order they were added to the hand.

    Raises:
        TurnError: NOT_YOUR_TURN or GAME_NOT_IN_PROGRESS.
    """
    _require_turn(room, player_id)
    player = room.players[player_id]

    count = room.pending_draws if room.pending_draws > 0 else 1
    drawn = [generate_card() for _ in range(count)]
    player.hand.extend(drawn)
    room.pending_draws = 0

    advance_turn(room)
    return drawn
