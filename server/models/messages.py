"""
Inbound WebSocket message envelopes.

Every client frame is a JSON object {"action": ..., ...fields}. Each action
has a pydantic model describing its fields; handlers call parse_message()
before touching any room so malformed frames are rejected up front.
Field names on the wire are camelCase.
"""

from typing import Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from errors import ErrorCode, InvalidMessage
from models.cards import Card, CardType, Color, card_from_dict

MAX_NAME_LENGTH = 24
MAX_AVATAR_LENGTH = 16
MAX_FORCED_DRAW = 100

AdminPower = Literal["seeAllHands", "manipulateCards", "controlTurns", "roomControl"]


class Message(BaseModel):
    """Base for all inbound envelopes."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class Envelope(Message):
    """Routing header shared by every frame."""

    model_config = ConfigDict(extra="allow")

    action: str = Field(min_length=1)


class EmptyMessage(Message):
    """Actions that carry no fields (leave, startGame, draw, ...)."""


# =============================================================================
# Player actions
# =============================================================================

class CreateRoomMessage(Message):
    player_name: str = Field(alias="playerName", min_length=1, max_length=MAX_NAME_LENGTH)
    avatar: str = Field("", max_length=MAX_AVATAR_LENGTH)


class JoinRoomMessage(Message):
    room_code: str = Field(alias="roomCode", min_length=1)
    player_name: str = Field(alias="playerName", min_length=1, max_length=MAX_NAME_LENGTH)
    avatar: str = Field("", max_length=MAX_AVATAR_LENGTH)


class RejoinMessage(Message):
    room_code: str = Field(alias="roomCode", min_length=1)
    player_id: str = Field(alias="playerId", min_length=1)


class PlayCardMessage(Message):
    card_index: int = Field(alias="cardIndex")
    chosen_color: Optional[Color] = Field(None, alias="chosenColor")


# =============================================================================
# Admin actions
# =============================================================================

class CardPayload(Message):
    """A card as described by an administrator."""

    type: CardType
    color: Optional[Color] = None
    value: Optional[int] = None
    chosen_color: Optional[Color] = Field(None, alias="chosenColor")

    def to_card(self) -> Card:
        """
        Convert to a Card.

        Raises:
            ValueError: If the combination of fields is not a valid card.
        """
        return card_from_dict(self.model_dump(by_alias=True, mode="json", exclude_none=True))


class WatchRoomMessage(Message):
    room_code: str = Field(alias="roomCode", min_length=1)


class RoomQueryMessage(Message):
    """Targets the given room, or the watched one when roomCode is omitted."""

    room_code: Optional[str] = Field(None, alias="roomCode", min_length=1)


class TogglePowerMessage(Message):
    power: AdminPower


class PlayerTargetMessage(Message):
    player_id: str = Field(alias="playerId", min_length=1)


class GiveCardMessage(PlayerTargetMessage):
    card: Optional[CardPayload] = None


class RemoveCardMessage(PlayerTargetMessage):
    card_index: int = Field(alias="cardIndex")


class SetTopCardMessage(Message):
    card: CardPayload


class ForceDrawMessage(PlayerTargetMessage):
    count: int = Field(1, ge=1, le=MAX_FORCED_DRAW)


M = TypeVar("M", bound=Message)


def parse_message(model: type[M], data: dict) -> M:
    """
    Validate a frame against a message model.

    Args:
        model: The pydantic model for the action.
        data: The decoded JSON frame.

    Returns:
        The validated model instance.

    Raises:
        InvalidMessage: If validation fails.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = f"{location}: {first.get('msg')}" if location else first.get("msg")
        raise InvalidMessage(ErrorCode.INVALID_MESSAGE, f"Invalid message ({detail})") from None
