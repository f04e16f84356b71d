"""
Error taxonomy for room and turn actions.

All errors are synchronous and non-fatal. Validation always precedes
mutation, so raising one of these guarantees the room was left untouched.
The Session Router catches GameError at the dispatch boundary and reports
it to the originating connection only.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes sent to clients."""

    # Room errors
    ROOM_NOT_FOUND = "RoomNotFound"
    PLAYER_NOT_FOUND = "PlayerNotFound"
    ROOM_FULL = "RoomFull"
    GAME_ALREADY_STARTED = "GameAlreadyStarted"
    NOT_HOST = "NotHost"
    NOT_ENOUGH_PLAYERS = "NotEnoughPlayers"
    ALREADY_STARTED = "AlreadyStarted"

    # Turn errors
    NOT_YOUR_TURN = "NotYourTurn"
    INVALID_CARD_INDEX = "InvalidCardIndex"
    CARD_NOT_PLAYABLE = "CardNotPlayable"
    MISSING_COLOR_CHOICE = "MissingColorChoice"
    GAME_NOT_IN_PROGRESS = "GameNotInProgress"

    # Admin errors
    NOT_AUTHORIZED = "NotAuthorized"
    POWER_DISABLED = "PowerDisabled"
    INVALID_CARD = "InvalidCard"

    # Envelope errors
    INVALID_MESSAGE = "InvalidMessage"
    UNKNOWN_ACTION = "UnknownAction"
    NOT_IN_ROOM = "NotInRoom"
    INTERNAL_ERROR = "InternalError"


DEFAULT_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.ROOM_NOT_FOUND: "Room not found",
    ErrorCode.PLAYER_NOT_FOUND: "Player not found in room",
    ErrorCode.ROOM_FULL: "Room is full",
    ErrorCode.GAME_ALREADY_STARTED: "Game already started",
    ErrorCode.NOT_HOST: "Only the host can start the game",
    ErrorCode.NOT_ENOUGH_PLAYERS: "Not enough players to start",
    ErrorCode.ALREADY_STARTED: "Game already started",
    ErrorCode.NOT_YOUR_TURN: "Not your turn",
    ErrorCode.INVALID_CARD_INDEX: "Invalid card index",
    ErrorCode.CARD_NOT_PLAYABLE: "Cannot play this card",
    ErrorCode.MISSING_COLOR_CHOICE: "Choose a color for this card",
    ErrorCode.GAME_NOT_IN_PROGRESS: "Game is not in progress",
    ErrorCode.NOT_AUTHORIZED: "Admin access required",
    ErrorCode.POWER_DISABLED: "Power is not enabled",
    ErrorCode.INVALID_CARD: "Invalid card",
    ErrorCode.INVALID_MESSAGE: "Invalid message",
    ErrorCode.UNKNOWN_ACTION: "Unknown action",
    ErrorCode.NOT_IN_ROOM: "Not in a room",
    ErrorCode.INTERNAL_ERROR: "Internal server error",
}


class GameError(Exception):
    """
    Base class for every rejected action.

    Attributes:
        code: Stable ErrorCode for clients.
        message: Human-readable description.
    """

    def __init__(self, code: ErrorCode, message: Optional[str] = None):
        self.code = code
        self.message = message or DEFAULT_MESSAGES.get(code, code.value)
        super().__init__(self.message)

    def to_message(self) -> dict:
        """Render the outbound error frame."""
        return {
            "type": "error",
            "code": self.code.value,
            "message": self.message,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r})"


class RoomError(GameError):
    """Membership or lifecycle action rejected by the room registry."""


class TurnError(GameError):
    """Gameplay action rejected by the rules engine."""


class AdminError(GameError):
    """Privileged action rejected (not an admin, or power disabled)."""


class InvalidMessage(GameError):
    """Inbound envelope could not be routed or failed shape validation."""
