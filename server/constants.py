"""
Policy constants for the Plus Stack card game.

Seat capacity, deal size and the card generation distribution are policy,
not structure: they are read from config.py (and therefore from the
environment) once at import time.

Card archetypes and their default weights (percent of draws):
    - Number (0-7, 9):   57
    - Wild:              10
    - +2:                14
    - +4 (wild):          5
    - +20 (wild):         2
    - +20 (colored):      1
    - Skip:               4
    - Reverse:            4
    - Swap:               3
"""

from config import config


# =============================================================================
# Room Constants
# =============================================================================

MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
MIN_PLAYERS_TO_START = config.MIN_PLAYERS_TO_START
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH

# Player ids are "p_" followed by this many base-36 characters
PLAYER_ID_LENGTH = 7


# =============================================================================
# Rule Constants
# =============================================================================

HAND_SIZE = config.HAND_SIZE
MAX_REVERSE_STACK = config.MAX_REVERSE_STACK

# Number cards never carry an 8 (the wild occupies that slot)
NUMBER_VALUES: tuple[int, ...] = (0, 1, 2, 3, 4, 5, 6, 7, 9)

PLUS_MAGNITUDES: tuple[int, ...] = (2, 4, 20)

# Only the most recent discards are kept; the top card is all that matters
DISCARD_HISTORY_LIMIT = 50

CARD_WEIGHTS: dict[str, float] = config.card_weights.to_dict()

# endReason reported when a game is ended administratively (no winner)
ADMIN_END_REASON = "admin"
WIN_END_REASON = "win"
ATTRITION_END_REASON = "lastPlayerStanding"
