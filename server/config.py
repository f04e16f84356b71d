"""
Centralized configuration for the Plus Stack game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.card_weights.to_dict())
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class CardWeights:
    """
    Relative weights (percent) for each generated card archetype.

    There is no finite deck: every draw synthesizes a fresh card from
    this distribution.
    """
    number: float = 57
    wild: float = 10
    plus2: float = 14
    plus4: float = 5
    plus20: float = 2
    plus20color: float = 1
    skip: float = 4
    reverse: float = 4
    swap: float = 3

    def to_dict(self) -> dict[str, float]:
        """Get weights keyed by archetype wire name."""
        return {
            "number": self.number,
            "wild": self.wild,
            "plus2": self.plus2,
            "plus4": self.plus4,
            "plus20": self.plus20,
            "plus20color": self.plus20color,
            "skip": self.skip,
            "reverse": self.reverse,
            "swap": self.swap,
        }


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Room settings
    MAX_PLAYERS_PER_ROOM: int = 6
    MIN_PLAYERS_TO_START: int = 3
    ROOM_CODE_LENGTH: int = 4

    # Rules
    HAND_SIZE: int = 7
    MAX_REVERSE_STACK: int = 4

    # Session behaviour
    AUTO_ADVANCE_ON_DISCONNECT: bool = True

    # Privileged observers
    ADMIN_TOKEN: str = ""
    MAX_OBSERVERS_PER_ROOM: int = 10

    card_weights: CardWeights = field(default_factory=CardWeights)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        defaults = CardWeights()
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 3000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            MAX_PLAYERS_PER_ROOM=get_env_int("MAX_PLAYERS_PER_ROOM", 6),
            MIN_PLAYERS_TO_START=get_env_int("MIN_PLAYERS_TO_START", 3),
            ROOM_CODE_LENGTH=get_env_int("ROOM_CODE_LENGTH", 4),
            HAND_SIZE=get_env_int("HAND_SIZE", 7),
            MAX_REVERSE_STACK=get_env_int("MAX_REVERSE_STACK", 4),
            AUTO_ADVANCE_ON_DISCONNECT=get_env_bool("AUTO_ADVANCE_ON_DISCONNECT", True),
            ADMIN_TOKEN=get_env("ADMIN_TOKEN", ""),
            MAX_OBSERVERS_PER_ROOM=get_env_int("MAX_OBSERVERS_PER_ROOM", 10),
            card_weights=CardWeights(
                number=get_env_float("CARD_WEIGHT_NUMBER", defaults.number),
                wild=get_env_float("CARD_WEIGHT_WILD", defaults.wild),
                plus2=get_env_float("CARD_WEIGHT_PLUS2", defaults.plus2),
                plus4=get_env_float("CARD_WEIGHT_PLUS4", defaults.plus4),
                plus20=get_env_float("CARD_WEIGHT_PLUS20", defaults.plus20),
                plus20color=get_env_float("CARD_WEIGHT_PLUS20COLOR", defaults.plus20color),
                skip=get_env_float("CARD_WEIGHT_SKIP", defaults.skip),
                reverse=get_env_float("CARD_WEIGHT_REVERSE", defaults.reverse),
                swap=get_env_float("CARD_WEIGHT_SWAP", defaults.swap),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
