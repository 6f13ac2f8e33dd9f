"""
Centralized configuration for the Pyatikantrop game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.REDIS_URL)
    print(config.card_values)
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


@dataclass
class CardValues:
    """Penalty points left in a losing hand - the single source of truth."""
    ACE: int = 11
    TEN: int = 10
    KING: int = 4
    JACK: int = 25
    QUEEN: int = 3

    # Queens-only hands (subtracted from the bank instead of added)
    QUEEN_ONLY_POINTS: int = 20     # per Queen
    SPADE_QUEEN_BONUS: int = 20     # extra when Q♠ is among them
    FOUR_QUEENS_POINTS: int = 80    # flat score for all four Queens

    def to_dict(self) -> dict[str, int]:
        """Get penalty values keyed by rank string. Unlisted ranks score 0."""
        return {
            '6': 0,
            '7': 0,
            '8': 0,
            '9': 0,
            '10': self.TEN,
            'J': self.JACK,
            'Q': self.QUEEN,
            'K': self.KING,
            'A': self.ACE,
        }


@dataclass
class GameDefaults:
    """Default match settings."""
    hand_size: int = 5
    bank_limit: int = 120
    player_names: list[str] = field(default_factory=lambda: ["Player A", "Player B"])


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Shared room documents
    REDIS_URL: str = "redis://localhost:6379"
    ROOM_TTL_HOURS: int = 24

    # Card values
    card_values: CardValues = field(default_factory=CardValues)

    # Game defaults
    game_defaults: GameDefaults = field(default_factory=GameDefaults)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        names_str = get_env("DEFAULT_PLAYER_NAMES", "Player A,Player B")
        names = [n.strip() for n in names_str.split(",") if n.strip()]
        if len(names) != 2:
            names = ["Player A", "Player B"]

        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            REDIS_URL=get_env("REDIS_URL", "redis://localhost:6379"),
            ROOM_TTL_HOURS=get_env_int("ROOM_TTL_HOURS", 24),
            card_values=CardValues(
                ACE=get_env_int("CARD_ACE", 11),
                TEN=get_env_int("CARD_TEN", 10),
                KING=get_env_int("CARD_KING", 4),
                JACK=get_env_int("CARD_JACK", 25),
                QUEEN=get_env_int("CARD_QUEEN", 3),
                QUEEN_ONLY_POINTS=get_env_int("QUEEN_ONLY_POINTS", 20),
                SPADE_QUEEN_BONUS=get_env_int("SPADE_QUEEN_BONUS", 20),
                FOUR_QUEENS_POINTS=get_env_int("FOUR_QUEENS_POINTS", 80),
            ),
            game_defaults=GameDefaults(
                hand_size=get_env_int("HAND_SIZE", 5),
                bank_limit=get_env_int("BANK_LIMIT", 120),
                player_names=names,
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
