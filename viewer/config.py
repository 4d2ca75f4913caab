"""
Centralized configuration for the protocol viewer.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.LEDGER_URL)
    print(config.reconnect.max_delay_ms)
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
class ReconnectSettings:
    """Live feed reconnect schedule: min(base * 2^attempt, max)."""
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000


@dataclass
class GapRecoverySettings:
    """Gap recovery tuning."""
    # Recovery rounds that leave a gap open before the stall is surfaced
    stall_warning_attempts: int = 5


@dataclass
class ViewerConfig:
    """Viewer process configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Ledger service
    LEDGER_URL: str = "http://localhost:4000"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Live feed: "sse" (ledger HTTP stream) or "redis" (broker channel)
    TRANSPORT: str = "sse"
    REDIS_URL: str = "redis://localhost:6379"
    # Hand followed on the broker channel (redis transport only)
    FOLLOW_GAME_ID: int = 0
    FOLLOW_HAND_ID: int = 0
    AUTO_CONNECT: bool = False

    reconnect: ReconnectSettings = field(default_factory=ReconnectSettings)
    gap_recovery: GapRecoverySettings = field(default_factory=GapRecoverySettings)

    @classmethod
    def from_env(cls) -> "ViewerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            LEDGER_URL=get_env("LEDGER_URL", "http://localhost:4000").rstrip("/"),
            REQUEST_TIMEOUT_SECONDS=get_env_float("REQUEST_TIMEOUT_SECONDS", 10.0),
            TRANSPORT=get_env("TRANSPORT", "sse").lower(),
            REDIS_URL=get_env("REDIS_URL", "redis://localhost:6379"),
            FOLLOW_GAME_ID=get_env_int("FOLLOW_GAME_ID", 0),
            FOLLOW_HAND_ID=get_env_int("FOLLOW_HAND_ID", 0),
            AUTO_CONNECT=get_env_bool("AUTO_CONNECT", False),
            reconnect=ReconnectSettings(
                base_delay_ms=get_env_int("RECONNECT_BASE_DELAY_MS", 1000),
                max_delay_ms=get_env_int("RECONNECT_MAX_DELAY_MS", 30000),
            ),
            gap_recovery=GapRecoverySettings(
                stall_warning_attempts=get_env_int("GAP_STALL_WARNING_ATTEMPTS", 5),
            ),
        )


# Global config instance - loaded once at module import
config = ViewerConfig.from_env()
