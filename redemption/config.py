import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SYMBOLS = ("💎", "💰", "👑", "🍀", "⭐")


def _symbols_from_env(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_SYMBOLS
    return tuple(filter(None, (s.strip() for s in raw.split(","))))


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    max_attempts: int = 5
    backoff_multiplier: float = 0.05
    backoff_max: float = 2.0
    code_max_length: int = 256
    symbols: tuple[str, ...] = field(default=DEFAULT_SYMBOLS)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            max_attempts=int(os.getenv("REDEEM_MAX_ATTEMPTS", "5")),
            backoff_multiplier=float(os.getenv("REDEEM_BACKOFF_MULTIPLIER", "0.05")),
            backoff_max=float(os.getenv("REDEEM_BACKOFF_MAX", "2.0")),
            code_max_length=int(os.getenv("CODE_MAX_LENGTH", "256")),
            symbols=_symbols_from_env(os.getenv("REWARD_SYMBOLS")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
