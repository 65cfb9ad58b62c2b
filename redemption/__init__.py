"""
Single-use Code Redemption Engine

This module provides:
- One-time code redemption against a shared, finite prize pool
- Optimistic-concurrency stores (in-memory and SQLAlchemy) with bounded retries
- Injectable randomness for the win/lose decision
- Append-only outcome records for audit
- Read-only public view of the pool
"""

from .models import (
    ErrorKind,
    CodeRecord,
    PoolConfig,
    OutcomeRecord,
    RedemptionResult,
    PublicConfig,
)
from .decider import OutcomeDecider
from .service import RedemptionService

__all__ = [
    "ErrorKind",
    "CodeRecord",
    "PoolConfig",
    "OutcomeRecord",
    "RedemptionResult",
    "PublicConfig",
    "OutcomeDecider",
    "RedemptionService",
]
