from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import uuid4

from pydantic import ValidationError

from .config import Settings
from .decider import OutcomeDecider
from .logging_utils import logger
from .models import (
    ErrorKind,
    OutcomeRecord,
    RedemptionResult,
    PublicConfig,
    OutcomeHistoryResponse,
)
from .storage import (
    InMemoryStorage,
    RedemptionStore,
    Transaction,
    TransactionConflict,
    run_with_retry,
)


class RedemptionError(Exception):
    kind = ErrorKind.INTERNAL


class InvalidInputError(RedemptionError):
    kind = ErrorKind.INVALID_INPUT


class CodeNotFoundError(RedemptionError):
    kind = ErrorKind.NOT_FOUND


class CodeAlreadyUsedError(RedemptionError):
    kind = ErrorKind.ALREADY_USED


class ConfigUnavailableError(RedemptionError):
    kind = ErrorKind.CONFIG_UNAVAILABLE


class InternalError(RedemptionError):
    kind = ErrorKind.INTERNAL


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_storage(settings: Settings) -> RedemptionStore:
    if settings.database_url:
        from .sql_storage import SqlStorage
        return SqlStorage(url=settings.database_url)
    return InMemoryStorage()


class RedemptionService:
    def __init__(
        self,
        storage: Optional[RedemptionStore] = None,
        decider: Optional[OutcomeDecider] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or Settings()
        self.storage = storage or InMemoryStorage()
        self.decider = decider or OutcomeDecider(symbols=self.settings.symbols)
        self.clock = clock

    def redeem(self, code: str, requester_id: Optional[str] = None) -> RedemptionResult:
        """Redeem a single-use code against the shared prize pool.

        The code update, the pool decrement on a win and the outcome record
        commit together. Conflicting concurrent transactions are retried; once
        a code is spent every later call raises ``CodeAlreadyUsedError``.
        """
        self._validate_code(code)

        def attempt(txn: Transaction) -> RedemptionResult:
            return self._redeem_in_transaction(txn, code, requester_id)

        try:
            result = run_with_retry(
                self.storage,
                attempt,
                max_attempts=self.settings.max_attempts,
                backoff_multiplier=self.settings.backoff_multiplier,
                backoff_max=self.settings.backoff_max,
            )
        except RedemptionError:
            raise
        except TransactionConflict as e:
            logger.error(f"Redemption of {code!r} gave up after {self.settings.max_attempts} conflicting attempts")
            raise InternalError("Redemption could not be completed, try again later") from e
        except Exception as e:
            logger.exception(f"Unexpected failure redeeming {code!r}")
            raise InternalError("Redemption could not be completed, try again later") from e

        logger.info(f"Code {code!r} redeemed: won={result.won} remaining={result.remaining_after}")
        return result

    def get_public_config(self) -> PublicConfig:
        try:
            pool = self.storage.get_pool_config()
        except ValidationError:
            logger.warning("Stored prize pool configuration is invalid")
            return PublicConfig()
        if pool is None:
            return PublicConfig()
        return PublicConfig(reward_label=pool.reward_label, remaining=pool.remaining)

    def get_outcome_history(self, limit: int = 50, offset: int = 0, code: Optional[str] = None) -> OutcomeHistoryResponse:
        return OutcomeHistoryResponse(
            outcomes=self.storage.list_outcomes(limit=limit, offset=offset, code=code),
            total_count=self.storage.count_outcomes(code=code),
        )

    def _redeem_in_transaction(self, txn: Transaction, code: str, requester_id: Optional[str]) -> RedemptionResult:
        record = txn.get_code(code)
        if record is None:
            raise CodeNotFoundError(f"Code {code!r} not found")
        if record.used:
            raise CodeAlreadyUsedError(f"Code {code!r} has already been used")

        try:
            pool = txn.get_pool()
        except ValidationError as e:
            raise ConfigUnavailableError("Prize pool configuration is invalid") from e
        if pool is None:
            raise ConfigUnavailableError("Prize pool configuration is not available")

        decision = self.decider.decide(pool.remaining, pool.win_probability)
        display_symbols = self.decider.display_symbols(decision)
        now = self.clock()

        txn.update_code(record.model_copy(update={
            "used": True,
            "is_winner": decision.won,
            "redeemed_at": now,
            "redeemer_id": requester_id,
        }))

        remaining_after = pool.remaining
        if decision.won:
            remaining_after = pool.remaining - 1
            txn.update_pool(pool.model_copy(update={
                "remaining": remaining_after,
                "last_win_at": now,
            }))

        reward_label = pool.reward_label if decision.won else None
        txn.append_outcome(OutcomeRecord(
            id=uuid4(),
            code=code,
            won=decision.won,
            reward_symbol=decision.reward_symbol,
            display_symbols=display_symbols,
            reward_label=reward_label,
            timestamp=now,
            redeemer_id=requester_id,
        ))

        return RedemptionResult(
            won=decision.won,
            reward_symbol=decision.reward_symbol,
            display_symbols=display_symbols,
            reward_label=reward_label,
            remaining_after=remaining_after,
        )

    def _validate_code(self, code) -> None:
        if not isinstance(code, str) or not code:
            raise InvalidInputError("Code must be a non-empty string")
        if len(code) > self.settings.code_max_length:
            raise InvalidInputError(f"Code must be at most {self.settings.code_max_length} characters")
