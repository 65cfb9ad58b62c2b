import logging
import threading
from typing import Callable, Iterable, Optional, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .logging_utils import logger
from .models import CodeRecord, OutcomeRecord, PoolConfig

T = TypeVar("T")

POOL_KEY = "current"


class TransactionConflict(Exception):
    """A concurrent transaction changed a record this one read or wrote."""


class Transaction:
    """One attempt at an atomic unit.

    Reads go straight to the store; writes are buffered here and only reach the
    store when it commits the whole transaction. A record has to be read before
    it can be written so the store knows which version the write was based on.
    """

    def __init__(self):
        self.code_writes: dict[str, CodeRecord] = {}
        self.pool_write: Optional[PoolConfig] = None
        self.outcome_writes: list[OutcomeRecord] = []
        self._codes: dict[str, Optional[CodeRecord]] = {}
        self._pool: Optional[PoolConfig] = None
        self._pool_loaded = False

    def get_code(self, code: str) -> Optional[CodeRecord]:
        if code not in self._codes:
            self._codes[code] = self._load_code(code)
        return self._codes[code]

    def get_pool(self) -> Optional[PoolConfig]:
        if not self._pool_loaded:
            self._pool = self._load_pool()
            self._pool_loaded = True
        return self._pool

    def update_code(self, record: CodeRecord) -> None:
        if self._codes.get(record.code) is None:
            raise RuntimeError(f"Code {record.code!r} must be read before it is written")
        self.code_writes[record.code] = record

    def update_pool(self, pool: PoolConfig) -> None:
        if self._pool is None:
            raise RuntimeError("Pool configuration must be read before it is written")
        self.pool_write = pool

    def append_outcome(self, outcome: OutcomeRecord) -> None:
        self.outcome_writes.append(outcome)

    def _load_code(self, code: str) -> Optional[CodeRecord]:
        raise NotImplementedError

    def _load_pool(self) -> Optional[PoolConfig]:
        raise NotImplementedError


class RedemptionStore:
    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` once and commit its buffered writes together.

        Raises ``TransactionConflict`` when the commit would be based on stale
        reads; nothing is written in that case. Any exception raised by ``fn``
        discards the transaction.
        """
        raise NotImplementedError

    def get_pool_config(self) -> Optional[PoolConfig]:
        raise NotImplementedError

    def get_code(self, code: str) -> Optional[CodeRecord]:
        raise NotImplementedError

    def list_outcomes(self, limit: int = 50, offset: int = 0, code: Optional[str] = None) -> list[OutcomeRecord]:
        raise NotImplementedError

    def count_outcomes(self, code: Optional[str] = None) -> int:
        raise NotImplementedError

    def seed(self, codes: Iterable[str] = (), pool: Optional[PoolConfig] = None) -> None:
        raise NotImplementedError


class _MemoryTransaction(Transaction):
    def __init__(self, storage: "InMemoryStorage"):
        super().__init__()
        self._storage = storage
        self.read_versions: dict[tuple[str, str], int] = {}

    def _load_code(self, code):
        record, version = self._storage._read(("code", code))
        self.read_versions[("code", code)] = version
        return record

    def _load_pool(self):
        pool, version = self._storage._read(("pool", POOL_KEY))
        self.read_versions[("pool", POOL_KEY)] = version
        return pool


class InMemoryStorage(RedemptionStore):
    """Process-local store with optimistic concurrency control.

    Every record carries a version counter. A transaction remembers the
    versions it read and the commit is rejected if any of them moved, which
    gives serializable outcomes without holding a lock while ``fn`` runs.
    """

    def __init__(self):
        self.codes: dict[str, CodeRecord] = {}
        self.pool: Optional[PoolConfig] = None
        self.outcomes: list[OutcomeRecord] = []
        self._versions: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def run_transaction(self, fn):
        txn = _MemoryTransaction(self)
        result = fn(txn)
        self._commit(txn)
        return result

    def get_pool_config(self):
        with self._lock:
            return self.pool.model_copy() if self.pool else None

    def get_code(self, code):
        with self._lock:
            record = self.codes.get(code)
            return record.model_copy() if record else None

    def list_outcomes(self, limit=50, offset=0, code=None):
        with self._lock:
            outcomes = [o for o in self.outcomes if code is None or o.code == code]
        outcomes.sort(key=lambda o: o.timestamp, reverse=True)
        return outcomes[offset:offset + limit]

    def count_outcomes(self, code=None):
        with self._lock:
            return sum(1 for o in self.outcomes if code is None or o.code == code)

    def seed(self, codes=(), pool=None):
        with self._lock:
            for code in codes:
                if code not in self.codes:
                    self.codes[code] = CodeRecord(code=code)
                    self._bump(("code", code))
            if pool is not None:
                self.pool = pool.model_copy()
                self._bump(("pool", POOL_KEY))

    def _read(self, key):
        with self._lock:
            kind, name = key
            if kind == "code":
                value = self.codes.get(name)
            else:
                value = self.pool
            return (value.model_copy() if value else None), self._versions.get(key, 0)

    def _commit(self, txn: _MemoryTransaction) -> None:
        with self._lock:
            for key, version in txn.read_versions.items():
                if self._versions.get(key, 0) != version:
                    raise TransactionConflict(f"{key[0]} {key[1]!r} changed since it was read")
            for code, record in txn.code_writes.items():
                self.codes[code] = record.model_copy()
                self._bump(("code", code))
            if txn.pool_write is not None:
                self.pool = txn.pool_write.model_copy()
                self._bump(("pool", POOL_KEY))
            self.outcomes.extend(txn.outcome_writes)

    def _bump(self, key):
        self._versions[key] = self._versions.get(key, 0) + 1


def run_with_retry(
    store: RedemptionStore,
    fn: Callable[[Transaction], T],
    max_attempts: int = 5,
    backoff_multiplier: float = 0.05,
    backoff_max: float = 2.0,
) -> T:
    """Run ``fn`` in a store transaction, retrying on conflicts.

    Only ``TransactionConflict`` is retried. After ``max_attempts`` the last
    conflict is re-raised to the caller.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff_multiplier, max=backoff_max),
        retry=retry_if_exception_type(TransactionConflict),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return retrying(store.run_transaction, fn)
