from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, TypeDecorator, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .models import CodeRecord, OutcomeRecord, PoolConfig
from .storage import POOL_KEY, RedemptionStore, Transaction, TransactionConflict


class UtcDateTime(TypeDecorator):
    """Timestamp column that always hands back aware UTC datetimes.

    SQLite keeps no offset, so values are stored as UTC and tagged on read.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class CodeRow(Base):
    __tablename__ = "codes"

    code: Mapped[str] = mapped_column(String(256), primary_key=True)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_winner: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime(timezone=True), nullable=True)
    redeemer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class PoolRow(Base):
    __tablename__ = "pool_config"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=POOL_KEY)
    remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.1)
    reward_label: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    last_win_at: Mapped[Optional[datetime]] = mapped_column(UtcDateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class OutcomeRow(Base):
    __tablename__ = "outcomes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(256), index=True, nullable=False)
    won: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reward_symbol: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    display_symbols: Mapped[list] = mapped_column(JSON, nullable=False)
    reward_label: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UtcDateTime(timezone=True), index=True, nullable=False)
    redeemer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


def _to_outcome(row: OutcomeRow) -> OutcomeRecord:
    return OutcomeRecord(
        id=row.id,
        code=row.code,
        won=row.won,
        reward_symbol=row.reward_symbol,
        display_symbols=list(row.display_symbols),
        reward_label=row.reward_label,
        timestamp=row.timestamp,
        redeemer_id=row.redeemer_id,
    )


class _SqlTransaction(Transaction):
    def __init__(self, session: Session):
        super().__init__()
        self.session = session
        self._code_rows: dict[str, CodeRow] = {}
        self._pool_row: Optional[PoolRow] = None

    def _load_code(self, code):
        row = self.session.get(CodeRow, code)
        if row is None:
            return None
        self._code_rows[code] = row
        return CodeRecord.model_validate(row)

    def _load_pool(self):
        row = self.session.get(PoolRow, POOL_KEY)
        if row is None:
            return None
        self._pool_row = row
        return PoolConfig.model_validate(row)

    def apply_writes(self) -> None:
        for code, record in self.code_writes.items():
            row = self._code_rows[code]
            row.used = record.used
            row.is_winner = record.is_winner
            row.redeemed_at = record.redeemed_at
            row.redeemer_id = record.redeemer_id
        if self.pool_write is not None:
            self._pool_row.remaining = self.pool_write.remaining
            self._pool_row.last_win_at = self.pool_write.last_win_at
        for outcome in self.outcome_writes:
            self.session.add(OutcomeRow(
                id=str(outcome.id),
                code=outcome.code,
                won=outcome.won,
                reward_symbol=outcome.reward_symbol,
                display_symbols=list(outcome.display_symbols),
                reward_label=outcome.reward_label,
                timestamp=outcome.timestamp,
                redeemer_id=outcome.redeemer_id,
            ))


class SqlStorage(RedemptionStore):
    """SQLAlchemy-backed store shared by any number of server instances.

    Code and pool rows carry a version column, so an UPDATE based on a stale
    read matches no row and SQLAlchemy raises ``StaleDataError``. Engines other
    than SQLite additionally run at SERIALIZABLE isolation.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if url is None:
                raise ValueError("Either url or engine is required")
            engine = _create_engine(url)
        self.engine = engine
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def run_transaction(self, fn):
        with self.Session() as session:
            txn = _SqlTransaction(session)
            result = fn(txn)
            try:
                txn.apply_writes()
                session.commit()
            except StaleDataError as e:
                session.rollback()
                raise TransactionConflict(str(e)) from e
            except OperationalError as e:
                # Serialization failures and lock timeouts surface here.
                session.rollback()
                raise TransactionConflict(str(e)) from e
            return result

    def get_pool_config(self):
        with self.Session() as session:
            row = session.get(PoolRow, POOL_KEY)
            return PoolConfig.model_validate(row) if row else None

    def get_code(self, code):
        with self.Session() as session:
            row = session.get(CodeRow, code)
            return CodeRecord.model_validate(row) if row else None

    def list_outcomes(self, limit=50, offset=0, code=None):
        stmt = select(OutcomeRow).order_by(OutcomeRow.timestamp.desc()).offset(offset).limit(limit)
        if code is not None:
            stmt = stmt.where(OutcomeRow.code == code)
        with self.Session() as session:
            return [_to_outcome(row) for row in session.scalars(stmt)]

    def count_outcomes(self, code=None):
        stmt = select(func.count()).select_from(OutcomeRow)
        if code is not None:
            stmt = stmt.where(OutcomeRow.code == code)
        with self.Session() as session:
            return session.scalar(stmt)

    def seed(self, codes=(), pool=None):
        with self.Session() as session:
            for code in codes:
                if session.get(CodeRow, code) is None:
                    session.add(CodeRow(code=code, used=False))
            if pool is not None:
                row = session.get(PoolRow, POOL_KEY)
                if row is None:
                    row = PoolRow(id=POOL_KEY)
                    session.add(row)
                row.remaining = pool.remaining
                row.win_probability = pool.win_probability
                row.reward_label = pool.reward_label
                row.last_win_at = pool.last_win_at
            session.commit()


def _create_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, isolation_level="SERIALIZABLE", pool_pre_ping=True)
