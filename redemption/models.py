from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    CONFIG_UNAVAILABLE = "config_unavailable"
    INTERNAL = "internal"


class CodeRecord(BaseModel):
    code: str
    used: bool = False
    is_winner: Optional[bool] = None
    redeemed_at: Optional[datetime] = None
    redeemer_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PoolConfig(BaseModel):
    remaining: int = Field(default=0, ge=0)
    win_probability: float = Field(default=0.1, ge=0.0, le=1.0)
    reward_label: str = ""
    last_win_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class OutcomeRecord(BaseModel):
    id: UUID
    code: str
    won: bool
    reward_symbol: Optional[str] = None
    display_symbols: list[str] = Field(..., min_length=3, max_length=3)
    reward_label: Optional[str] = None
    timestamp: datetime
    redeemer_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Decision(BaseModel):
    won: bool
    reward_symbol: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class RedeemRequest(BaseModel):
    code: str = Field(..., description="Single-use code printed on the ticket")

    model_config = ConfigDict(json_schema_extra={
        "example": {"code": "ABC123XY"}
    })


class RedemptionResult(BaseModel):
    won: bool
    reward_symbol: Optional[str] = None
    display_symbols: list[str]
    reward_label: Optional[str] = None
    remaining_after: int


class PublicConfig(BaseModel):
    reward_label: Optional[str] = None
    remaining: Optional[int] = None


class OutcomeHistoryResponse(BaseModel):
    outcomes: list[OutcomeRecord]
    total_count: int


class ErrorResponse(BaseModel):
    error: ErrorKind
    detail: str
