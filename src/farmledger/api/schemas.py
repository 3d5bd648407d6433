from __future__ import annotations

"""Pydantic response schemas for the public read-only API.

Ledger integers can exceed 64 bits; pydantic serializes Python ints
losslessly, so they are kept as int rather than str.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PoolOut(BaseModel):
    pid: int
    weight: int
    last_accrual_time: int
    acc_reward_per_share: int
    collateral_asset: str
    rewarder: Optional[str] = None
    supply: int = Field(default=0, description="Custody balance of the collateral asset")


class PoolsOut(BaseModel):
    ok: bool = True
    total_weight: int
    reward_rate_per_second: int
    pools: List[PoolOut]


class PositionOut(BaseModel):
    ok: bool = True
    pid: int
    user: str
    amount: int
    debt: int
    pending_reward: int


class EventOut(BaseModel):
    seq: int
    event: str
    ledger_time: int
    fields: Dict[str, Any] = Field(default_factory=dict)


class EventsOut(BaseModel):
    ok: bool = True
    events: List[EventOut]
