from __future__ import annotations

from fastapi import APIRouter, Request

from farmledger.api.routes_public_parts.common import _ledger
from farmledger.api.schemas import PoolOut, PoolsOut, PositionOut

router = APIRouter()


def _pool_out(ledger, pool: dict) -> PoolOut:
    supply = 0
    collab = ledger.collaborators
    if collab.has_asset(pool["collateral_asset"]):
        supply = int(collab.asset(pool["collateral_asset"]).balance_of(ledger.custody))
    return PoolOut(supply=supply, **pool)


@router.get("/pools", response_model=PoolsOut)
def list_pools(request: Request) -> PoolsOut:
    ledger = _ledger(request)
    p = ledger.params()
    return PoolsOut(
        total_weight=int(p.get("total_weight") or 0),
        reward_rate_per_second=int(p.get("reward_rate_per_second") or 0),
        pools=[_pool_out(ledger, pool) for pool in ledger.pools()],
    )


@router.get("/pools/{pid}", response_model=PoolOut)
def get_pool(pid: int, request: Request) -> PoolOut:
    ledger = _ledger(request)
    return _pool_out(ledger, ledger.get_pool(pid))


@router.get("/pools/{pid}/positions/{user}", response_model=PositionOut)
def get_position(pid: int, user: str, request: Request) -> PositionOut:
    """Position plus the reward harvestable right now."""
    ledger = _ledger(request)
    pos = ledger.get_position(pid, user)
    return PositionOut(
        pid=pid,
        user=user,
        amount=int(pos["amount"]),
        debt=int(pos["debt"]),
        pending_reward=ledger.pending_reward(pid, user),
    )
