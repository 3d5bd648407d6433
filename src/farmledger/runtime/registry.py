# src/farmledger/runtime/registry.py
from __future__ import annotations

"""
Pool registry and emission parameters (administrator only).

Weight and rate changes are lazy by default: pools are not accrued before
the change, so the next accrual of a pool credits its whole elapsed period
at the new parameters. Pass with_update=True to accrue every pool first.

Registering the same collateral asset in two pools is a caller contract
violation that is not detected here; both pools would then read the same
custody balance as their supply.
"""

from typing import Any, Dict, Optional

from farmledger.ledger.fixed_point import checked_add, checked_sub, to_u64, to_u256
from farmledger.ledger.state import ensure_state, get_pool, params, pool_length
from farmledger.runtime.accrual import mass_update_pools
from farmledger.runtime.context import OpContext
from farmledger.runtime.errors import LedgerPreconditionError

Json = Dict[str, Any]


def _require_uint(v: Any, *, field: str) -> int:
    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
        raise LedgerPreconditionError("invalid_payload", f"{field}_must_be_non_negative_int", {field: v})
    return v


def _require_rewarder(ctx: OpContext, rewarder: Optional[str]) -> Optional[str]:
    if rewarder is None:
        return None
    # resolves or raises unknown_rewarder
    ctx.collab.rewarder(rewarder)
    return str(rewarder)


def add_pool(ctx: OpContext, weight: int, collateral_asset: str, rewarder: Optional[str] = None, *, with_update: bool = False) -> Json:
    ctx.require_admin()
    w = to_u64(_require_uint(weight, field="weight"))
    if not ctx.collab.has_asset(collateral_asset):
        raise LedgerPreconditionError("not_found", "unknown_asset", {"asset_id": collateral_asset})
    rw = _require_rewarder(ctx, rewarder)

    if with_update:
        mass_update_pools(ctx)

    st = ensure_state(ctx.state)
    p = params(st)
    p["total_weight"] = to_u256(checked_add(int(p.get("total_weight") or 0), w))

    pid = pool_length(st)
    pool: Json = {
        "pid": pid,
        "weight": w,
        "last_accrual_time": to_u64(ctx.now),
        "acc_reward_per_share": 0,
        "collateral_asset": str(collateral_asset),
        "rewarder": rw,
    }
    st["pools"].append(pool)

    ctx.emit("pool_added", pid=pid, weight=w, collateral_asset=str(collateral_asset), rewarder=rw)
    return dict(pool)


def set_pool(
    ctx: OpContext,
    pid: int,
    weight: int,
    rewarder: Optional[str] = None,
    overwrite: bool = False,
    *,
    with_update: bool = False,
) -> Json:
    ctx.require_admin()
    w = to_u64(_require_uint(weight, field="weight"))
    pool = get_pool(ctx.state, pid)
    if overwrite:
        rewarder = _require_rewarder(ctx, rewarder)

    if with_update:
        mass_update_pools(ctx)

    p = params(ctx.state)
    p["total_weight"] = to_u256(checked_add(checked_sub(int(p.get("total_weight") or 0), int(pool["weight"])), w))
    pool["weight"] = w
    if overwrite:
        pool["rewarder"] = rewarder

    ctx.emit("pool_set", pid=pid, weight=w, rewarder=pool["rewarder"], overwrite=bool(overwrite))
    return dict(pool)


def set_emission_rate(ctx: OpContext, rate: int, *, with_update: bool = False) -> Json:
    ctx.require_admin()
    r = to_u256(_require_uint(rate, field="rate"))

    if with_update:
        mass_update_pools(ctx)

    params(ctx.state)["reward_rate_per_second"] = r
    ctx.emit("emission_rate_set", reward_rate_per_second=r)
    return {"reward_rate_per_second": r}


__all__ = ["add_pool", "set_pool", "set_emission_rate"]
