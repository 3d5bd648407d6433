# src/farmledger/runtime/accrual.py
from __future__ import annotations

"""
Accrual engine.

Brings a pool's acc_reward_per_share up to the current ledger time. Every
mutating position operation calls accrue() on its pool first.

Collateral supply is read directly from the custody balance of the pool's
collateral asset (not summed from positions), so collateral sent to custody
out of band is absorbed into the accumulator.

Accrual is lazy: rate and weight changes are not applied retroactively per
pool. A pool straddling a change is credited at the parameters in force when
it is next accrued, unless the change was made with with_update=True.
"""

from typing import Any, Dict, Iterable, List, Optional

from farmledger.ledger.constants import ACC_PRECISION
from farmledger.ledger.fixed_point import checked_add, checked_mul, checked_sub, mul_div, to_u64, to_u128
from farmledger.ledger.state import get_pool, params, pool_length
from farmledger.runtime.context import OpContext
from farmledger.runtime.errors import LedgerConfigError

Json = Dict[str, Any]


def _collateral_supply(ctx: OpContext, pool: Json) -> int:
    return int(ctx.asset(pool["collateral_asset"]).balance_of(ctx.custody))


def _acc_increment(ctx: OpContext, pool: Json, elapsed: int, supply: int) -> int:
    p = params(ctx.state)
    total_weight = int(p.get("total_weight") or 0)
    if total_weight == 0:
        raise LedgerConfigError(
            "config",
            "total_weight_zero",
            {"pid": pool.get("pid"), "weight": pool.get("weight"), "supply": supply},
        )
    # Truncating twice under-distributes by design; never over-distributes.
    reward = mul_div(checked_mul(elapsed, int(p["reward_rate_per_second"])), int(pool["weight"]), total_weight)
    return to_u128(mul_div(reward, ACC_PRECISION, supply))


def preview_acc_reward_per_share(ctx: OpContext, pid: int) -> int:
    """Accumulator value accrue() would produce right now, without mutating state."""
    pool = get_pool(ctx.state, pid)
    acc = int(pool["acc_reward_per_share"])
    last = int(pool["last_accrual_time"])
    if ctx.now <= last:
        return acc
    supply = _collateral_supply(ctx, pool)
    if supply == 0:
        return acc
    return to_u128(checked_add(acc, _acc_increment(ctx, pool, checked_sub(ctx.now, last), supply)))


def accrue(ctx: OpContext, pid: int) -> Json:
    """Update the pool's accumulator to ctx.now and return the (mutated) pool."""
    pool = get_pool(ctx.state, pid)
    last = int(pool["last_accrual_time"])
    if ctx.now <= last:
        return pool

    supply = _collateral_supply(ctx, pool)
    if supply > 0:
        inc = _acc_increment(ctx, pool, checked_sub(ctx.now, last), supply)
        pool["acc_reward_per_share"] = to_u128(checked_add(int(pool["acc_reward_per_share"]), inc))

    pool["last_accrual_time"] = to_u64(ctx.now)
    ctx.emit(
        "pool_accrued",
        pid=int(pool["pid"]),
        last_accrual_time=int(pool["last_accrual_time"]),
        supply=supply,
        acc_reward_per_share=int(pool["acc_reward_per_share"]),
    )
    return pool


def mass_update_pools(ctx: OpContext, pids: Optional[Iterable[int]] = None) -> List[Json]:
    """Accrue several pools (every pool when pids is None)."""
    targets = list(range(pool_length(ctx.state))) if pids is None else list(pids)
    return [accrue(ctx, pid) for pid in targets]


__all__ = ["accrue", "mass_update_pools", "preview_acc_reward_per_share"]
