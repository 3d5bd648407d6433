# src/farmledger/runtime/positions.py
from __future__ import annotations

"""
Position ledger operations.

Each operation follows the same order:
  1. accrue the pool (except emergency_withdraw)
  2. update the (pid, user) position: amount and debt
  3. external calls last: rewarder notification, asset transfers

debt is the accumulated entitlement already accounted for, so
pending = amount * acc_reward_per_share // ACC_PRECISION - debt.
"""

from typing import Any, Dict

from farmledger.ledger.constants import ACC_PRECISION
from farmledger.ledger.fixed_point import (
    accumulated,
    checked_add,
    checked_sub,
    mul_div,
    pending,
    signed_add,
    signed_sub,
    to_i256,
)
from farmledger.ledger.state import ensure_position, get_pool, get_position
from farmledger.runtime.accrual import accrue, preview_acc_reward_per_share
from farmledger.runtime.context import OpContext
from farmledger.runtime.errors import LedgerPreconditionError

Json = Dict[str, Any]


def _require_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise LedgerPreconditionError("invalid_amount", "amount_must_be_non_negative_int", {"amount": amount})
    return amount


def _require_recipient(to: Any) -> str:
    if not isinstance(to, str) or not to.strip():
        raise LedgerPreconditionError("invalid_recipient", "recipient_must_be_non_empty", {"to": to})
    return to


def _debt_delta(amount: int, acc: int) -> int:
    return to_i256(mul_div(amount, acc, ACC_PRECISION))


def _put(ctx: OpContext, pid: int, user: str, pos: Json, amount: int, debt: int) -> None:
    """Write a position back; a record is only created once it holds something."""
    if int(pos["amount"]) == amount and int(pos["debt"]) == debt:
        return
    rec = ensure_position(ctx.state, pid, user)
    rec["amount"] = amount
    rec["debt"] = debt


def deposit(ctx: OpContext, pid: int, amount: int, to: str) -> Json:
    amt = _require_amount(amount)
    recipient = _require_recipient(to)

    pool = accrue(ctx, pid)
    acc = int(pool["acc_reward_per_share"])
    pos = get_position(ctx.state, pid, recipient)

    new_amount = checked_add(int(pos["amount"]), amt)
    # New collateral must not earn rewards accrued before it arrived.
    new_debt = signed_add(int(pos["debt"]), _debt_delta(amt, acc))
    _put(ctx, pid, recipient, pos, new_amount, new_debt)

    ctx.notify(pool, recipient, recipient, 0, new_amount)
    ctx.pull(ctx.asset(pool["collateral_asset"]), ctx.caller, amt)

    ctx.emit("deposit", user=ctx.caller, pid=pid, amount=amt, to=recipient)
    return {"pid": pid, "user": recipient, "amount": new_amount, "debt": new_debt}


def withdraw(ctx: OpContext, pid: int, amount: int, to: str) -> Json:
    amt = _require_amount(amount)
    recipient = _require_recipient(to)

    pool = accrue(ctx, pid)
    acc = int(pool["acc_reward_per_share"])
    pos = get_position(ctx.state, pid, ctx.caller)
    held = int(pos["amount"])
    if amt > held:
        raise LedgerPreconditionError("insufficient_position", "withdraw_exceeds_amount", {"pid": pid, "held": held, "amount": amt})

    new_debt = signed_sub(int(pos["debt"]), _debt_delta(amt, acc))
    new_amount = checked_sub(held, amt)
    _put(ctx, pid, ctx.caller, pos, new_amount, new_debt)

    ctx.notify(pool, ctx.caller, recipient, 0, new_amount)
    ctx.push(ctx.asset(pool["collateral_asset"]), recipient, amt)

    ctx.emit("withdraw", user=ctx.caller, pid=pid, amount=amt, to=recipient)
    return {"pid": pid, "user": ctx.caller, "amount": new_amount, "debt": new_debt}


def harvest(ctx: OpContext, pid: int, to: str) -> Json:
    recipient = _require_recipient(to)

    pool = accrue(ctx, pid)
    acc = int(pool["acc_reward_per_share"])
    pos = get_position(ctx.state, pid, ctx.caller)
    amount = int(pos["amount"])

    accrued = accumulated(amount, acc)
    reward = pending(amount, acc, int(pos["debt"]))
    _put(ctx, pid, ctx.caller, pos, amount, accrued)

    if reward != 0:
        ctx.push(ctx.reward_asset(), recipient, reward)
    ctx.notify(pool, ctx.caller, recipient, reward, amount)

    ctx.emit("harvest", user=ctx.caller, pid=pid, amount=reward)
    return {"pid": pid, "user": ctx.caller, "reward": reward, "amount": amount, "debt": accrued}


def withdraw_and_harvest(ctx: OpContext, pid: int, amount: int, to: str) -> Json:
    amt = _require_amount(amount)
    recipient = _require_recipient(to)

    pool = accrue(ctx, pid)
    acc = int(pool["acc_reward_per_share"])
    pos = get_position(ctx.state, pid, ctx.caller)
    held = int(pos["amount"])
    if amt > held:
        raise LedgerPreconditionError("insufficient_position", "withdraw_exceeds_amount", {"pid": pid, "held": held, "amount": amt})

    accrued = accumulated(held, acc)
    reward = pending(held, acc, int(pos["debt"]))

    new_debt = signed_sub(accrued, _debt_delta(amt, acc))
    new_amount = checked_sub(held, amt)
    _put(ctx, pid, ctx.caller, pos, new_amount, new_debt)

    if reward != 0:
        ctx.push(ctx.reward_asset(), recipient, reward)
    ctx.notify(pool, ctx.caller, recipient, reward, new_amount)
    ctx.push(ctx.asset(pool["collateral_asset"]), recipient, amt)

    ctx.emit("withdraw", user=ctx.caller, pid=pid, amount=amt, to=recipient)
    ctx.emit("harvest", user=ctx.caller, pid=pid, amount=reward)
    return {"pid": pid, "user": ctx.caller, "reward": reward, "amount": new_amount, "debt": new_debt}


def emergency_withdraw(ctx: OpContext, pid: int, to: str) -> Json:
    """Return the caller's whole collateral and forfeit pending reward.

    Does not accrue and never touches the reward asset; rewarder failures are
    logged and ignored so the escape hatch cannot be blocked.
    """
    recipient = _require_recipient(to)

    pool = get_pool(ctx.state, pid)
    pos = get_position(ctx.state, pid, ctx.caller)
    amt = int(pos["amount"])
    _put(ctx, pid, ctx.caller, pos, 0, 0)

    ctx.notify(pool, ctx.caller, recipient, 0, 0, best_effort=True)
    ctx.push(ctx.asset(pool["collateral_asset"]), recipient, amt)

    ctx.emit("emergency_withdraw", user=ctx.caller, pid=pid, amount=amt, to=recipient)
    return {"pid": pid, "user": ctx.caller, "amount": amt}


def pending_reward(ctx: OpContext, pid: int, user: str) -> int:
    """Reward `user` could harvest from `pid` at ctx.now (read-only)."""
    pos = get_position(ctx.state, pid, user)
    acc = preview_acc_reward_per_share(ctx, pid)
    return pending(int(pos["amount"]), acc, int(pos["debt"]))


__all__ = [
    "deposit",
    "withdraw",
    "harvest",
    "withdraw_and_harvest",
    "emergency_withdraw",
    "pending_reward",
]
