# src/farmledger/ledger/fixed_point.py
from __future__ import annotations

"""Checked integer arithmetic for the accrual and debt formulas.

Python ints never wrap, so every helper here enforces the declared width
explicitly and raises LedgerArithmeticError instead of returning an
out-of-range value. Division truncates toward zero; all dividends in the
accounting are non-negative so this matches floor division.
"""

from farmledger.ledger.constants import (
    ACC_PRECISION,
    I256_MAX,
    I256_MIN,
    U64_MAX,
    U128_MAX,
    U256_MAX,
)
from farmledger.runtime.errors import LedgerArithmeticError


def _require_int(v: object, *, op: str) -> int:
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool) or not isinstance(v, int):
        raise LedgerArithmeticError("arithmetic", "not_an_int", {"op": op, "type": type(v).__name__})
    return v


def _require_unsigned(v: object, *, op: str, bound: int = U256_MAX) -> int:
    i = _require_int(v, op=op)
    if i < 0:
        raise LedgerArithmeticError("arithmetic", "underflow", {"op": op, "value": i})
    if i > bound:
        raise LedgerArithmeticError("arithmetic", "overflow", {"op": op, "value": i, "bound": bound})
    return i


def _require_signed(v: object, *, op: str) -> int:
    i = _require_int(v, op=op)
    if i < I256_MIN or i > I256_MAX:
        raise LedgerArithmeticError("arithmetic", "overflow", {"op": op, "value": i})
    return i


def checked_add(a: int, b: int) -> int:
    return _require_unsigned(_require_unsigned(a, op="add") + _require_unsigned(b, op="add"), op="add")


def checked_sub(a: int, b: int) -> int:
    return _require_unsigned(_require_unsigned(a, op="sub") - _require_unsigned(b, op="sub"), op="sub")


def checked_mul(a: int, b: int) -> int:
    return _require_unsigned(_require_unsigned(a, op="mul") * _require_unsigned(b, op="mul"), op="mul")


def mul_div(a: int, b: int, d: int) -> int:
    """(a * b) // d with checked product and an explicit zero-divisor guard."""
    prod = checked_mul(a, b)
    div = _require_unsigned(d, op="div")
    if div == 0:
        raise LedgerArithmeticError("arithmetic", "division_by_zero", {"a": a, "b": b})
    return prod // div


def signed_add(a: int, b: int) -> int:
    return _require_signed(_require_signed(a, op="iadd") + _require_signed(b, op="iadd"), op="iadd")


def signed_sub(a: int, b: int) -> int:
    return _require_signed(_require_signed(a, op="isub") - _require_signed(b, op="isub"), op="isub")


def to_u64(v: int) -> int:
    return _require_unsigned(v, op="to_u64", bound=U64_MAX)


def to_u128(v: int) -> int:
    return _require_unsigned(v, op="to_u128", bound=U128_MAX)


def to_u256(v: int) -> int:
    return _require_unsigned(v, op="to_u256")


def to_i256(v: int) -> int:
    return _require_signed(v, op="to_i256")


def accumulated(amount: int, acc_reward_per_share: int) -> int:
    """Reward entitlement of `amount` collateral at accumulator `acc_reward_per_share`."""
    return to_i256(mul_div(amount, acc_reward_per_share, ACC_PRECISION))


def pending(amount: int, acc_reward_per_share: int, debt: int) -> int:
    """accumulated - debt, which must be non-negative under correct sequencing."""
    out = signed_sub(accumulated(amount, acc_reward_per_share), debt)
    if out < 0:
        raise LedgerArithmeticError(
            "arithmetic",
            "negative_pending",
            {"amount": amount, "acc_reward_per_share": acc_reward_per_share, "debt": debt},
        )
    return out


__all__ = [
    "checked_add",
    "checked_sub",
    "checked_mul",
    "mul_div",
    "signed_add",
    "signed_sub",
    "to_u64",
    "to_u128",
    "to_u256",
    "to_i256",
    "accumulated",
    "pending",
]
