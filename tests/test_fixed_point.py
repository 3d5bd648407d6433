from __future__ import annotations

import pytest

from farmledger.ledger.constants import ACC_PRECISION, I256_MIN, U64_MAX, U128_MAX, U256_MAX
from farmledger.ledger.fixed_point import (
    accumulated,
    checked_add,
    checked_mul,
    checked_sub,
    mul_div,
    pending,
    signed_sub,
    to_u64,
    to_u128,
)
from farmledger.runtime.errors import LedgerArithmeticError


def test_checked_add_overflows_past_u256() -> None:
    assert checked_add(U256_MAX - 1, 1) == U256_MAX
    with pytest.raises(LedgerArithmeticError) as ei:
        checked_add(U256_MAX, 1)
    assert ei.value.reason == "overflow"


def test_checked_sub_underflow() -> None:
    with pytest.raises(LedgerArithmeticError) as ei:
        checked_sub(1, 2)
    assert ei.value.code == "arithmetic"
    assert ei.value.reason == "underflow"


def test_checked_mul_overflow() -> None:
    with pytest.raises(LedgerArithmeticError):
        checked_mul(2**200, 2**100)


def test_bool_is_not_an_amount() -> None:
    with pytest.raises(LedgerArithmeticError) as ei:
        checked_add(True, 1)
    assert ei.value.reason == "not_an_int"


def test_mul_div_truncates_and_guards_zero_divisor() -> None:
    assert mul_div(7, 3, 2) == 10
    with pytest.raises(LedgerArithmeticError) as ei:
        mul_div(1, 2, 0)
    assert ei.value.reason == "division_by_zero"


def test_narrowing_bounds() -> None:
    assert to_u64(U64_MAX) == U64_MAX
    assert to_u128(U128_MAX) == U128_MAX
    with pytest.raises(LedgerArithmeticError):
        to_u64(U64_MAX + 1)
    with pytest.raises(LedgerArithmeticError):
        to_u128(U128_MAX + 1)


def test_signed_range() -> None:
    assert signed_sub(0, 5) == -5
    with pytest.raises(LedgerArithmeticError):
        signed_sub(I256_MIN, 1)


def test_accumulated_truncates_toward_zero() -> None:
    # 3 units at 0.5 reward/unit -> 1.5 -> 1
    assert accumulated(3, ACC_PRECISION // 2) == 1


def test_pending_is_accumulated_minus_debt() -> None:
    assert pending(100, 2 * ACC_PRECISION, 150) == 50
    # negative debt (after a withdraw) increases pending
    assert pending(60, ACC_PRECISION, -40) == 100


def test_pending_never_negative() -> None:
    with pytest.raises(LedgerArithmeticError) as ei:
        pending(1, ACC_PRECISION, 2)
    assert ei.value.reason == "negative_pending"
