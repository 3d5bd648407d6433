# src/farmledger/ledger/constants.py
from __future__ import annotations

"""Fixed-point and width constants for the emission ledger.

All ledger quantities are integers. Fractional "reward per share" values are
scaled by ACC_PRECISION so integer division keeps twelve decimal digits of the
per-unit accrual.

Width bounds mirror the storage types the accounting was designed around:
  - accumulator:       unsigned 128-bit
  - timestamps/weight: unsigned 64-bit
  - amounts/products:  unsigned 256-bit
  - debt:              signed 256-bit
"""

# Scale for acc_reward_per_share
ACC_PRECISION: int = 10**12

U64_MAX: int = 2**64 - 1
U128_MAX: int = 2**128 - 1
U256_MAX: int = 2**256 - 1

I256_MIN: int = -(2**255)
I256_MAX: int = 2**255 - 1

# Custody account prefix; the full id is f"{CUSTODY_PREFIX}{ledger_id}".
CUSTODY_PREFIX: str = "ledger:"
