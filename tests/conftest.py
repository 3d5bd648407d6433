from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Optional, Sequence

import pytest

# Ensure local "src/" takes precedence over any globally-installed "farmledger" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from farmledger.runtime import metrics  # noqa: E402
from farmledger.runtime.collaborators import InMemoryAsset  # noqa: E402
from farmledger.runtime.ledger import RewardLedger  # noqa: E402

ADMIN = "admin"
BIG_ALLOWANCE = 10**30


class FakeClock:
    """Manually advanced ledger clock (seconds)."""

    def __init__(self, t: int = 0) -> None:
        self.t = int(t)

    def __call__(self) -> int:
        return self.t

    def advance(self, dt: int) -> int:
        self.t += int(dt)
        return self.t


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    metrics.reset()


@pytest.fixture()
def make_farm() -> Callable[..., SimpleNamespace]:
    """Factory for a ledger with funded reward custody and one collateral asset per pool.

    Every user gets `balance` of each collateral asset and a large allowance
    for the ledger custody, so deposits only need the ledger call.
    """

    def _make(
        *,
        rate: int = 10,
        weights: Sequence[int] = (100,),
        funding: int = 1_000_000,
        users: Sequence[str] = ("alice", "bob"),
        balance: int = 1_000,
        t0: int = 0,
        reward: Optional[Any] = None,
        store: Any = None,
    ) -> SimpleNamespace:
        clock = FakeClock(t0)
        reward_asset = reward if reward is not None else InMemoryAsset("REWARD")
        ledger = RewardLedger(
            ledger_id="farm-test",
            admin=ADMIN,
            reward_asset=reward_asset,
            reward_rate_per_second=rate,
            clock=clock,
            store=store,
        )
        if funding and isinstance(reward_asset, InMemoryAsset):
            reward_asset.mint(ledger.custody, funding)

        lps = []
        for i, w in enumerate(weights):
            lp = InMemoryAsset(f"LP{i}")
            for u in users:
                lp.mint(u, balance)
                lp.approve(u, ledger.custody, BIG_ALLOWANCE)
            ledger.register_asset(lp)
            ledger.add_pool(ADMIN, w, lp.asset_id)
            lps.append(lp)

        return SimpleNamespace(ledger=ledger, clock=clock, reward=reward_asset, lps=lps, admin=ADMIN)

    return _make
