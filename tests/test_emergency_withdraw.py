from __future__ import annotations

import pytest

from farmledger.runtime.collaborators import InMemoryAsset
from farmledger.runtime.errors import LedgerConfigError, LedgerError, LedgerTransferError


class _FrozenRewardAsset(InMemoryAsset):
    """Reward asset that refuses every outgoing transfer."""

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return False


class _BrokenRewarder:
    def on_reward_notify(self, pid, user, recipient, realized_reward, new_amount) -> None:
        raise RuntimeError("rewarder is down")


class _FlakyRewarder:
    def __init__(self) -> None:
        self.broken = False
        self.calls = []

    def on_reward_notify(self, pid, user, recipient, realized_reward, new_amount) -> None:
        if self.broken:
            raise RuntimeError("rewarder is down")
        self.calls.append((pid, user, recipient, realized_reward, new_amount))


def test_emergency_withdraw_returns_collateral_and_forfeits_reward(make_farm) -> None:
    f = make_farm()
    f.ledger.deposit("alice", 0, 100)
    f.clock.advance(10)
    assert f.ledger.pending_reward(0, "alice") == 100

    out = f.ledger.emergency_withdraw("alice", 0)
    assert out == {"pid": 0, "user": "alice", "amount": 100}
    assert f.ledger.get_position(0, "alice") == {"amount": 0, "debt": 0}
    assert f.lps[0].balance_of("alice") == 1_000
    assert f.reward.balance_of("alice") == 0
    # no accrual happened
    assert f.ledger.get_pool(0)["last_accrual_time"] == 0

    ev = f.ledger.events.tail(1)[0]
    assert ev.event == "emergency_withdraw"
    assert ev.fields == {"user": "alice", "pid": 0, "amount": 100, "to": "alice"}


def test_emergency_withdraw_works_when_reward_asset_is_frozen(make_farm) -> None:
    f = make_farm(reward=_FrozenRewardAsset("REWARD"))
    f.ledger.deposit("alice", 0, 100)
    f.clock.advance(10)

    with pytest.raises(LedgerTransferError):
        f.ledger.harvest("alice", 0)
    with pytest.raises(LedgerTransferError):
        f.ledger.withdraw_and_harvest("alice", 0, 100)

    f.ledger.emergency_withdraw("alice", 0, to="safe")
    assert f.lps[0].balance_of("safe") == 100


def test_emergency_withdraw_works_when_accrual_is_broken(make_farm) -> None:
    f = make_farm(weights=(0,))
    f.ledger.deposit("alice", 0, 100)
    f.clock.advance(10)

    with pytest.raises(LedgerConfigError):
        f.ledger.withdraw("alice", 0, 100)

    f.ledger.emergency_withdraw("alice", 0)
    assert f.lps[0].balance_of("alice") == 1_000


def test_emergency_withdraw_ignores_rewarder_failure(make_farm) -> None:
    f = make_farm()
    rewarder = _FlakyRewarder()
    f.ledger.register_rewarder("bonus", rewarder)
    f.ledger.set_pool(f.admin, 0, 100, "bonus", True)

    f.ledger.deposit("alice", 0, 100)
    assert rewarder.calls == [(0, "alice", "alice", 0, 100)]

    rewarder.broken = True
    with pytest.raises(LedgerTransferError) as ei:
        f.ledger.withdraw("alice", 0, 10)
    assert ei.value.code == "rewarder_failed"

    f.ledger.emergency_withdraw("alice", 0)
    assert f.lps[0].balance_of("alice") == 1_000


def test_emergency_withdraw_with_always_failing_rewarder(make_farm) -> None:
    f = make_farm()
    f.ledger.register_rewarder("down", _BrokenRewarder())
    f.ledger.deposit("alice", 0, 100)
    f.ledger.set_pool(f.admin, 0, 100, "down", True)

    f.ledger.emergency_withdraw("alice", 0)
    assert f.ledger.get_position(0, "alice")["amount"] == 0


def test_emergency_withdraw_of_empty_position(make_farm) -> None:
    f = make_farm()
    out = f.ledger.emergency_withdraw("nobody", 0)
    assert out["amount"] == 0
    assert f.ledger.snapshot()["positions"] == {}


class _HarvestingRewarder:
    """Rewarder that harvests on the user's behalf and ignores the outcome."""

    def __init__(self, ledger) -> None:
        self.ledger = ledger
        self.armed = False
        self.swallowed = []

    def on_reward_notify(self, pid, user, recipient, realized_reward, new_amount) -> None:
        if not self.armed:
            return
        try:
            self.ledger.harvest(user, pid)
        except LedgerError as e:
            self.swallowed.append(e.reason)


def test_emergency_withdraw_survives_failing_reentrant_rewarder(make_farm) -> None:
    f = make_farm()
    rewarder = _HarvestingRewarder(f.ledger)
    f.ledger.register_rewarder("harvester", rewarder)
    f.ledger.set_pool(f.admin, 0, 100, "harvester", True)
    f.ledger.deposit("alice", 0, 100)
    f.ledger.set_pool(f.admin, 0, 0)
    f.clock.advance(10)
    rewarder.armed = True

    out = f.ledger.emergency_withdraw("alice", 0)
    assert out["amount"] == 100
    assert rewarder.swallowed == ["total_weight_zero"]
    assert f.lps[0].balance_of("alice") == 1_000
    assert f.ledger.get_position(0, "alice") == {"amount": 0, "debt": 0}
    assert f.reward.balance_of("alice") == 0
    assert f.ledger.events.tail(1)[0].event == "emergency_withdraw"
