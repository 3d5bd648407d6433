from __future__ import annotations

import pytest

from farmledger.runtime import metrics
from farmledger.runtime.errors import LedgerError, LedgerPreconditionError, LedgerTransferError


class _Rewarder:
    def __init__(self) -> None:
        self.fail = False
        self.calls = []

    def on_reward_notify(self, pid, user, recipient, realized_reward, new_amount) -> None:
        if self.fail:
            raise RuntimeError("notify failed")
        self.calls.append((pid, user, recipient, realized_reward, new_amount))


class _ReentrantRewarder:
    """Calls back into the ledger from inside the notification."""

    def __init__(self, action) -> None:
        self.action = action
        self.armed = False
        self.results = []
        self.errors = []

    def on_reward_notify(self, pid, user, recipient, realized_reward, new_amount) -> None:
        if not self.armed:
            return
        self.armed = False
        try:
            self.results.append(self.action())
        except LedgerError as e:
            # swallowed on purpose: the ledger must still abort the outer operation
            self.errors.append(e)


def _with_rewarder(f, rewarder) -> None:
    f.ledger.register_rewarder("r", rewarder)
    f.ledger.set_pool(f.admin, 0, 100, "r", True)


def test_rewarder_failure_rolls_back_the_reward_transfer(make_farm) -> None:
    f = make_farm()
    r = _Rewarder()
    _with_rewarder(f, r)
    f.ledger.deposit("alice", 0, 100)
    f.clock.advance(10)

    state_before = f.ledger.snapshot()
    n_events = len(f.ledger.events)
    custody_reward = f.reward.balance_of(f.ledger.custody)

    r.fail = True
    with pytest.raises(LedgerTransferError) as ei:
        f.ledger.harvest("alice", 0)
    assert ei.value.code == "rewarder_failed"

    # the push happened before the notification and was undone
    assert f.reward.balance_of("alice") == 0
    assert f.reward.balance_of(f.ledger.custody) == custody_reward
    assert f.ledger.snapshot() == state_before
    assert len(f.ledger.events) == n_events

    r.fail = False
    assert f.ledger.harvest("alice", 0)["reward"] == 100


def test_rejected_operations_are_counted(make_farm) -> None:
    f = make_farm()
    with pytest.raises(LedgerPreconditionError):
        f.ledger.withdraw("alice", 0, 1)
    counters = metrics.snapshot()["counters"]
    assert counters["op_withdraw_rejected"] == 1
    assert counters["op_add_pool_ok"] == 1


def test_reentrant_harvest_sees_settled_state(make_farm) -> None:
    f = make_farm()
    r = _ReentrantRewarder(lambda: f.ledger.harvest("alice", 0))
    _with_rewarder(f, r)
    f.ledger.deposit("alice", 0, 100)
    f.clock.advance(10)

    r.armed = True
    out = f.ledger.harvest("alice", 0)

    assert out["reward"] == 100
    # debt was settled before the notification, so the nested harvest pays nothing
    assert r.results[0]["reward"] == 0
    assert f.reward.balance_of("alice") == 100


def test_reentrant_withdraw_cannot_double_spend(make_farm) -> None:
    f = make_farm()
    r = _ReentrantRewarder(lambda: f.ledger.withdraw("alice", 0, 100))
    _with_rewarder(f, r)
    f.ledger.deposit("alice", 0, 100)

    r.armed = True
    with pytest.raises(LedgerError) as ei:
        f.ledger.withdraw("alice", 0, 100)
    assert ei.value.code == "reentrancy"

    assert len(r.errors) == 1
    assert r.errors[0].code == "insufficient_position"
    # the failed nested withdraw aborts the outer one as well
    assert f.ledger.get_position(0, "alice")["amount"] == 100
    assert f.lps[0].balance_of("alice") == 900


def test_failed_nested_operation_aborts_the_outer_operation(make_farm) -> None:
    f = make_farm()
    r = _ReentrantRewarder(lambda: f.ledger.withdraw("alice", 0, 10_000))
    _with_rewarder(f, r)
    f.ledger.deposit("alice", 0, 100)
    f.clock.advance(10)
    before = f.ledger.snapshot()

    r.armed = True
    with pytest.raises(LedgerError) as ei:
        f.ledger.harvest("alice", 0)
    assert ei.value.code == "reentrancy"
    assert ei.value.reason == "nested_operation_failed"
    assert f.ledger.snapshot() == before
    assert f.reward.balance_of("alice") == 0


class _FlakyStore:
    def __init__(self, fail_after: int) -> None:
        self.writes = 0
        self.fail_after = fail_after

    def write(self, st, *, events=None) -> None:
        self.writes += 1
        if self.writes > self.fail_after:
            raise OSError("disk full")


def test_persistence_failure_rolls_back(make_farm) -> None:
    # initial state write + add_pool succeed, the deposit write fails
    store = _FlakyStore(fail_after=2)
    f = make_farm(store=store)

    with pytest.raises(OSError):
        f.ledger.deposit("alice", 0, 100)
    assert f.ledger.get_position(0, "alice")["amount"] == 0
    assert f.lps[0].balance_of("alice") == 1_000
