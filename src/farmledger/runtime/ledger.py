# src/farmledger/runtime/ledger.py
from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from farmledger.ledger.state import (
    LedgerView,
    ensure_state,
    get_pool,
    get_position,
    initial_state,
    params,
    pool_length,
)
from farmledger.runtime import accrual, migration, positions, registry
from farmledger.runtime.collaborators import Asset, Collaborators, Migrator, Rewarder
from farmledger.runtime.context import OpContext, Reentry
from farmledger.runtime.errors import LedgerError, LedgerPreconditionError
from farmledger.runtime.events import EventLog, LedgerEvent, log_event
from farmledger.runtime.metrics import inc_counter, set_gauge

Json = Dict[str, Any]
Clock = Callable[[], int]
OpFn = Callable[..., Any]


def _system_clock() -> int:
    return int(time.time())


class _Checkpoint:
    """Rollback point: ledger state, journaled collaborators, event-log length."""

    def __init__(self, state: Json, collab: Collaborators, events: EventLog) -> None:
        self._state = state
        self._events = events
        self._backup = copy.deepcopy(state)
        self._journal = [(obj, obj.snapshot()) for obj in collab.journaled()]
        self._mark = events.mark()

    @property
    def mark(self) -> int:
        return self._mark

    def restore(self) -> None:
        # Restore in place so callers holding a reference to the state dict
        # keep seeing the live view.
        self._state.clear()
        self._state.update(self._backup)
        for obj, snap in reversed(self._journal):
            obj.restore(snap)
        self._events.truncate(self._mark)


_BATCHABLE: Dict[str, OpFn] = {
    "add_pool": registry.add_pool,
    "set_pool": registry.set_pool,
    "set_emission_rate": registry.set_emission_rate,
    "set_migrator": migration.set_migrator,
    "migrate": migration.migrate,
    "update_pool": accrual.accrue,
    "mass_update_pools": accrual.mass_update_pools,
    "deposit": positions.deposit,
    "withdraw": positions.withdraw,
    "harvest": positions.harvest,
    "withdraw_and_harvest": positions.withdraw_and_harvest,
    "emergency_withdraw": positions.emergency_withdraw,
}


class RewardLedger:
    """Multi-pool, time-weighted reward emission ledger.

    Concurrency model:
      - every operation runs under one re-entrant lock (single writer);
        readers take the same lock for a consistent snapshot
      - external calls (transfers, rewarder, migrator) run last in each
        operation, after the ledger state is already updated
      - a collaborator may re-enter the ledger on the same thread; a failed
        re-entrant operation aborts the operation that triggered it

    Atomicity:
      any exception restores the ledger state, every journaled collaborator
      and the event log to the point where the operation started.
    """

    def __init__(
        self,
        *,
        ledger_id: str,
        admin: str,
        reward_asset: Asset,
        reward_rate_per_second: int = 0,
        clock: Optional[Clock] = None,
        collaborators: Optional[Collaborators] = None,
        store: Any = None,
        state: Optional[Json] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._clock: Clock = clock or _system_clock
        self._collab = collaborators or Collaborators()
        self._collab.register_asset(reward_asset)
        self._store = store
        start_seq = 0
        if store is not None and callable(getattr(store, "next_event_seq", None)):
            start_seq = int(store.next_event_seq())
        self._events = EventLog(start_seq=start_seq)
        self._log = logging.getLogger("farmledger.ledger")

        self._reentry = Reentry()

        if state is not None:
            self._state = ensure_state(state)
            st_id = str(self._state.get("ledger_id") or "")
            if st_id and st_id != str(ledger_id):
                raise LedgerPreconditionError(
                    "config", "ledger_id_mismatch", {"stored": st_id, "configured": str(ledger_id)}
                )
        else:
            self._state = initial_state(
                ledger_id=ledger_id,
                admin=admin,
                reward_asset=reward_asset.asset_id,
                reward_rate_per_second=int(reward_rate_per_second),
            )
            if self._store is not None:
                self._store.write(self._state)

    # ---- collaborators ----

    @property
    def collaborators(self) -> Collaborators:
        return self._collab

    def register_asset(self, asset: Asset) -> Asset:
        return self._collab.register_asset(asset)

    def register_rewarder(self, rewarder_id: str, rewarder: Rewarder) -> Rewarder:
        return self._collab.register_rewarder(rewarder_id, rewarder)

    def register_migrator(self, migrator_id: str, migrator: Migrator) -> Migrator:
        return self._collab.register_migrator(migrator_id, migrator)

    @property
    def ledger_id(self) -> str:
        return str(self._state.get("ledger_id") or "")

    @property
    def custody(self) -> str:
        return str(params(self._state)["custody"])

    @property
    def events(self) -> EventLog:
        return self._events

    def now(self) -> int:
        return int(self._clock())

    # ---- execution ----

    def _ctx(self, op: str, caller: str) -> OpContext:
        return OpContext(
            op=op,
            state=self._state,
            now=self.now(),
            caller=str(caller),
            collab=self._collab,
            events=self._events,
            reentry=self._reentry,
        )

    def _run(self, op: str, caller: str, fn: Callable[[OpContext], Any]) -> Any:
        with self._lock:
            outer = self._reentry.depth == 0
            if outer:
                self._reentry.failure = None
            cp = _Checkpoint(self._state, self._collab, self._events)
            ctx = self._ctx(op, caller)

            self._reentry.depth += 1
            try:
                result = fn(ctx)
                if outer and self._reentry.failure is not None:
                    raise LedgerError(
                        "reentrancy", "nested_operation_failed", {"op": op, "error": str(self._reentry.failure)}
                    )
                if outer and self._store is not None:
                    self._store.write(self._state, events=[e.to_json() for e in self._events.since(cp.mark)])
            except Exception as e:
                cp.restore()
                if not outer and self._reentry.failure is None:
                    self._reentry.failure = e
                inc_counter(f"op_{op}_rejected")
                log_event(
                    self._log,
                    "op_rejected",
                    op=op,
                    caller=str(caller),
                    nested=not outer,
                    code=getattr(e, "code", type(e).__name__),
                    reason=getattr(e, "reason", str(e)),
                )
                raise
            finally:
                self._reentry.depth -= 1

            inc_counter(f"op_{op}_ok")
            if outer:
                self._publish(self._events.since(cp.mark))
                self._events.trim()
            return result

    def _publish(self, committed: List[LedgerEvent]) -> None:
        for e in committed:
            log_event(self._log, e.event, seq=e.seq, ledger_id=self.ledger_id, ledger_time=e.ledger_time, **e.fields)
        set_gauge("pools", pool_length(self._state))
        set_gauge("total_weight", int(params(self._state).get("total_weight") or 0))

    # ---- administration ----

    def add_pool(
        self,
        caller: str,
        weight: int,
        collateral_asset: str,
        rewarder: Optional[str] = None,
        *,
        with_update: bool = False,
    ) -> Json:
        return self._run(
            "add_pool",
            caller,
            lambda ctx: registry.add_pool(ctx, weight, collateral_asset, rewarder, with_update=with_update),
        )

    def set_pool(
        self,
        caller: str,
        pid: int,
        weight: int,
        rewarder: Optional[str] = None,
        overwrite: bool = False,
        *,
        with_update: bool = False,
    ) -> Json:
        return self._run(
            "set_pool",
            caller,
            lambda ctx: registry.set_pool(ctx, pid, weight, rewarder, overwrite, with_update=with_update),
        )

    def set_emission_rate(self, caller: str, rate: int, *, with_update: bool = False) -> Json:
        return self._run(
            "set_emission_rate", caller, lambda ctx: registry.set_emission_rate(ctx, rate, with_update=with_update)
        )

    def set_migrator(self, caller: str, migrator_id: Optional[str]) -> Json:
        return self._run("set_migrator", caller, lambda ctx: migration.set_migrator(ctx, migrator_id))

    def migrate(self, caller: str, pid: int) -> Json:
        return self._run("migrate", caller, lambda ctx: migration.migrate(ctx, pid))

    # ---- accrual ----

    def update_pool(self, pid: int, *, caller: str = "") -> Json:
        return self._run("update_pool", caller, lambda ctx: dict(accrual.accrue(ctx, pid)))

    def mass_update_pools(self, pids: Optional[Iterable[int]] = None, *, caller: str = "") -> List[Json]:
        targets = None if pids is None else list(pids)
        return self._run(
            "mass_update_pools", caller, lambda ctx: [dict(p) for p in accrual.mass_update_pools(ctx, targets)]
        )

    # ---- positions ----

    def deposit(self, caller: str, pid: int, amount: int, to: Optional[str] = None) -> Json:
        return self._run("deposit", caller, lambda ctx: positions.deposit(ctx, pid, amount, to or ctx.caller))

    def withdraw(self, caller: str, pid: int, amount: int, to: Optional[str] = None) -> Json:
        return self._run("withdraw", caller, lambda ctx: positions.withdraw(ctx, pid, amount, to or ctx.caller))

    def harvest(self, caller: str, pid: int, to: Optional[str] = None) -> Json:
        return self._run("harvest", caller, lambda ctx: positions.harvest(ctx, pid, to or ctx.caller))

    def withdraw_and_harvest(self, caller: str, pid: int, amount: int, to: Optional[str] = None) -> Json:
        return self._run(
            "withdraw_and_harvest",
            caller,
            lambda ctx: positions.withdraw_and_harvest(ctx, pid, amount, to or ctx.caller),
        )

    def emergency_withdraw(self, caller: str, pid: int, to: Optional[str] = None) -> Json:
        return self._run(
            "emergency_withdraw", caller, lambda ctx: positions.emergency_withdraw(ctx, pid, to or ctx.caller)
        )

    def batch(self, caller: str, calls: Sequence[Any], *, revert_on_fail: bool = True) -> List[Json]:
        """Run several operations as one atomic unit.

        Each call is {"op": name, "args": {...}} or a (name, args) tuple; the
        caller is shared. With revert_on_fail=False a failing call is rolled
        back on its own and reported, and the remaining calls still run.
        """
        parsed = [_parse_call(c) for c in calls]

        def _do(ctx: OpContext) -> List[Json]:
            out: List[Json] = []
            for name, args in parsed:
                ctx.op = name
                if revert_on_fail:
                    out.append({"op": name, "ok": True, "result": copy.deepcopy(_BATCHABLE[name](ctx, **args))})
                    continue
                cp = _Checkpoint(ctx.state, ctx.collab, ctx.events)
                try:
                    out.append({"op": name, "ok": True, "result": copy.deepcopy(_BATCHABLE[name](ctx, **args))})
                except LedgerError as e:
                    cp.restore()
                    out.append({"op": name, "ok": False, "error": {"code": e.code, "reason": e.reason, "details": e.details}})
            ctx.op = "batch"
            return out

        return self._run("batch", caller, _do)

    # ---- views ----

    def pool_length(self) -> int:
        with self._lock:
            return pool_length(self._state)

    def get_pool(self, pid: int) -> Json:
        with self._lock:
            return dict(get_pool(self._state, pid))

    def pools(self) -> List[Json]:
        with self._lock:
            return [dict(p) for p in ensure_state(self._state)["pools"]]

    def get_position(self, pid: int, user: str) -> Json:
        with self._lock:
            get_pool(self._state, pid)
            return dict(get_position(self._state, pid, user))

    def pending_reward(self, pid: int, user: str) -> int:
        with self._lock:
            return positions.pending_reward(self._ctx("pending_reward", user), pid, user)

    def params(self) -> Json:
        with self._lock:
            return dict(params(self._state))

    def view(self) -> LedgerView:
        with self._lock:
            return LedgerView.from_ledger(self._state)

    def snapshot(self) -> Json:
        with self._lock:
            return copy.deepcopy(self._state)

    def tail_events(self, n: int = 200, *, event: Optional[str] = None) -> List[Json]:
        """Most recent committed events, oldest first.

        Served from the store when one is configured, so history survives
        restarts and the in-memory window.
        """
        if self._store is not None and callable(getattr(self._store, "tail_events", None)):
            return list(self._store.tail_events(n, event=event))
        return [e.to_json() for e in self._events.tail(n, event=event)]


def _parse_call(call: Any) -> Tuple[str, Json]:
    if isinstance(call, dict):
        name, args = call.get("op"), call.get("args") or {}
    elif isinstance(call, (tuple, list)) and len(call) == 2:
        name, args = call
    else:
        raise LedgerPreconditionError("invalid_payload", "batch_call_shape", {"call": repr(call)})
    if name not in _BATCHABLE:
        raise LedgerPreconditionError("invalid_payload", "batch_op_not_allowed", {"op": name})
    if not isinstance(args, dict):
        raise LedgerPreconditionError("invalid_payload", "batch_args_must_be_dict", {"op": name})
    return str(name), dict(args)


__all__ = ["RewardLedger"]
