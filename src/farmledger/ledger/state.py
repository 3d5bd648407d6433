# src/farmledger/ledger/state.py
from __future__ import annotations

"""Ledger state schema and accessors.

Ledger state is a JSON-like dict so it can be snapshotted with copy.deepcopy
and persisted verbatim:

  {
    "ledger_id": "farm-dev",
    "params": {
      "admin": "...", "reward_asset": "...", "custody": "ledger:farm-dev",
      "reward_rate_per_second": 0, "total_weight": 0, "migrator": None,
    },
    "pools": [{"pid": 0, "weight": ..., "last_accrual_time": ...,
               "acc_reward_per_share": ..., "collateral_asset": "...",
               "rewarder": None}, ...],
    "positions": {"0": {"alice": {"amount": 0, "debt": 0}}},
  }

Positions are keyed by str(pid) so the dict survives a JSON round trip.
"""

import copy
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from farmledger.ledger.constants import CUSTODY_PREFIX
from farmledger.runtime.errors import LedgerPreconditionError

Json = Dict[str, Any]


def initial_state(*, ledger_id: str, admin: str, reward_asset: str, reward_rate_per_second: int = 0) -> Json:
    return {
        "ledger_id": str(ledger_id),
        "params": {
            "admin": str(admin),
            "reward_asset": str(reward_asset),
            "custody": f"{CUSTODY_PREFIX}{ledger_id}",
            "reward_rate_per_second": int(reward_rate_per_second),
            "total_weight": 0,
            "migrator": None,
        },
        "pools": [],
        "positions": {},
    }


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains the core containers.

    Raises:
        TypeError: if st (or one of its containers) has the wrong shape
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key, typ in (("params", dict), ("pools", list), ("positions", dict)):
        cur = st.get(key)
        if cur is None:
            st[key] = typ()
        elif not isinstance(cur, typ):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be {typ.__name__}, got {type(cur)}")

    return st  # type: ignore[return-value]


def params(st: Json) -> Json:
    return ensure_state(st)["params"]


def pool_length(st: Json) -> int:
    return len(ensure_state(st)["pools"])


def get_pool(st: Json, pid: Any) -> Json:
    pools: List[Json] = ensure_state(st)["pools"]
    if isinstance(pid, bool) or not isinstance(pid, int) or pid < 0 or pid >= len(pools):
        raise LedgerPreconditionError("not_found", "unknown_pool", {"pid": pid, "pool_length": len(pools)})
    return pools[pid]


def get_position(st: Json, pid: int, user: str) -> Json:
    """Read-only lookup; missing positions read as zero."""
    by_pool = ensure_state(st)["positions"].get(str(pid))
    if isinstance(by_pool, dict):
        pos = by_pool.get(str(user))
        if isinstance(pos, dict):
            return pos
    return {"amount": 0, "debt": 0}


def ensure_position(st: Json, pid: int, user: str) -> Json:
    """Return the mutable position record, creating it zeroed on first touch."""
    positions = ensure_state(st)["positions"]
    by_pool = positions.get(str(pid))
    if not isinstance(by_pool, dict):
        by_pool = {}
        positions[str(pid)] = by_pool
    pos = by_pool.get(str(user))
    if not isinstance(pos, dict):
        pos = {"amount": 0, "debt": 0}
        by_pool[str(user)] = pos
    return pos


@dataclass(frozen=True, slots=True)
class LedgerView:
    """
    Immutable read-only ledger view used by the API and other readers.
    """

    ledger_id: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    pools: List[Dict[str, Any]] = field(default_factory=list)
    positions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_ledger(cls, state: Dict[str, Any]) -> "LedgerView":
        return cls(
            ledger_id=str(state.get("ledger_id") or ""),
            params=copy.deepcopy(state.get("params", {})) if isinstance(state.get("params"), dict) else {},
            pools=copy.deepcopy(state.get("pools", [])) if isinstance(state.get("pools"), list) else [],
            positions=copy.deepcopy(state.get("positions", {})) if isinstance(state.get("positions"), dict) else {},
        )

    def to_ledger(self) -> Dict[str, Any]:
        return {
            "ledger_id": self.ledger_id,
            "params": copy.deepcopy(self.params),
            "pools": copy.deepcopy(self.pools),
            "positions": copy.deepcopy(self.positions),
        }

    def get_param(self, key: str, default: Any = None) -> Any:
        return self.params.get(key, default)

    def get_pool(self, pid: int) -> Optional[Dict[str, Any]]:
        if 0 <= int(pid) < len(self.pools):
            return self.pools[int(pid)]
        return None

    def get_position(self, pid: int, user: str) -> Dict[str, Any]:
        by_pool = self.positions.get(str(pid))
        if isinstance(by_pool, dict) and isinstance(by_pool.get(user), dict):
            return by_pool[user]
        return {"amount": 0, "debt": 0}

    def users(self, pid: int) -> List[str]:
        by_pool = self.positions.get(str(pid))
        return sorted(by_pool.keys()) if isinstance(by_pool, dict) else []
