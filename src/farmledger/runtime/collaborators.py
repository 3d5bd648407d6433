# src/farmledger/runtime/collaborators.py
from __future__ import annotations

"""External collaborators of the ledger.

The ledger state only stores string ids for assets, rewarders and the
migrator. A Collaborators registry resolves those ids into live objects at
call time, which keeps the state JSON-serializable.

Interfaces:
  - Asset:    fungible balance book with transfer primitives
  - Rewarder: side notification after position-changing operations
  - Migrator: one-shot handoff of a pool's collateral to a replacement asset

Journaling:
  Any collaborator exposing snapshot()/restore(snap) is captured before a
  ledger operation and restored if that operation fails, so a rejected
  operation leaves no partial asset movement behind.
"""

import copy
import threading
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from farmledger.runtime.errors import LedgerPreconditionError


@runtime_checkable
class Asset(Protocol):
    asset_id: str

    def balance_of(self, holder: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...

    def transfer_from(self, spender: str, src: str, to: str, amount: int) -> bool: ...

    def approve(self, owner: str, spender: str, amount: int) -> None: ...


@runtime_checkable
class Rewarder(Protocol):
    def on_reward_notify(self, pid: int, user: str, recipient: str, realized_reward: int, new_amount: int) -> None: ...


@runtime_checkable
class Migrator(Protocol):
    address: str

    def migrate_collateral(self, old_asset: Asset) -> Asset: ...


@runtime_checkable
class Journaled(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snap: Any) -> None: ...


class InMemoryAsset:
    """Reference fungible asset: balances + allowances, journal-capable.

    transfer/transfer_from return False on insufficient balance/allowance
    instead of raising, like a token that reports success as a boolean.
    """

    def __init__(self, asset_id: str, *, balances: Optional[Dict[str, int]] = None) -> None:
        self.asset_id = str(asset_id)
        self._lock = threading.RLock()
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        for holder, amt in (balances or {}).items():
            self.mint(holder, amt)

    def __repr__(self) -> str:  # pragma: no cover
        return f"InMemoryAsset({self.asset_id!r})"

    @staticmethod
    def _amount(v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            raise ValueError(f"amount must be a non-negative int, got {v!r}")
        return v

    def total_supply(self) -> int:
        with self._lock:
            return sum(self._balances.values())

    def balance_of(self, holder: str) -> int:
        with self._lock:
            return int(self._balances.get(str(holder), 0))

    def allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return int(self._allowances.get((str(owner), str(spender)), 0))

    def mint(self, to: str, amount: int) -> None:
        amt = self._amount(amount)
        with self._lock:
            self._balances[str(to)] = self.balance_of(to) + amt

    def approve(self, owner: str, spender: str, amount: int) -> None:
        amt = self._amount(amount)
        with self._lock:
            self._allowances[(str(owner), str(spender))] = amt

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        amt = self._amount(amount)
        with self._lock:
            if self.balance_of(sender) < amt:
                return False
            self._balances[str(sender)] = self.balance_of(sender) - amt
            self._balances[str(to)] = self.balance_of(to) + amt
            return True

    def transfer_from(self, spender: str, src: str, to: str, amount: int) -> bool:
        amt = self._amount(amount)
        with self._lock:
            if str(spender) != str(src):
                allowed = self.allowance(src, spender)
                if allowed < amt:
                    return False
                if self.balance_of(src) < amt:
                    return False
                self._allowances[(str(src), str(spender))] = allowed - amt
            return self.transfer(src, to, amt)

    def snapshot(self) -> Any:
        with self._lock:
            return (copy.deepcopy(self._balances), copy.deepcopy(self._allowances))

    def restore(self, snap: Any) -> None:
        balances, allowances = snap
        with self._lock:
            self._balances = copy.deepcopy(balances)
            self._allowances = copy.deepcopy(allowances)


class Collaborators:
    """Id -> object registry for assets, rewarders and migrators."""

    def __init__(self) -> None:
        self._assets: Dict[str, Asset] = {}
        self._rewarders: Dict[str, Rewarder] = {}
        self._migrators: Dict[str, Migrator] = {}

    def register_asset(self, asset: Asset) -> Asset:
        aid = str(getattr(asset, "asset_id", "") or "").strip()
        if not aid:
            raise ValueError("asset must expose a non-empty asset_id")
        self._assets[aid] = asset
        return asset

    def register_rewarder(self, rewarder_id: str, rewarder: Rewarder) -> Rewarder:
        rid = str(rewarder_id or "").strip()
        if not rid:
            raise ValueError("rewarder_id must be a non-empty string")
        self._rewarders[rid] = rewarder
        return rewarder

    def register_migrator(self, migrator_id: str, migrator: Migrator) -> Migrator:
        mid = str(migrator_id or "").strip()
        if not mid:
            raise ValueError("migrator_id must be a non-empty string")
        self._migrators[mid] = migrator
        return migrator

    def has_asset(self, asset_id: str) -> bool:
        return str(asset_id) in self._assets

    def asset(self, asset_id: str) -> Asset:
        a = self._assets.get(str(asset_id))
        if a is None:
            raise LedgerPreconditionError("not_found", "unknown_asset", {"asset_id": asset_id})
        return a

    def rewarder(self, rewarder_id: Optional[str]) -> Optional[Rewarder]:
        if rewarder_id is None:
            return None
        r = self._rewarders.get(str(rewarder_id))
        if r is None:
            raise LedgerPreconditionError("not_found", "unknown_rewarder", {"rewarder_id": rewarder_id})
        return r

    def migrator(self, migrator_id: str) -> Migrator:
        m = self._migrators.get(str(migrator_id))
        if m is None:
            raise LedgerPreconditionError("not_found", "unknown_migrator", {"migrator_id": migrator_id})
        return m

    def journaled(self) -> Iterator[Journaled]:
        seen: set[int] = set()
        objs: List[Any] = [*self._assets.values(), *self._rewarders.values(), *self._migrators.values()]
        for obj in objs:
            if id(obj) in seen:
                continue
            seen.add(id(obj))
            if callable(getattr(obj, "snapshot", None)) and callable(getattr(obj, "restore", None)):
                yield obj


__all__ = [
    "Asset",
    "Rewarder",
    "Migrator",
    "Journaled",
    "InMemoryAsset",
    "Collaborators",
]
