# src/farmledger/runtime/context.py
from __future__ import annotations

"""Per-operation execution context.

An OpContext carries everything one ledger operation needs (state, the
ledger clock reading, the caller, collaborators, the event log) plus the
interaction helpers every operation uses for its external calls. Interaction
failures are normalized into LedgerTransferError so the ledger rolls the
whole operation back.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from farmledger.ledger.state import params
from farmledger.runtime.collaborators import Asset, Collaborators
from farmledger.runtime.errors import LedgerError, LedgerForbiddenError, LedgerTransferError
from farmledger.runtime.events import EventLog

Json = Dict[str, Any]

_log = logging.getLogger("farmledger.ledger")


@dataclass
class Reentry:
    """Nesting depth and the first failed nested operation of the running outer operation."""

    depth: int = 0
    failure: Optional[BaseException] = None


@dataclass
class OpContext:
    op: str
    state: Json
    now: int
    caller: str
    collab: Collaborators
    events: EventLog
    reentry: Optional[Reentry] = None

    @property
    def custody(self) -> str:
        return str(params(self.state)["custody"])

    def require_admin(self) -> None:
        admin = str(params(self.state).get("admin") or "")
        if not admin or self.caller != admin:
            raise LedgerForbiddenError("forbidden", "admin_only", {"op": self.op, "caller": self.caller})

    def emit(self, event: str, **fields: Any) -> None:
        self.events.add(event, self.now, **fields)

    def asset(self, asset_id: str) -> Asset:
        return self.collab.asset(asset_id)

    def reward_asset(self) -> Asset:
        return self.collab.asset(str(params(self.state)["reward_asset"]))

    # ---- interactions ----

    def push(self, asset: Asset, to: str, amount: int) -> None:
        """Transfer `amount` of `asset` out of custody to `to`."""
        try:
            ok = asset.transfer(self.custody, str(to), int(amount))
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerTransferError(
                "transfer_failed", "asset_raised", {"asset": asset.asset_id, "to": to, "amount": amount, "error": str(e)}
            ) from e
        if not ok:
            raise LedgerTransferError("transfer_failed", "asset_refused", {"asset": asset.asset_id, "to": to, "amount": amount})

    def pull(self, asset: Asset, src: str, amount: int) -> None:
        """Transfer `amount` of `asset` from `src` into custody (allowance-checked)."""
        try:
            ok = asset.transfer_from(self.custody, str(src), self.custody, int(amount))
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerTransferError(
                "transfer_failed", "asset_raised", {"asset": asset.asset_id, "from": src, "amount": amount, "error": str(e)}
            ) from e
        if not ok:
            raise LedgerTransferError("transfer_failed", "asset_refused", {"asset": asset.asset_id, "from": src, "amount": amount})

    def notify(
        self,
        pool: Json,
        user: str,
        recipient: str,
        realized_reward: int,
        new_amount: int,
        *,
        best_effort: bool = False,
    ) -> None:
        """Invoke the pool's rewarder, if any.

        Fatal by default; best_effort=True logs and continues (emergency path).
        On the best-effort path a re-entrant operation the rewarder ran and
        failed is not held against the calling operation either.
        """
        rewarder_id: Optional[str] = pool.get("rewarder")
        if rewarder_id is None:
            return
        saved_failure = self.reentry.failure if self.reentry is not None else None
        try:
            rewarder = self.collab.rewarder(rewarder_id)
            rewarder.on_reward_notify(int(pool["pid"]), str(user), str(recipient), int(realized_reward), int(new_amount))
        except Exception as e:
            if best_effort:
                _log.warning(
                    "rewarder notify failed during %s (pid=%s rewarder=%s): %s", self.op, pool.get("pid"), rewarder_id, e
                )
                return
            if isinstance(e, LedgerError):
                raise
            raise LedgerTransferError(
                "rewarder_failed", "rewarder_raised", {"pid": pool.get("pid"), "rewarder": rewarder_id, "error": str(e)}
            ) from e
        finally:
            if best_effort and self.reentry is not None and self.reentry.failure is not saved_failure:
                _log.warning(
                    "nested operation failed inside rewarder during %s (pid=%s rewarder=%s): %s",
                    self.op,
                    pool.get("pid"),
                    rewarder_id,
                    self.reentry.failure,
                )
                self.reentry.failure = saved_failure
