# src/farmledger/runtime/migration.py
from __future__ import annotations

"""
Collateral migration hook.

migrate() hands a pool's whole custody balance to the configured migrator
and requires custody to hold exactly the same balance of the replacement
asset afterwards. Anyone may trigger it; only the administrator may set
the migrator.
"""

from typing import Any, Dict, Optional

from farmledger.ledger.state import get_pool, params
from farmledger.runtime.context import OpContext
from farmledger.runtime.errors import LedgerError, LedgerMigrationError, LedgerPreconditionError

Json = Dict[str, Any]


def set_migrator(ctx: OpContext, migrator_id: Optional[str]) -> Json:
    ctx.require_admin()
    if migrator_id is not None:
        ctx.collab.migrator(migrator_id)
    params(ctx.state)["migrator"] = None if migrator_id is None else str(migrator_id)
    ctx.emit("migrator_set", migrator=params(ctx.state)["migrator"])
    return {"migrator": params(ctx.state)["migrator"]}


def migrate(ctx: OpContext, pid: int) -> Json:
    migrator_id = params(ctx.state).get("migrator")
    if not migrator_id:
        raise LedgerMigrationError("no_migrator", "migrator_not_set", {"pid": pid})

    pool = get_pool(ctx.state, pid)
    migrator = ctx.collab.migrator(migrator_id)
    old = ctx.asset(pool["collateral_asset"])
    bal = int(old.balance_of(ctx.custody))

    try:
        old.approve(ctx.custody, str(migrator.address), bal)
        new = migrator.migrate_collateral(old)
    except LedgerError:
        raise
    except Exception as e:
        raise LedgerMigrationError("migration_failed", "migrator_raised", {"pid": pid, "error": str(e)}) from e

    new_id = str(getattr(new, "asset_id", "") or "").strip()
    if not new_id:
        raise LedgerPreconditionError("invalid_payload", "migrated_asset_without_id", {"pid": pid})
    new_bal = int(new.balance_of(ctx.custody))
    if new_bal != bal:
        raise LedgerMigrationError("balance_mismatch", "migrated_balance_must_match", {"pid": pid, "before": bal, "after": new_bal})

    ctx.collab.register_asset(new)
    pool["collateral_asset"] = new_id
    ctx.emit("pool_migrated", pid=pid, old_asset=old.asset_id, new_asset=new_id, balance=bal)
    return {"pid": pid, "collateral_asset": new_id, "balance": bal}


__all__ = ["set_migrator", "migrate"]
