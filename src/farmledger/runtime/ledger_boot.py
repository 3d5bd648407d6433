# src/farmledger/runtime/ledger_boot.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from farmledger.ledger.constants import CUSTODY_PREFIX
from farmledger.runtime.collaborators import Collaborators, InMemoryAsset
from farmledger.runtime.config import LedgerConfig, load_ledger_config
from farmledger.runtime.events import log_event
from farmledger.runtime.ledger import Clock, RewardLedger
from farmledger.runtime.single_writer import SingleWriterLock
from farmledger.runtime.sqlite_db import SqliteDB, SqliteLedgerStore

_log = logging.getLogger("farmledger.boot")


@dataclass
class LedgerRuntime:
    cfg: LedgerConfig
    ledger: RewardLedger
    store: Optional[SqliteLedgerStore] = None
    writer_lock: Optional[SingleWriterLock] = None

    def close(self) -> None:
        if self.writer_lock is not None:
            self.writer_lock.release()


def build_ledger(
    cfg: Optional[LedgerConfig] = None,
    *,
    clock: Optional[Clock] = None,
    collaborators: Optional[Collaborators] = None,
) -> LedgerRuntime:
    """
    Build a RewardLedger from an explicit config or, if omitted, from
    FARMLEDGER_CONFIG_PATH / FARMLEDGER_* environment variables.

    With a db_path the ledger state is loaded from (or created in) SQLite and
    the process takes the single-writer lock first.
    """
    c = cfg or load_ledger_config()
    collab = collaborators or Collaborators()

    if collab.has_asset(c.reward_asset):
        reward = collab.asset(c.reward_asset)
    else:
        reward = InMemoryAsset(c.reward_asset)

    lock: Optional[SingleWriterLock] = None
    store: Optional[SqliteLedgerStore] = None
    state = None
    if c.db_path.strip():
        lock = SingleWriterLock(c.lock_path)
        lock.acquire()

    try:
        if lock is not None:
            store = SqliteLedgerStore(db=SqliteDB(path=c.db_path))
            if store.exists():
                state = store.read()
        fresh = state is None
        ledger = RewardLedger(
            ledger_id=c.ledger_id,
            admin=c.admin,
            reward_asset=reward,
            reward_rate_per_second=c.reward_rate_per_second,
            clock=clock,
            collaborators=collab,
            store=store,
            state=state,
        )
    except Exception:
        if lock is not None:
            lock.release()
        raise

    if fresh and c.reward_funding > 0 and isinstance(reward, InMemoryAsset):
        reward.mint(f"{CUSTODY_PREFIX}{c.ledger_id}", c.reward_funding)

    log_event(
        _log,
        "ledger_booted",
        ledger_id=c.ledger_id,
        mode=c.mode,
        fresh=fresh,
        persistent=store is not None,
        pools=ledger.pool_length(),
    )
    return LedgerRuntime(cfg=c, ledger=ledger, store=store, writer_lock=lock)
