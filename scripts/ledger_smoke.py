#!/usr/bin/env python3

"""Production-ish smoke test for farmledger.

It verifies:
  - the ledger boots on a fresh SQLite db (single-writer lock taken)
  - one pool accrues and pays two depositors in proportion to time and stake
  - the state survives a restart
  - the FastAPI app serves /v1/health and /v1/pools over the booted runtime

Usage:
  python3 scripts/ledger_smoke.py

Optional env overrides:
  FARMLEDGER_SMOKE_RATE=10
  FARMLEDGER_SMOKE_STEP_S=10
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import replace

from fastapi.testclient import TestClient

from farmledger.api.app import create_app
from farmledger.runtime.collaborators import Collaborators, InMemoryAsset
from farmledger.runtime.config import default_ledger_config
from farmledger.runtime.ledger_boot import build_ledger


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except Exception:
        return int(default)


class _StepClock:
    def __init__(self) -> None:
        self.t = 1_700_000_000

    def __call__(self) -> int:
        return self.t


def main() -> int:
    rate = _env_int("FARMLEDGER_SMOKE_RATE", 10)
    step = _env_int("FARMLEDGER_SMOKE_STEP_S", 10)

    with tempfile.TemporaryDirectory(prefix="farmledger-smoke-") as td:
        cfg = replace(
            default_ledger_config(),
            ledger_id="smoke-farm",
            mode="dev",
            reward_rate_per_second=rate,
            reward_funding=10**9,
            db_path=os.path.join(td, "farmledger.db"),
            lock_path=os.path.join(td, "farmledger.lock"),
        )

        clock = _StepClock()
        collab = Collaborators()
        lp = collab.register_asset(InMemoryAsset("LP0", balances={"alice": 1_000, "bob": 1_000}))

        rt = build_ledger(cfg, clock=clock, collaborators=collab)
        ledger = rt.ledger
        for user in ("alice", "bob"):
            lp.approve(user, ledger.custody, 1_000)

        ledger.add_pool(cfg.admin, 100, "LP0")
        ledger.deposit("alice", 0, 100)
        clock.t += step
        ledger.deposit("bob", 0, 100)
        clock.t += step

        expected = {"alice": rate * step + rate * step // 2, "bob": rate * step // 2}
        got = {u: ledger.pending_reward(0, u) for u in expected}
        if got != expected:
            raise RuntimeError(f"unexpected pending rewards: {got} != {expected}")
        rt.close()

        # Restart on the same db and serve it.
        rt = build_ledger(cfg, clock=clock, collaborators=collab)
        try:
            app = create_app(boot_runtime=False)
            app.state.runtime = rt
            with TestClient(app) as client:
                health = client.get("/v1/health").json()
                if not health.get("ready"):
                    raise RuntimeError(f"runtime not ready: {health}")
                pools = client.get("/v1/pools").json()
                if pools["pools"][0]["supply"] != 200:
                    raise RuntimeError(f"unexpected pool supply: {pools}")
            for u in ("alice", "bob"):
                ledger_out = rt.ledger.harvest(u, 0)
                if ledger_out["reward"] != expected[u]:
                    raise RuntimeError(f"harvest mismatch for {u}: {ledger_out}")
        finally:
            rt.close()

    print(json.dumps({"ok": True, "rewards": expected}, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
