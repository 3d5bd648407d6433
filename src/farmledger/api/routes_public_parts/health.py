from __future__ import annotations

import os
import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter()

Json = Dict[str, Any]


@router.get("/health")
def health(request: Request) -> Json:
    """Liveness + readiness summary.

    Always 200; `ready` is false while no ledger is attached.
    """
    rt = getattr(request.app.state, "runtime", None)
    ledger = getattr(rt, "ledger", None)
    out: Json = {
        "ok": True,
        "ts_ms": int(time.time() * 1000),
        "mode": (os.environ.get("FARMLEDGER_MODE") or "prod").strip().lower(),
        "ready": ledger is not None,
    }
    if ledger is not None:
        out["ledger_id"] = ledger.ledger_id
        out["pool_length"] = ledger.pool_length()
        out["ledger_time"] = ledger.now()
    return out
