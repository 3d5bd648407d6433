from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from farmledger.api.errors import ApiError
from farmledger.runtime.ledger import RewardLedger

Json = Dict[str, Any]


def _ledger(request: Request) -> RewardLedger:
    rt = getattr(request.app.state, "runtime", None)
    ledger = getattr(rt, "ledger", None)
    if ledger is None:
        raise ApiError.internal("not_ready", "ledger not attached to app.state", {})
    return ledger


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    try:
        return int(str(v).strip())
    except Exception:
        return int(default)
