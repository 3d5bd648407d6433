from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from farmledger.api.routes_public_parts.common import _int_param, _ledger
from farmledger.api.schemas import EventOut, EventsOut

router = APIRouter()

Json = Dict[str, Any]

_MAX_LIMIT = 1000
_BASE_KEYS = {"seq", "event", "ledger_time"}


@router.get("/events", response_model=EventsOut)
def tail_events(request: Request, limit: Optional[str] = None, event: Optional[str] = None) -> EventsOut:
    """Most recent committed ledger events (oldest first), optionally filtered by name.

    Reads the SQLite event table when the ledger is persistent, so history
    is not limited to the in-memory window or the current process.
    """
    ledger = _ledger(request)
    n = max(0, min(_int_param(limit, 200), _MAX_LIMIT))
    rows = ledger.tail_events(n, event=event or None)
    return EventsOut(events=[_event_out(r) for r in rows])


def _event_out(row: Json) -> EventOut:
    fields = {k: v for k, v in row.items() if k not in _BASE_KEYS}
    return EventOut(seq=int(row["seq"]), event=str(row["event"]), ledger_time=int(row["ledger_time"]), fields=fields)
