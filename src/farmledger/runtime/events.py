from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit a single JSONL log event."""
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update(fields)
    try:
        logger.info(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except Exception:
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        logger.info(" ".join(parts))


@dataclass
class LedgerEvent:
    seq: int
    event: str
    ledger_time: int
    fields: Json = field(default_factory=dict)

    def to_json(self) -> Json:
        return {"seq": self.seq, "event": self.event, "ledger_time": self.ledger_time, **self.fields}


class EventLog:
    """In-memory window of recent ledger events.

    Operations append while they run; a rolled-back operation truncates back
    to the mark taken when it started, so only committed events remain.
    Marks are sequence numbers, so trimming old events never moves them.
    The ledger calls trim() after each commit to keep at most max_events;
    the full history lives in the store when one is configured.

    FARMLEDGER_EVENT_LOG_MAX sets the default window (10000).
    """

    def __init__(self, *, start_seq: int = 0, max_events: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._events: List[LedgerEvent] = []
        self._next_seq = int(start_seq)
        if max_events is None:
            max_events = _env_int("FARMLEDGER_EVENT_LOG_MAX", 10_000)
        self._max_events = max(1, int(max_events))

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def mark(self) -> int:
        with self._lock:
            return self._next_seq

    def add(self, event: str, ledger_time: int, **fields: Any) -> LedgerEvent:
        with self._lock:
            e = LedgerEvent(seq=self._next_seq, event=str(event), ledger_time=int(ledger_time), fields=dict(fields))
            self._next_seq += 1
            self._events.append(e)
            return e

    def truncate(self, mark: int) -> None:
        with self._lock:
            while self._events and self._events[-1].seq >= int(mark):
                self._events.pop()
            self._next_seq = int(mark)

    def since(self, mark: int) -> List[LedgerEvent]:
        out: List[LedgerEvent] = []
        with self._lock:
            for e in reversed(self._events):
                if e.seq < int(mark):
                    break
                out.append(e)
        out.reverse()
        return out

    def trim(self) -> None:
        with self._lock:
            extra = len(self._events) - self._max_events
            if extra > 0:
                del self._events[:extra]

    def tail(self, n: int = 200, *, event: Optional[str] = None) -> List[LedgerEvent]:
        if n <= 0:
            return []
        with self._lock:
            rows = [e for e in self._events if event is None or e.event == event]
        return rows[-n:]
