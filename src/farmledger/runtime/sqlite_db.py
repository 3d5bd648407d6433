# src/farmledger/runtime/sqlite_db.py
from __future__ import annotations

import os
import json
import sqlite3
import time
import random
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Unknown types are not coerced (no default=str): a non-JSON value leaking
    into the ledger state must fail the write instead of persisting lossy data.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the ledger snapshot and committed events.

    Design goals:
      - single durable DB file per ledger
      - cross-process safe (SQLite locks)
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time; BEGIN IMMEDIATE can transiently
    fail with "database is locked", so write_tx() retries with a deadline.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with FARMLEDGER_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("FARMLEDGER_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("FARMLEDGER_SQLITE_SYNCHRONOUS") or default).strip().upper()

        allowed = {"OFF", "NORMAL", "FULL", "EXTRA"}
        if raw not in allowed:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("FARMLEDGER_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        # WAL is required unless explicitly waived.
        allow_non_wal = (os.environ.get("FARMLEDGER_SQLITE_ALLOW_NON_WAL") or "").strip() in {"1", "true", "TRUE"}
        try:
            row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
            mode = ""
            if row is not None:
                mode = str(row[0]).strip().lower()
            if mode and mode != "wal" and not allow_non_wal:
                raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")
        except Exception:
            if not allow_non_wal:
                raise

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = _env_int("FARMLEDGER_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000))
        busy_ms = max(0, int(busy_ms))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  ledger_id TEXT NOT NULL,
                  pool_count INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_events (
                  seq INTEGER PRIMARY KEY,
                  event TEXT NOT NULL,
                  ledger_time INTEGER NOT NULL,
                  fields_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_ledger_events_event ON ledger_events(event);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            try:
                con.close()
            except Exception:
                pass

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg) or ("locked" in msg and "database" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed) if we cannot acquire within deadline
        """
        deadline_ms = _env_int("FARMLEDGER_SQLITE_WRITE_DEADLINE_MS", 30_000)
        deadline_ms = max(250, int(deadline_ms))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = float(_env_int("FARMLEDGER_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0
        max_sleep = float(_env_int("FARMLEDGER_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0
        base_sleep = max(0.001, base_sleep)
        max_sleep = max(base_sleep, max_sleep)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e):
                        raise
                    if _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    sleep_s = sleep_s * (0.5 + random.random())  # jitter in [0.5x, 1.5x]
                    time.sleep(sleep_s)
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except Exception:
                try:
                    con.execute("ROLLBACK;")
                except Exception:
                    pass
                raise


class SqliteLedgerStore:
    """Ledger snapshot store persisted in SQLite.

    This provides:
      - read(): load latest ledger snapshot
      - write(st, events=...): overwrite the snapshot and append committed
        events in one transaction
      - update(mut): read-modify-write inside a single write transaction
      - read_events(): committed events in sequence order

    The authoritative snapshot is a single row.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    @staticmethod
    def _load(row: Optional[sqlite3.Row]) -> Json:
        if row is None:
            raise FileNotFoundError("sqlite ledger_state is missing")
        st = json.loads(str(row["state_json"]))
        if not isinstance(st, dict):
            raise ValueError("ledger_state is not a JSON object")
        return st

    @staticmethod
    def _upsert(con: sqlite3.Connection, st: Json) -> None:
        pools = st.get("pools")
        con.execute(
            """
            INSERT INTO ledger_state(id, ledger_id, pool_count, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              ledger_id=excluded.ledger_id,
              pool_count=excluded.pool_count,
              state_json=excluded.state_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (
                str(st.get("ledger_id") or ""),
                len(pools) if isinstance(pools, list) else 0,
                _canon_json(st),
                _now_ms(),
            ),
        )

    def read(self) -> Json:
        with self._db.connection() as con:
            return self._load(con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone())

    def write(self, st: Json, *, events: Optional[Iterable[Json]] = None) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        now = _now_ms()
        with self._db.write_tx() as con:
            self._upsert(con, st)
            for ev in events or ():
                fields = {k: v for k, v in ev.items() if k not in {"seq", "event", "ledger_time"}}
                con.execute(
                    "INSERT OR REPLACE INTO ledger_events(seq, event, ledger_time, fields_json, created_ts_ms) VALUES(?, ?, ?, ?, ?);",
                    (int(ev["seq"]), str(ev["event"]), int(ev["ledger_time"]), _canon_json(fields), now),
                )

    def update(self, mut: Callable[[Json], Any]) -> None:
        with self._db.write_tx() as con:
            st = self._load(con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone())
            mut(st)
            self._upsert(con, st)

    def next_event_seq(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT MAX(seq) AS m FROM ledger_events;").fetchone()
        if row is None or row["m"] is None:
            return 0
        return int(row["m"]) + 1

    def read_events(self, *, after_seq: int = -1, limit: int = 1000) -> List[Json]:
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT seq, event, ledger_time, fields_json FROM ledger_events WHERE seq > ? ORDER BY seq ASC LIMIT ?;",
                (int(after_seq), int(limit)),
            ).fetchall()
        return [self._event_row(r) for r in rows]

    def tail_events(self, limit: int = 200, *, event: Optional[str] = None) -> List[Json]:
        """Newest `limit` events (optionally one event name), returned oldest first."""
        if limit <= 0:
            return []
        with self._db.connection() as con:
            if event is None:
                rows = con.execute(
                    "SELECT seq, event, ledger_time, fields_json FROM ledger_events ORDER BY seq DESC LIMIT ?;",
                    (int(limit),),
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT seq, event, ledger_time, fields_json FROM ledger_events WHERE event=? ORDER BY seq DESC LIMIT ?;",
                    (str(event), int(limit)),
                ).fetchall()
        return [self._event_row(r) for r in reversed(rows)]

    @staticmethod
    def _event_row(r: sqlite3.Row) -> Json:
        return {"seq": int(r["seq"]), "event": str(r["event"]), "ledger_time": int(r["ledger_time"]), **json.loads(str(r["fields_json"]))}
