# src/qfund/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from qfund.runtime.kv import is_deleted, prefix_end

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Unknown types are not coerced (no default=str): a non-JSON value in
    persisted state is a bug and must fail here.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the distributor host.

      - single durable DB file for contract state, bank, block and journal
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time; BEGIN IMMEDIATE can transiently
    fail with "database is locked", so write_tx() retries within a deadline.
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

        Override with QFUND_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("QFUND_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("QFUND_SQLITE_SYNCHRONOUS") or default).strip().upper()

        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("QFUND_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        allow_non_wal = (os.environ.get("QFUND_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        jmode = str(row[0]).strip().lower() if row is not None else ""
        if jmode and jmode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{jmode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA temp_store=MEMORY;")

        wal_ckpt = max(1, _env_int("QFUND_SQLITE_WAL_AUTOCHECKPOINT", 1000))
        con.execute(f"PRAGMA wal_autocheckpoint={wal_ckpt};")

        # Negative means KiB.
        cache_kib = max(0, _env_int("QFUND_SQLITE_CACHE_SIZE_KIB", 16 * 1024))
        con.execute(f"PRAGMA cache_size={-cache_kib};")

        busy_ms = max(0, _env_int("QFUND_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
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
                CREATE TABLE IF NOT EXISTS kv (
                  key TEXT PRIMARY KEY,
                  value_json TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS block (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  height INTEGER NOT NULL,
                  time_ns INTEGER NOT NULL,
                  chain_id TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                  seq INTEGER PRIMARY KEY AUTOINCREMENT,
                  height INTEGER NOT NULL,
                  sender TEXT NOT NULL,
                  kind TEXT NOT NULL,
                  event_json TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_events_height ON events(height);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
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
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise if we cannot acquire within the deadline
        """
        deadline_ms = max(250, _env_int("QFUND_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("QFUND_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("QFUND_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        def _backoff(attempt: int) -> None:
            sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
            time.sleep(sleep_s * (0.5 + random.random()))

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    _backoff(attempt)
                    attempt += 1

            try:
                yield con

                c_attempt = 0
                while True:
                    try:
                        con.execute("COMMIT;")
                        break
                    except sqlite3.OperationalError as e:
                        if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                            raise
                        _backoff(c_attempt)
                        c_attempt += 1
            except BaseException:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error:
                    pass  # no transaction left to roll back
                raise


class SqliteKVStore:
    """KVStore persisted in the `kv` table.

    Single-key set/delete each run in their own transaction; apply_batch()
    writes a whole message's write set (plus block row and journal entry)
    in one transaction.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def get(self, key: str) -> Optional[Any]:
        with self._db.connection() as con:
            row = con.execute("SELECT value_json FROM kv WHERE key=?;", (str(key),)).fetchone()
        if row is None:
            return None
        return json.loads(str(row["value_json"]))

    def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("kv values must not be None; use delete()")
        with self._db.write_tx() as con:
            self._upsert(con, str(key), value)

    def delete(self, key: str) -> None:
        with self._db.write_tx() as con:
            con.execute("DELETE FROM kv WHERE key=?;", (str(key),))

    def range(self, prefix: str) -> Iterator[Tuple[str, Any]]:
        """Ascending scan of keys starting with `prefix`."""
        with self._db.connection() as con:
            if prefix:
                rows = con.execute(
                    "SELECT key, value_json FROM kv WHERE key >= ? AND key < ? ORDER BY key ASC;",
                    (prefix, prefix_end(prefix)),
                ).fetchall()
            else:
                rows = con.execute("SELECT key, value_json FROM kv ORDER BY key ASC;").fetchall()
        for r in rows:
            yield str(r["key"]), json.loads(str(r["value_json"]))

    @staticmethod
    def _upsert(con: sqlite3.Connection, key: str, value: Any) -> None:
        con.execute(
            """
            INSERT INTO kv(key, value_json) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value_json=excluded.value_json;
            """,
            (key, _canon_json(value)),
        )

    def apply_batch(
        self,
        writes: Dict[str, Any],
        *,
        block: Optional[Json] = None,
        event: Optional[Json] = None,
    ) -> None:
        now = _now_ms()
        with self._db.write_tx() as con:
            for k in sorted(writes.keys()):
                v = writes[k]
                if is_deleted(v):
                    con.execute("DELETE FROM kv WHERE key=?;", (k,))
                else:
                    self._upsert(con, k, v)

            if block is not None:
                con.execute(
                    """
                    INSERT INTO block(id, height, time_ns, chain_id, updated_ts_ms)
                    VALUES(1, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      height=excluded.height,
                      time_ns=excluded.time_ns,
                      chain_id=excluded.chain_id,
                      updated_ts_ms=excluded.updated_ts_ms;
                    """,
                    (int(block["height"]), int(block["time_ns"]), str(block.get("chain_id") or ""), now),
                )

            if event is not None:
                con.execute(
                    "INSERT INTO events(height, sender, kind, event_json, created_ts_ms) VALUES(?, ?, ?, ?, ?);",
                    (
                        int(event.get("height", 0)),
                        str(event.get("sender") or ""),
                        str(event.get("kind") or ""),
                        _canon_json(event),
                        now,
                    ),
                )

    def read_block(self) -> Optional[Json]:
        with self._db.connection() as con:
            row = con.execute("SELECT height, time_ns, chain_id FROM block WHERE id=1;").fetchone()
        if row is None:
            return None
        return {"height": int(row["height"]), "time_ns": int(row["time_ns"]), "chain_id": str(row["chain_id"])}

    def events(self, *, limit: int = 100) -> List[Json]:
        """Most recent journal entries, oldest first."""
        if limit <= 0:
            return []
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT seq, event_json FROM events ORDER BY seq DESC LIMIT ?;", (int(limit),)
            ).fetchall()
        out: List[Json] = []
        for r in reversed(rows):
            ev = json.loads(str(r["event_json"]))
            ev["seq"] = int(r["seq"])
            out.append(ev)
        return out


__all__ = ["SqliteDB", "SqliteKVStore"]
