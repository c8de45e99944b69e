"""
Ledger key/value store.

The audit binding talks to the ledger only through this contract:

    put(key, value)             -- write within the current transaction
    get(key) -> value | None    -- read, seeing this transaction's own writes
    range_scan(start, end)      -- ordered (key, value) pairs with start <= key < end

Every call happens inside ``store.transaction()``, which commits on success
and discards all writes on any exception. The store serialises transactions,
so reads inside one transaction see a consistent snapshot and concurrent
appends for the same file are linearizable. Backend failures surface as
``LedgerUnavailable``.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import LedgerUnavailable


def prefix_end(prefix: str) -> str:
    """Smallest key greater than every key starting with ``prefix``."""
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class LedgerTransaction(ABC):
    """One atomic unit of ledger reads and writes."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def range_scan(self, start: str, end: str) -> List[Tuple[str, str]]:
        pass

    def put_json(self, key: str, obj: Any) -> None:
        self.put(key, json.dumps(obj, sort_keys=True, separators=(",", ":")))

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        return json.loads(raw) if raw is not None else None

    def scan_prefix(self, prefix: str) -> List[Tuple[str, Any]]:
        """Decoded records whose key starts with ``prefix``, in key order."""
        return [(k, json.loads(v)) for k, v in self.range_scan(prefix, prefix_end(prefix))]


class LedgerStore(ABC):
    """Transactional key/value ledger."""

    @abstractmethod
    def transaction(self) -> Iterator[LedgerTransaction]:
        """Context manager yielding a transaction; commits on clean exit."""
        pass

    def close(self) -> None:
        pass


# ============================================================
# In-memory store
# ============================================================

class _MemoryTransaction(LedgerTransaction):

    def __init__(self, base: Dict[str, str]):
        self._base = base
        self.writes: Dict[str, str] = {}

    def put(self, key: str, value: str) -> None:
        self.writes[key] = value

    def get(self, key: str) -> Optional[str]:
        if key in self.writes:
            return self.writes[key]
        return self._base.get(key)

    def range_scan(self, start: str, end: str) -> List[Tuple[str, str]]:
        keys = {k for k in self._base if start <= k < end}
        keys.update(k for k in self.writes if start <= k < end)
        return [(k, self.get(k)) for k in sorted(keys)]


class InMemoryLedger(LedgerStore):
    """
    Single-process ledger for tests and demos.

    Transactions are serialised by a lock; writes are buffered and applied
    only when the transaction body completes.
    """

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._closed = False

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        if self._closed:
            raise LedgerUnavailable("ledger is closed")
        with self._lock:
            txn = _MemoryTransaction(self._data)
            yield txn
            self._commit(txn)

    def _commit(self, txn: _MemoryTransaction) -> None:
        self._data.update(txn.writes)

    def close(self) -> None:
        self._closed = True

    def __len__(self) -> int:
        return len(self._data)


# ============================================================
# SQLite store
# ============================================================

class _SqliteTransaction(LedgerTransaction):

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def put(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO ledger_state(key, value) VALUES(?, ?)",
            (key, value)
        )

    def get(self, key: str) -> Optional[str]:
        cur = self._conn.execute("SELECT value FROM ledger_state WHERE key=?", (key,))
        row = cur.fetchone()
        return row[0] if row else None

    def range_scan(self, start: str, end: str) -> List[Tuple[str, str]]:
        cur = self._conn.execute(
            "SELECT key, value FROM ledger_state WHERE key >= ? AND key < ? ORDER BY key ASC",
            (start, end)
        )
        return [(row[0], row[1]) for row in cur.fetchall()]


class SqliteLedger(LedgerStore):
    """
    SQLite-backed ledger.

    Uses one connection per thread and ``BEGIN IMMEDIATE`` so that a write
    transaction holds the database write lock from its first read.
    """

    def __init__(self, path: str, timeout: float = 30.0):
        self._path = Path(path)
        self._timeout = timeout
        self._local = threading.local()
        self._conns: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._closed = False

    def _get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self._path),
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS ledger_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );""")
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        if self._closed:
            raise LedgerUnavailable("ledger is closed")
        try:
            conn = self._get_connection()
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise LedgerUnavailable(f"cannot open ledger transaction: {e}") from e

        try:
            yield _SqliteTransaction(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise LedgerUnavailable(f"ledger transaction failed: {e}") from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def close(self) -> None:
        """Close every connection opened by this store."""
        self._closed = True
        with self._conns_lock:
            for conn in self._conns:
                conn.close()
            self._conns.clear()
        self._local = threading.local()
