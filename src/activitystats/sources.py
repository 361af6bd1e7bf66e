"""SQLite-backed connection and name-resolution logs with ranked statistics queries."""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from activitystats.categories import Dimension, StatisticsType

logger = logging.getLogger("activitystats.sources")

_CONNECTIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS connections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    uid INTEGER NOT NULL DEFAULT -1,
    app_name TEXT DEFAULT '',
    ip_address TEXT NOT NULL,
    port INTEGER DEFAULT 0,
    protocol TEXT DEFAULT '',
    dns_query TEXT DEFAULT '',
    flag TEXT DEFAULT '',
    blocked INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_connections_timestamp ON connections(timestamp);
CREATE INDEX IF NOT EXISTS idx_connections_blocked ON connections(blocked, timestamp);
"""

_DNS_LOGS_SCHEMA = """
CREATE TABLE IF NOT EXISTS dns_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    domain TEXT NOT NULL,
    qtype TEXT DEFAULT '',
    response_ips TEXT DEFAULT '',
    flag TEXT DEFAULT '',
    blocked INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_dns_logs_timestamp ON dns_logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_dns_logs_blocked ON dns_logs(blocked, timestamp);
"""

# dimension -> (key column, uid column, flag column, extra condition)
_CONNECTION_GROUPS = {
    Dimension.APPS: ("app_name", "uid", "''", ""),
    Dimension.DOMAINS: ("dns_query", "NULL", "MAX(flag)", " AND dns_query != ''"),
    Dimension.IPS: ("ip_address", "NULL", "MAX(flag)", ""),
    Dimension.COUNTRIES: ("flag", "NULL", "flag", " AND flag != ''"),
}

DAY_MS = 86_400_000


@dataclass(frozen=True)
class StatRow:
    key: str
    count: int
    blocked: bool
    uid: int | None = None
    flag: str = ""


class RankedQuery:
    """One grouped, count-ordered query over a store, loaded a slice at a time."""

    def __init__(
        self,
        store: "_LogStore",
        category: StatisticsType,
        start: int,
        end: int,
        sql: str,
    ) -> None:
        self.store = store
        self.category = category
        self.start = start
        self.end = end
        self._sql = sql

    def __call__(self, offset: int, limit: int) -> list[StatRow]:
        params = (int(self.category.blocked), self.start, self.end, limit, offset)
        return [
            StatRow(key=key, count=count, blocked=self.category.blocked, uid=uid, flag=flag or "")
            for key, uid, count, flag in self.store._fetch(self._sql, params)
        ]

    def __repr__(self) -> str:
        return (
            f"RankedQuery({self.store.name}, {self.category.value}, "
            f"[{self.start}, {self.end}))"
        )


class _LogStore:
    """Thread-safe SQLite log with batched inserts and retention."""

    name = ""
    _table = ""
    _schema = ""
    _columns: tuple[str, ...] = ()

    def __init__(self, db_path: Path, retention_days: int = 7) -> None:
        self.db_path = db_path
        self.retention_days = retention_days
        self._batch: list[tuple] = []
        self._lock = threading.Lock()
        self._batch_size = 50
        self._conn = self._open_db(db_path)

    def _connect(self, db_path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.executescript(self._schema)
        conn.commit()
        return conn

    def _open_db(self, db_path: Path) -> sqlite3.Connection:
        """Open or create the SQLite database, recovering from corruption."""
        try:
            return self._connect(db_path)
        except sqlite3.DatabaseError as e:
            logger.warning("Corrupt database %s: %s, creating fresh DB", db_path, e)
            corrupt_path = db_path.with_suffix(f".corrupt.{int(time.time())}")
            try:
                db_path.rename(corrupt_path)
            except OSError:
                db_path.unlink(missing_ok=True)
            return self._connect(db_path)

    def _append(self, row: tuple) -> None:
        with self._lock:
            self._batch.append(row)
            if len(self._batch) >= self._batch_size:
                self._flush_locked()

    def flush(self) -> None:
        """Force-flush the current batch to disk."""
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if not self._batch:
            return
        placeholders = ", ".join("?" for _ in self._columns)
        try:
            self._conn.executemany(
                f"INSERT INTO {self._table} ({', '.join(self._columns)}) VALUES ({placeholders})",
                self._batch,
            )
            self._conn.commit()
            self._batch.clear()
        except sqlite3.Error as e:
            logger.warning(
                "Failed to flush %s batch (%d entries retained): %s", self.name, len(self._batch), e
            )

    def _fetch(self, sql: str, params: tuple) -> list[tuple]:
        self.flush()
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _ranked_sql(self, key: str, uid: str, flag: str, extra: str) -> str:
        return (
            f"SELECT {key}, {uid}, COUNT(*) AS cnt, {flag} FROM {self._table} "
            f"WHERE blocked = ? AND timestamp >= ? AND timestamp < ?{extra} "
            f"GROUP BY {key}{', ' + uid if uid != 'NULL' else ''} "
            f"ORDER BY cnt DESC, {key} LIMIT ? OFFSET ?"
        )

    def get_total_count(self) -> int:
        """Return total number of stored rows."""
        return self._fetch(f"SELECT COUNT(*) FROM {self._table}", ())[0][0]

    def rotate(self, now_ms: int | None = None) -> int:
        """Delete entries older than retention_days. Returns number deleted."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        cutoff = now_ms - self.retention_days * DAY_MS
        self.flush()
        with self._lock:
            cur = self._conn.execute(f"DELETE FROM {self._table} WHERE timestamp < ?", (cutoff,))
            self._conn.commit()
            deleted = cur.rowcount
        if deleted > 0:
            logger.info("Rotated %d old %s entries", deleted, self.name)
        return deleted

    def close(self) -> None:
        """Flush pending writes and close the connection."""
        self.flush()
        self._conn.close()


class ConnectionLogStore(_LogStore):
    """Per-connection events: app, remote IP, resolved domain, country and verdict."""

    name = "connection log"
    _table = "connections"
    _schema = _CONNECTIONS_SCHEMA
    _columns = (
        "timestamp", "uid", "app_name", "ip_address", "port",
        "protocol", "dns_query", "flag", "blocked",
    )

    def log_connection(
        self,
        ip_address: str,
        blocked: bool,
        app_name: str = "",
        uid: int = -1,
        port: int = 0,
        protocol: str = "",
        dns_query: str = "",
        flag: str = "",
        timestamp: int | None = None,
    ) -> None:
        """Add a connection to the batch. Flushes when batch is full."""
        if timestamp is None:
            timestamp = int(time.time() * 1000)
        self._append((
            timestamp, uid, app_name, ip_address, port,
            protocol, dns_query, flag, int(blocked),
        ))

    def query(self, category: StatisticsType, start: int, end: int) -> RankedQuery:
        sql = self._ranked_sql(*_CONNECTION_GROUPS[category.dimension])
        return RankedQuery(self, category, start, end, sql)


class DnsLogStore(_LogStore):
    """Name-resolution events. Only knows about domains."""

    name = "dns log"
    _table = "dns_logs"
    _schema = _DNS_LOGS_SCHEMA
    _columns = ("timestamp", "domain", "qtype", "response_ips", "flag", "blocked")

    def log_dns_query(
        self,
        domain: str,
        blocked: bool,
        qtype: str = "A",
        response_ips: str = "",
        flag: str = "",
        timestamp: int | None = None,
    ) -> None:
        """Add a lookup to the batch. Flushes when batch is full."""
        if timestamp is None:
            timestamp = int(time.time() * 1000)
        self._append((timestamp, domain.lower().rstrip("."), qtype, response_ips, flag, int(blocked)))

    def query(self, category: StatisticsType, start: int, end: int) -> RankedQuery:
        if category.dimension is not Dimension.DOMAINS:
            raise ValueError(f"{self.name} has no {category.dimension.value} breakdown")
        sql = self._ranked_sql("domain", "NULL", "MAX(flag)", "")
        return RankedQuery(self, category, start, end, sql)
