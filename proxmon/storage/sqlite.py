# proxmon/storage/sqlite.py

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import UTC, datetime

from proxmon.errors import PersistenceError
from proxmon.models.models import MemoryUsage, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 500

# Fixed-width UTC timestamps so text ordering matches time ordering
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _encode_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def _decode_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def clamp_limit(limit: int | None) -> int:
    """Default to 50 rows, never more than 500."""
    if not limit or limit <= 0:
        return DEFAULT_LIMIT
    return min(int(limit), MAX_LIMIT)


class SnapshotStore:
    """
    Append-only SQLite persistence for guest snapshots.

    The store is shared between the collector's tick threads (writing) and
    request handlers (reading), so every statement runs under one lock.
    Rows are only ever inserted; history is reconstructed by querying.
    """

    def __init__(self, path: str = "proxmon.db"):
        """
        Opens the database and creates the snapshots table if needed.

        Args:
            path (str): SQLite file path, or ":memory:".
        """
        self.path = path
        self.lock = threading.RLock()

        try:
            # Accessed from the tick threads and the HTTP worker threads
            self.conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as e:
            logger.error("Could not open snapshot database %s: %s", path, e)
            raise PersistenceError(f"Could not open snapshot database: {e}") from e
        self.conn.row_factory = sqlite3.Row

        logger.info("Snapshot store opened at %s", path)
        self._create_schema()

    def _create_schema(self):
        """
        Creates the 'snapshots' table and its indexes if they don't already exist.
        """
        snapshots_schema = """
        CREATE TABLE IF NOT EXISTS snapshots (
            id              INTEGER PRIMARY KEY,
            node            TEXT NOT NULL,
            vmid            TEXT NOT NULL,
            status          TEXT,
            cpu_percent     REAL,
            mem_used        REAL,
            mem_free        REAL,
            mem_max         REAL,
            uptime_seconds  INTEGER,
            raw_json        TEXT NOT NULL DEFAULT '{}',
            collected_at    TEXT NOT NULL
        );
        """

        indexes = """
        CREATE INDEX IF NOT EXISTS idx_snapshots_entity_time
            ON snapshots(node, vmid, collected_at DESC);
        CREATE INDEX IF NOT EXISTS idx_snapshots_time
            ON snapshots(collected_at);
        """

        try:
            with self.lock:
                self.conn.execute(snapshots_schema)
                self.conn.executescript(indexes)
                self.conn.commit()
        except sqlite3.Error as e:
            logger.error("Error creating snapshot schema: %s", e)
            raise PersistenceError(f"Could not create snapshot schema: {e}") from e

    def append(self, snapshot: Snapshot) -> Snapshot:
        """
        Inserts a new snapshot. Existing rows are never touched.

        Returns:
            Snapshot: The stored snapshot, carrying its row id.
        """
        collected_at = snapshot.collected_at or datetime.now(UTC)
        sql = """
        INSERT INTO snapshots (
            node, vmid, status, cpu_percent, mem_used, mem_free, mem_max,
            uptime_seconds, raw_json, collected_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            snapshot.node,
            snapshot.vmid,
            snapshot.status,
            snapshot.cpu_percent,
            snapshot.memory.used,
            snapshot.memory.free,
            snapshot.memory.max,
            snapshot.uptime_seconds,
            json.dumps(snapshot.raw),
            _encode_timestamp(collected_at),
        )

        try:
            with self.lock:
                cursor = self.conn.execute(sql, params)
                self.conn.commit()
                row_id = cursor.lastrowid
        except sqlite3.Error as e:
            logger.error("Error writing snapshot for %s/%s: %s", snapshot.node, snapshot.vmid, e)
            raise PersistenceError(f"Failed to store snapshot: {e}") from e

        return snapshot.model_copy(
            update={"id": row_id, "collected_at": _decode_timestamp(params[-1])}
        )

    def latest(self, node: str, vmid: str) -> Snapshot | None:
        """
        Returns the most recent snapshot of one guest, or None.
        """
        sql = """
        SELECT * FROM snapshots
        WHERE node = ? AND vmid = ?
        ORDER BY collected_at DESC, id DESC
        LIMIT 1
        """
        rows = self._fetch(sql, (node, str(vmid)))
        return self._to_snapshot(rows[0]) if rows else None

    def list_snapshots(self, node: str, vmid: str, limit: int | None = None) -> list[Snapshot]:
        """
        Returns up to `limit` snapshots of one guest, most recent first.

        Args:
            limit (int | None): Defaults to 50 and is capped at 500.
        """
        sql = """
        SELECT * FROM snapshots
        WHERE node = ? AND vmid = ?
        ORDER BY collected_at DESC, id DESC
        LIMIT ?
        """
        rows = self._fetch(sql, (node, str(vmid), clamp_limit(limit)))
        return [self._to_snapshot(row) for row in rows]

    def latest_for_many(self, vmids: Iterable[str], node: str | None = None) -> dict[str, Snapshot]:
        """
        Most recent snapshot per guest id, in a single query.

        All matching rows are read newest-first and folded so the first row
        seen for each vmid wins. Guests without any snapshot are absent from
        the result.

        Args:
            vmids: Guest ids to look up.
            node: Restrict the lookup to one node.
        """
        ids = list(dict.fromkeys(str(vmid) for vmid in vmids if vmid is not None and str(vmid)))
        if not ids:
            return {}

        placeholders = ', '.join('?' * len(ids))
        sql = f"SELECT * FROM snapshots WHERE vmid IN ({placeholders})"
        params: list = list(ids)
        if node:
            sql += " AND node = ?"
            params.append(node)
        sql += " ORDER BY collected_at DESC, id DESC"

        latest: dict[str, Snapshot] = {}
        for row in self._fetch(sql, tuple(params)):
            if row['vmid'] not in latest:
                latest[row['vmid']] = self._to_snapshot(row)
        return latest

    def _fetch(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        try:
            with self.lock:
                cursor = self.conn.cursor()
                cursor.execute(sql, params)
                return cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("Error reading snapshots: %s", e)
            raise PersistenceError(f"Failed to read snapshots: {e}") from e

    @staticmethod
    def _to_snapshot(row: sqlite3.Row) -> Snapshot:
        try:
            raw = json.loads(row['raw_json'] or '{}')
        except json.JSONDecodeError:
            raw = {}
        return Snapshot(
            id=row['id'],
            node=row['node'],
            vmid=row['vmid'],
            status=row['status'],
            cpu_percent=row['cpu_percent'],
            memory=MemoryUsage(
                used=_restore_number(row['mem_used']),
                free=_restore_number(row['mem_free']),
                max=_restore_number(row['mem_max']),
            ),
            uptime_seconds=row['uptime_seconds'],
            raw=raw,
            collected_at=_decode_timestamp(row['collected_at']),
        )

    def close(self):
        """
        Closes the database connection.
        """
        if self.conn:
            with self.lock:
                self.conn.close()
            logger.info("Snapshot store closed.")


def _restore_number(value: float | None) -> int | float | None:
    # Byte counts come back from REAL columns as floats
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


# Process-wide store used by the HTTP layer
snapshot_store: SnapshotStore | None = None

def init_store(path: str) -> SnapshotStore:
    """
    Opens the process-wide snapshot store.
    """
    global snapshot_store
    snapshot_store = SnapshotStore(path)
    return snapshot_store

def close_store():
    """
    Closes the process-wide snapshot store.
    """
    global snapshot_store
    if snapshot_store:
        snapshot_store.close()
        snapshot_store = None

def get_store() -> SnapshotStore | None:
    """
    Dependency function to get the store.
    """
    return snapshot_store
