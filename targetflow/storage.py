"""
targetflow Storage Backend

Keyed storage for target results using SQLite with Write-Ahead Logging (WAL)
mode. Each entry is addressed by (target name, sub-target index) and carries
a content fingerprint used for invalidation.
"""

import sqlite3
import json
import pickle
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional, Dict, Iterable, List, Tuple, Union
import logging
import time
import threading
import uuid

from targetflow.errors import NotFoundError
from targetflow.formats import get_format, has_format
from targetflow.plan.hash import fingerprint_value

logger = logging.getLogger("targetflow.storage")

# Index stored for whole-target entries; sub-targets use 0..n-1
WHOLE_TARGET = -1


@dataclass
class StoreEntry:
    """Metadata of one stored value"""

    name: str
    index: Optional[int]
    fingerprint: str
    format: str
    input_fingerprint: Optional[str]
    data_type: str
    size_bytes: int
    created_at: float
    labels: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TargetRecord:
    """What a target looked like the last time it finished successfully"""

    name: str
    command_fingerprint: str
    dependency_fingerprints: Dict[str, str]
    value_fingerprint: str
    format: str = "vector"
    dynamic: bool = False
    expansion_fingerprint: Optional[str] = None
    subtarget_count: int = 0
    trace: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, payload: str) -> "TargetRecord":
        return cls(**json.loads(payload))


class StorageBackend:
    """
    Result store using SQLite with WAL mode.

    Features:
    - Entries keyed by (target, index), overwritten on re-execution
    - Thread-safe operations through a single guarded connection
    - Pickle serialization with an in-memory fallback for unpicklable values
    - Invalidation records per target
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize storage backend.

        Args:
            db_path: Path to SQLite database file. If None, uses ~/.targetflow/store.db.
        """
        if db_path is None:
            db_path = Path.home() / ".targetflow" / "store.db"

        self._uri = isinstance(db_path, str) and db_path.startswith("file:")
        if self._uri:
            self.db_path: Union[str, Path] = db_path
        else:
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection: Optional[sqlite3.Connection] = None
        self._connection_lock = threading.RLock()

        # Values (and labels) that could not be pickled
        self._memory_cache: Dict[Tuple[str, int], Tuple[Any, Dict[str, Any]]] = {}

        self._create_connection()
        self._init_database()
        logger.debug(f"Storage backend initialized: {self.db_path}")

    def _create_connection(self) -> sqlite3.Connection:
        """Create and configure the single persistent database connection."""
        with self._connection_lock:
            if self._connection is not None:
                return self._connection

            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode for WAL
                timeout=5.0,
                uri=self._uri,
            )
            if not self._uri:
                self._connection.execute("PRAGMA journal_mode=WAL")
            self._connection.execute("PRAGMA synchronous=NORMAL")
            self._connection.execute("PRAGMA busy_timeout=5000")
            return self._connection

    def _get_connection(self) -> sqlite3.Connection:
        with self._connection_lock:
            if self._connection is None:
                self._create_connection()
            assert self._connection is not None
            return self._connection

    def _init_database(self):
        """Initialize database schema."""
        conn = self._get_connection()
        with self._connection_lock:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    target TEXT NOT NULL,
                    idx INTEGER NOT NULL,
                    data BLOB,
                    data_type TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    format TEXT NOT NULL,
                    input_fingerprint TEXT,
                    labels BLOB,
                    size_bytes INTEGER,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (target, idx)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS targets (
                    target TEXT PRIMARY KEY,
                    record TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)

    @staticmethod
    def _idx(index: Optional[int]) -> int:
        return WHOLE_TARGET if index is None else int(index)

    # ----------------- Entries -----------------

    def write(
        self,
        name: str,
        index: Optional[int],
        value: Any,
        format: str = "vector",
        fingerprint: Optional[str] = None,
        input_fingerprint: Optional[str] = None,
        labels: Optional[Dict[str, Any]] = None,
    ) -> StoreEntry:
        """
        Store a result, replacing any previous entry for the same key.

        Args:
            name: Target name
            index: Sub-target index, or None for the whole target
            value: Result value
            format: Format tag of the owning target
            fingerprint: Content fingerprint; computed when omitted
            input_fingerprint: Fingerprint of the inputs that produced the value
            labels: Per-dimension labels of a sub-target

        Returns:
            Metadata of the stored entry
        """
        idx = self._idx(index)
        labels = dict(labels or {})
        if fingerprint is None:
            fingerprint = fingerprint_value(value)

        data: Optional[bytes]
        labels_blob: Optional[bytes]
        try:
            data = pickle.dumps(value)
            labels_blob = pickle.dumps(labels)
            self._memory_cache.pop((name, idx), None)
        except (pickle.PicklingError, TypeError, AttributeError):
            data = None
            labels_blob = None
            self._memory_cache[(name, idx)] = (value, labels)
            logger.debug(f"Stored non-serializable result for {name}[{idx}] in memory cache: {type(value).__name__}")

        created_at = time.time()
        size_bytes = len(data) if data is not None else 0
        conn = self._get_connection()
        with self._connection_lock:
            conn.execute(
                """
                INSERT OR REPLACE INTO entries
                    (target, idx, data, data_type, fingerprint, format, input_fingerprint, labels, size_bytes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    idx,
                    data,
                    type(value).__name__,
                    fingerprint,
                    format,
                    input_fingerprint,
                    labels_blob,
                    size_bytes,
                    created_at,
                ),
            )
        return StoreEntry(
            name=name,
            index=index,
            fingerprint=fingerprint,
            format=format,
            input_fingerprint=input_fingerprint,
            data_type=type(value).__name__,
            size_bytes=size_bytes,
            created_at=created_at,
            labels=labels,
        )

    def _row(self, name: str, idx: int):
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute(
                """
                SELECT data, data_type, fingerprint, format, input_fingerprint, labels, size_bytes, created_at
                FROM entries WHERE target = ? AND idx = ?
                """,
                (name, idx),
            )
            return cursor.fetchone()

    def _decode(self, name: str, idx: int, row) -> Tuple[Any, Dict[str, Any]]:
        data, _, _, _, _, labels_blob, _, _ = row
        if data is None:
            if (name, idx) not in self._memory_cache:
                raise NotFoundError(name, None if idx == WHOLE_TARGET else idx)
            return self._memory_cache[(name, idx)]
        labels = pickle.loads(labels_blob) if labels_blob is not None else {}
        return pickle.loads(data), labels

    def read(self, name: str, index: Optional[int] = None) -> Any:
        """
        Retrieve a stored value.

        Raises:
            NotFoundError: no entry exists for the key
        """
        idx = self._idx(index)
        row = self._row(name, idx)
        if row is None:
            raise NotFoundError(name, index)
        value, _ = self._decode(name, idx, row)
        return value

    def entry(self, name: str, index: Optional[int] = None) -> StoreEntry:
        """Metadata (including labels) of a stored value."""
        idx = self._idx(index)
        row = self._row(name, idx)
        if row is None:
            raise NotFoundError(name, index)
        _, labels = self._decode(name, idx, row)
        _, data_type, fingerprint, fmt, input_fingerprint, _, size_bytes, created_at = row
        return StoreEntry(
            name=name,
            index=index,
            fingerprint=fingerprint,
            format=fmt,
            input_fingerprint=input_fingerprint,
            data_type=data_type,
            size_bytes=size_bytes or 0,
            created_at=created_at,
            labels=labels,
        )

    def exists(self, name: str, index: Optional[int] = None) -> bool:
        idx = self._idx(index)
        row = self._row(name, idx)
        if row is None:
            return False
        return row[0] is not None or (name, idx) in self._memory_cache

    def indices(self, name: str) -> List[int]:
        """Sub-target indices stored for a target, ascending."""
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute(
                "SELECT idx FROM entries WHERE target = ? AND idx >= 0 ORDER BY idx",
                (name,),
            )
            return [row[0] for row in cursor.fetchall()]

    def read_subtargets(self, name: str) -> List[Any]:
        """Sub-target values in index order."""
        return [self.read(name, index) for index in self.indices(name)]

    def read_aggregate(self, name: str) -> Any:
        """
        Combined value of a target as seen by downstream targets.

        Static targets return their value. Dynamic targets aggregate their
        sub-target values in index order with their format's rule.
        """
        if self.exists(name, None):
            return self.read(name, None)

        indices = self.indices(name)
        if indices:
            fmt = self.entry(name, indices[0]).format
            values = [self.read(name, index) for index in indices]
        else:
            record = self.get_record(name)
            if record is None or not record.dynamic:
                raise NotFoundError(name)
            fmt = record.format
            values = []
        if not has_format(fmt):
            raise NotFoundError(name)
        return get_format(fmt).aggregate(values)

    def remove(self, name: str, index: Optional[int] = None) -> bool:
        idx = self._idx(index)
        self._memory_cache.pop((name, idx), None)
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute("DELETE FROM entries WHERE target = ? AND idx = ?", (name, idx))
            return cursor.rowcount > 0

    def prune(self, name: str, keep: Iterable[int]) -> int:
        """Delete sub-target entries whose index is not in ``keep``."""
        keep_set = {int(index) for index in keep}
        removed = 0
        for index in self.indices(name):
            if index not in keep_set:
                self.remove(name, index)
                removed += 1
        if removed:
            logger.debug(f"Pruned {removed} stale sub-targets of {name}")
        return removed

    def delete(self, name: str) -> int:
        """Explicitly delete every entry and the record of a target."""
        for key in [key for key in self._memory_cache if key[0] == name]:
            del self._memory_cache[key]
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute("DELETE FROM entries WHERE target = ?", (name,))
            removed = cursor.rowcount
            conn.execute("DELETE FROM targets WHERE target = ?", (name,))
        logger.debug(f"Deleted {removed} entries of {name}")
        return removed

    # ----------------- Invalidation records -----------------

    def get_record(self, name: str) -> Optional[TargetRecord]:
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute("SELECT record FROM targets WHERE target = ?", (name,))
            row = cursor.fetchone()
        if row is None:
            return None
        return TargetRecord.from_json(row[0])

    def set_record(self, record: TargetRecord) -> None:
        conn = self._get_connection()
        with self._connection_lock:
            conn.execute(
                "INSERT OR REPLACE INTO targets (target, record, updated_at) VALUES (?, ?, ?)",
                (record.name, record.to_json(), record.updated_at),
            )

    def clear_record(self, name: str) -> bool:
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute("DELETE FROM targets WHERE target = ?", (name,))
            return cursor.rowcount > 0

    def clear_input_fingerprints(self, name: str) -> int:
        """Forget which inputs produced the entries of a target; values stay readable."""
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute(
                "UPDATE entries SET input_fingerprint = NULL WHERE target = ? AND input_fingerprint IS NOT NULL",
                (name,),
            )
            return cursor.rowcount

    def target_names(self) -> List[str]:
        conn = self._get_connection()
        with self._connection_lock:
            cursor = conn.execute(
                "SELECT target FROM entries UNION SELECT target FROM targets ORDER BY target"
            )
            return [row[0] for row in cursor.fetchall()]

    # ----------------- Maintenance -----------------

    def get_statistics(self) -> Dict[str, Any]:
        conn = self._get_connection()
        with self._connection_lock:
            entries, total_size = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM entries"
            ).fetchone()
            targets = conn.execute("SELECT COUNT(*) FROM targets").fetchone()[0]
        return {
            "type": "sqlite",
            "database_path": str(self.db_path),
            "entries": entries,
            "total_size_bytes": total_size,
            "targets": targets,
            "memory_cache_entries": len(self._memory_cache),
        }

    def close(self):
        with self._connection_lock:
            if self._connection:
                self._connection.close()
                self._connection = None
        logger.debug("Storage backend closed")


class NoCacheStorageBackend(StorageBackend):
    """
    Storage backend that uses in-memory SQLite for temporary storage.

    Results are available during execution but are lost when the backend is
    closed, ensuring no caching between runs.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        db_name = f"no_cache_{uuid.uuid4().hex}"
        super().__init__(f"file:{db_name}?mode=memory&cache=shared")
        logger.debug("No-cache storage backend initialized with in-memory SQLite")

    def get_statistics(self) -> Dict[str, Any]:
        stats = super().get_statistics()
        stats["type"] = "no-cache (in-memory)"
        return stats


# Global storage instance
_storage_instance: Optional[StorageBackend] = None


def get_storage(db_path: Optional[Union[str, Path]] = None) -> StorageBackend:
    """Get global storage instance."""
    global _storage_instance
    if _storage_instance is None:
        _storage_instance = StorageBackend(db_path)
    return _storage_instance


def set_storage(storage: Optional[StorageBackend]) -> None:
    """Set global storage instance (for testing)."""
    global _storage_instance
    _storage_instance = storage
