"""
Storage Backend Module

Generic table/record storage used by the ledger. Records are JSON documents
keyed by a string id; monetary values travel as Decimal strings. Two backends
are provided: in-memory (testing) and SQLite (persistence).
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import sqlite3
import threading


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    # Round-trip through JSON so callers never share mutable state with the store
    return json.loads(json.dumps(record, default=str))


class StorageInterface(ABC):
    """Abstract interface for storage backends"""
    
    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass
    
    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, or None if absent"""
        pass
    
    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load every record of a table in insertion order"""
        pass
    
    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record; returns whether it existed"""
        pass
    
    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass
    
    @abstractmethod
    def count(self, table: str) -> int:
        pass
    
    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass
    
    @abstractmethod
    def close(self) -> None:
        pass
    
    def last(self, table: str) -> Optional[Dict[str, Any]]:
        """Most recently inserted record, or None for an empty table"""
        records = self.load_all(table)
        return records[-1] if records else None
    
    def max_int(self, table: str, field: str) -> Optional[int]:
        """Largest integer value of a field across a table, None when there is none"""
        values = [int(record[field]) for record in self.load_all(table)
                  if record.get(field) is not None]
        return max(values, default=None)
    
    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None
    
    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass
    
    def commit(self) -> None:
        """Commit the current transaction (default no-op)"""
        pass
    
    def rollback(self) -> None:
        """Roll back the current transaction (default no-op)"""
        pass
    
    @contextmanager
    def atomic(self):
        """
        Run a block of writes as one unit
        
        Nested blocks join the outermost transaction.
        """
        if getattr(self, '_in_transaction', False):
            yield
            return
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """
    Dictionary-backed storage for tests
    
    Transactions are emulated with a snapshot taken at ``begin_transaction``
    and restored on ``rollback``.
    """
    
    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._in_transaction = False
        self._lock = threading.RLock()
    
    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[str(record_id)] = _copy(data)
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(str(record_id))
            return _copy(record) if record is not None else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_copy(record) for record in self._table(table).values()]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(str(record_id), None) is not None
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [_copy(record) for record in self._table(table).values()
                    if _matches(record, filters)]
    
    def last(self, table: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            records = self._table(table)
            if not records:
                return None
            return _copy(records[next(reversed(records))])
    
    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))
    
    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}
    
    def begin_transaction(self) -> None:
        with self._lock:
            if not self._in_transaction:
                self._snapshot = _copy(self._tables)
                self._in_transaction = True
    
    def commit(self) -> None:
        with self._lock:
            self._snapshot = None
            self._in_transaction = False
    
    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction and self._snapshot is not None:
                self._tables = self._snapshot
            self._snapshot = None
            self._in_transaction = False
    
    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage: one ``(id, data, created_at, updated_at)`` table per record type"""
    
    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                           isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._known_tables = set()
        
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
    
    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._known_tables.add(table)
    
    def _autocommit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            # Upsert keeps the original row position and created_at
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (str(record_id), json.dumps(data, default=str), now, now))
            self._autocommit()
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (str(record_id),)
            ).fetchone()
            return json.loads(row['data']) if row else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            rows = self._connection.execute(f"SELECT data FROM {table} ORDER BY seq").fetchall()
            return [json.loads(row['data']) for row in rows]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"DELETE FROM {table} WHERE id = ?", (str(record_id),)
            )
            self._autocommit()
            return cursor.rowcount > 0
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        clauses = []
        params = []
        for key, value in filters.items():
            # Other value types are left to the exact match below
            if isinstance(value, (int, float, str)):
                clauses.append("json_extract(data, ?) = ?")
                params.extend([f'$."{key}"', value])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    
        with self._lock:
            self._ensure_table(table)
            rows = self._connection.execute(
                f"SELECT data FROM {table} {where} ORDER BY seq", params
            ).fetchall()
        records = [json.loads(row['data']) for row in rows]
        return [record for record in records if _matches(record, filters)]
    
    def last(self, table: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            return json.loads(row['data']) if row else None
    
    def max_int(self, table: str, field: str) -> Optional[int]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT MAX(CAST(json_extract(data, ?) AS INTEGER)) AS value FROM {table}",
                (f'$."{field}"',)
            ).fetchone()
            return row['value']
    
    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(
                f"SELECT COUNT(*) AS count FROM {table}"
            ).fetchone()['count']
    
    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._autocommit()
    
    def begin_transaction(self) -> None:
        with self._lock:
            self._in_transaction = True
    
    def commit(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False
    
    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False
                # Tables created inside the rolled back transaction are gone
                self._known_tables.clear()
    
    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
