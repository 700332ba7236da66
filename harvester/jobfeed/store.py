"""
Key/value persistence for scraped jobs.

Two interchangeable backends implement `JobStore`:
 - RedisJobStore   shared cache used in deployment (keys expire via EX)
 - SqliteJobStore  single-file fallback for local runs (expires_at column)

Keys are `<prefix>uid:<jobId>`; values are the camelCase JSON payload plus a
`_meta {savedAt, expiresIn}` block. `batch_write` never overwrites a key that
already exists, so instances sharing a namespace stay idempotent.
"""
from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union
import json
import logging
import sqlite3
import time

import redis

from .errors import StoreError
from .models import JobRecord
from .settings import SETTINGS, Settings

logger = logging.getLogger('store')

UID_SEGMENT = 'uid:'


class JobStore(Protocol):
    key_prefix: str
    ttl: int

    def exists(self, key: str) -> bool: ...
    def set_with_ttl(self, key: str, value: Union[str, Dict[str, Any]], ttl_seconds: int) -> bool: ...
    def batch_write(self, records: Iterable[JobRecord]) -> int: ...
    def list_keys(self, prefix: Optional[str] = None) -> List[str]: ...
    def get(self, job_id: str) -> Optional[Dict[str, Any]]: ...
    def clear(self) -> int: ...
    def disconnect(self) -> None: ...


def stored_payload(record: JobRecord, ttl: int) -> Dict[str, Any]:
    payload = record.to_store_payload()
    payload['_meta'] = {
        'savedAt': datetime.now(timezone.utc).isoformat(),
        'expiresIn': ttl,
    }
    return payload


def _dump(value: Union[str, Dict[str, Any]]) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)


class _KeyedStore:
    key_prefix: str
    ttl: int

    def job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}{UID_SEGMENT}{job_id}"

    def batch_write(self, records: Iterable[JobRecord]) -> int:
        """Write records whose keys are not present yet. Returns the number newly written."""
        written = 0
        skipped = 0
        for record in records:
            if not record.job_id:
                logger.warning('Record without job id, skipping')
                skipped += 1
                continue
            key = self.job_key(record.job_id)
            if self.exists(key):
                logger.debug(f"Job {record.job_id} already stored, skipping")
                skipped += 1
                continue
            self._queue(key, _dump(stored_payload(record, self.ttl)))
            written += 1
        self._commit()
        logger.info(f"Batch save: {written} written, {skipped} skipped")
        return written

    # backends override these two to batch writes
    def _queue(self, key: str, value: str):
        self.set_with_ttl(key, value, self.ttl)

    def _commit(self):
        return None


class RedisJobStore(_KeyedStore):
    def __init__(self, client: Optional[redis.Redis] = None, *, key_prefix: str = SETTINGS.key_prefix,
                 ttl: int = SETTINGS.record_ttl):
        self.client = client if client is not None else redis.Redis(decode_responses=True)
        self.key_prefix = key_prefix
        self.ttl = ttl
        self._pipeline = None

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> 'RedisJobStore':
        if settings.redis_url:
            client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        else:
            kwargs: Dict[str, Any] = dict(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                username=settings.redis_username or None,
                password=settings.redis_password or None,
                decode_responses=True,
                retry_on_timeout=True,
            )
            if settings.redis_tls:
                kwargs.update(ssl=True, ssl_cert_reqs=None)
            client = redis.Redis(**kwargs)
        return cls(client, key_prefix=settings.key_prefix, ttl=settings.record_ttl)

    def exists(self, key: str) -> bool:
        try:
            return bool(self.client.exists(key))
        except redis.RedisError as e:
            raise StoreError(f"exists({key}) failed: {e}") from e

    def set_with_ttl(self, key: str, value: Union[str, Dict[str, Any]], ttl_seconds: int) -> bool:
        try:
            return bool(self.client.set(key, _dump(value), ex=ttl_seconds))
        except redis.RedisError as e:
            raise StoreError(f"set({key}) failed: {e}") from e

    def batch_write(self, records: Iterable[JobRecord]) -> int:
        self._pipeline = self.client.pipeline()
        try:
            return super().batch_write(records)
        except redis.RedisError as e:
            raise StoreError(f"Batch write failed: {e}") from e
        finally:
            self._pipeline = None

    def _queue(self, key: str, value: str):
        self._pipeline.set(key, value, ex=self.ttl)

    def _commit(self):
        return self._pipeline.execute()

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        pattern = f"{prefix if prefix is not None else self.key_prefix + UID_SEGMENT}*"
        try:
            return list(self.client.scan_iter(match=pattern, count=500))
        except redis.RedisError as e:
            raise StoreError(f"Key listing failed: {e}") from e

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.get(self.job_key(job_id))
        except redis.RedisError as e:
            raise StoreError(f"get({job_id}) failed: {e}") from e
        return json.loads(raw) if raw else None

    def clear(self) -> int:
        keys = self.list_keys()
        if not keys:
            return 0
        try:
            return int(self.client.delete(*keys))
        except redis.RedisError as e:
            raise StoreError(f"Clear failed: {e}") from e

    def disconnect(self):
        try:
            self.client.close()
            logger.info('Redis connection closed')
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at);
"""


class SqliteJobStore(_KeyedStore):
    def __init__(self, db_path: Path = SETTINGS.sqlite_path, *, key_prefix: str = SETTINGS.key_prefix,
                 ttl: int = SETTINGS.record_ttl, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_prefix = key_prefix
        self.ttl = ttl
        self.clock = clock
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript(SCHEMA_SQL)

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> 'SqliteJobStore':
        return cls(settings.sqlite_path, key_prefix=settings.key_prefix, ttl=settings.record_ttl)

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _purge(self, conn: sqlite3.Connection):
        conn.execute('DELETE FROM kv WHERE expires_at <= ?', (self.clock(),))

    def exists(self, key: str) -> bool:
        with self._conn() as conn:
            self._purge(conn)
            return conn.execute('SELECT 1 FROM kv WHERE key=?', (key,)).fetchone() is not None

    def set_with_ttl(self, key: str, value: Union[str, Dict[str, Any]], ttl_seconds: int) -> bool:
        try:
            with self._conn() as conn:
                conn.execute(
                    'INSERT OR REPLACE INTO kv(key, value, expires_at) VALUES (?,?,?)',
                    (key, _dump(value), self.clock() + ttl_seconds),
                )
        except sqlite3.Error as e:
            raise StoreError(f"set({key}) failed: {e}") from e
        return True

    def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        prefix = prefix if prefix is not None else self.key_prefix + UID_SEGMENT
        with self._conn() as conn:
            self._purge(conn)
            rows = conn.execute('SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key',
                                (len(prefix), prefix)).fetchall()
        return [r[0] for r in rows]

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._conn() as conn:
            self._purge(conn)
            row = conn.execute('SELECT value FROM kv WHERE key=?', (self.job_key(job_id),)).fetchone()
        return json.loads(row[0]) if row else None

    def clear(self) -> int:
        prefix = self.key_prefix + UID_SEGMENT
        with self._conn() as conn:
            cur = conn.execute('DELETE FROM kv WHERE substr(key, 1, ?) = ?', (len(prefix), prefix))
            return cur.rowcount

    def disconnect(self):
        # connections are per-call
        return None


def build_store(settings: Settings = SETTINGS) -> JobStore:
    if settings.store_backend == 'sqlite':
        logger.info(f"Using SQLite store at {settings.sqlite_path}")
        return SqliteJobStore.from_settings(settings)
    logger.info('Using Redis store')
    return RedisJobStore.from_settings(settings)
