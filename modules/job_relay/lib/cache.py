"""
SQLite-backed job cache, one namespace per source.

`JobCache` is the object the pipeline talks to: it takes an existence
snapshot once per run (`load`), answers membership from that snapshot
(`exists`), upserts routed records by id, and prunes each namespace back to
`max_size` rows. SQLite work runs in a worker thread via asyncio.to_thread.

Module-level helpers (`init_db`, `count_rows`, `cache_stats`, ...) are the
synchronous building blocks, also used by the CLI and tests.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from .models import CanonicalRecord


class StoreError(RuntimeError):
    """Wraps sqlite/OS failures from the cache layer."""


# ---- Public API -------------------------------------------------------------


class JobCache:
    def __init__(self, sqlite_path: str, namespace: str, *, max_size: int = 5000) -> None:
        self.sqlite_path = sqlite_path
        self.namespace = namespace
        self.max_size = max_size
        self._snapshot: set[str] = set()
        self._all_sources = False

    # ---- snapshot ----
    async def load(self, *, all_sources: bool = False) -> int:
        """Take the existence snapshot. Returns its size."""
        self._all_sources = all_sources
        ids = await asyncio.to_thread(load_ids, self.sqlite_path, None if all_sources else self.namespace)
        self._snapshot = ids
        return len(ids)

    def exists(self, record_id: str) -> bool:
        return record_id in self._snapshot

    @property
    def snapshot_size(self) -> int:
        return len(self._snapshot)

    # ---- writes ----
    async def upsert(self, records: Iterable[CanonicalRecord], *, now: datetime | None = None) -> int:
        """
        Idempotent upsert by id. The snapshot only learns the ids once the
        write has committed. Raises StoreError on failure.
        """
        items = list(records)
        if not items:
            return 0
        n = await asyncio.to_thread(upsert_records, self.sqlite_path, self.namespace, items, now)
        self._snapshot.update(r.id for r in items)
        return n

    async def prune(self, max_size: int | None = None) -> int:
        """Delete the oldest rows beyond the bound, then reload the snapshot."""
        removed = await asyncio.to_thread(prune_namespace, self.sqlite_path, self.namespace, max_size or self.max_size)
        await self.load(all_sources=self._all_sources)
        return removed

    async def delete(self, ids: Iterable[str]) -> int:
        wanted = list(ids)
        removed = await asyncio.to_thread(delete_ids, self.sqlite_path, wanted, self.namespace)
        self._snapshot.difference_update(wanted)
        return removed

    async def clear(self) -> int:
        removed = await asyncio.to_thread(clear_cache, self.sqlite_path, self.namespace)
        self._snapshot.clear()
        return removed

    # ---- reads ----
    async def stats(self) -> dict[str, Any]:
        stats = await asyncio.to_thread(cache_stats, self.sqlite_path)
        return stats.get(self.namespace, {"count": 0, "oldest": None, "newest": None})

    async def all_records(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(fetch_rows, self.sqlite_path, self.namespace)


# ---- Synchronous helpers ----------------------------------------------------


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


def load_ids(sqlite_path: str, namespace: str | None) -> set[str]:
    """All known ids in `namespace` (or across every namespace when None)."""
    if not os.path.exists(sqlite_path):
        return set()
    with _session(sqlite_path, "load_ids") as conn:
        if namespace is None:
            rows = conn.execute("SELECT id FROM jobs").fetchall()
        else:
            rows = conn.execute("SELECT id FROM jobs WHERE namespace = ?", (namespace,)).fetchall()
    return {r[0] for r in rows}


def upsert_records(
    sqlite_path: str,
    namespace: str,
    records: list[CanonicalRecord],
    now: datetime | None = None,
) -> int:
    """
    Insert-or-update each record keyed by (namespace, id). Existing rows keep
    scraped_at and gain any new source labels; every other field is refreshed.
    Returns the number of records written.
    """
    ts = _ts(now)
    with _session(sqlite_path, "upsert") as conn:
        cur = conn.cursor()
        cur.execute("BEGIN IMMEDIATE")
        try:
            for rec in records:
                row = cur.execute(
                    "SELECT sources FROM jobs WHERE namespace = ? AND id = ?", (namespace, rec.id)
                ).fetchone()
                sources = set(rec.sources)
                if row and row[0]:
                    sources.update(json.loads(row[0]))
                cur.execute(
                    """
                    INSERT INTO jobs (
                      namespace, id, normalized_id, title, company, location, url,
                      posted_date, source, sources, description, role, category,
                      scraped_at, last_updated
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(namespace, id) DO UPDATE SET
                      normalized_id = excluded.normalized_id,
                      title = excluded.title,
                      company = excluded.company,
                      location = excluded.location,
                      url = excluded.url,
                      posted_date = excluded.posted_date,
                      source = excluded.source,
                      sources = excluded.sources,
                      description = excluded.description,
                      role = excluded.role,
                      category = excluded.category,
                      last_updated = excluded.last_updated
                    """,
                    (
                        namespace,
                        rec.id,
                        rec.normalized_key,
                        rec.title,
                        rec.company,
                        rec.location,
                        rec.url,
                        rec.posted_date,
                        rec.source,
                        json.dumps(sorted(sources)),
                        rec.description,
                        rec.role,
                        rec.category,
                        _ts(rec.first_seen),
                        ts,
                    ),
                )
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
    return len(records)


def prune_namespace(sqlite_path: str, namespace: str, max_size: int) -> int:
    """Keep the newest `max_size` rows of `namespace` by last_updated."""
    if max_size <= 0:
        raise ValueError("max_size must be >= 1")
    if not os.path.exists(sqlite_path):
        return 0
    with _session(sqlite_path, "prune") as conn:
        cur = conn.execute(
            """
            DELETE FROM jobs
             WHERE namespace = ?
               AND rowid NOT IN (
                 SELECT rowid FROM jobs
                  WHERE namespace = ?
                  ORDER BY last_updated DESC, rowid DESC
                  LIMIT ?
               )
            """,
            (namespace, namespace, max_size),
        )
        return int(cur.rowcount or 0)


def delete_ids(sqlite_path: str, ids: list[str], namespace: str | None = None) -> int:
    if not ids or not os.path.exists(sqlite_path):
        return 0
    removed = 0
    with _session(sqlite_path, "delete") as conn:
        for rid in ids:
            if namespace is None:
                cur = conn.execute("DELETE FROM jobs WHERE id = ?", (rid,))
            else:
                cur = conn.execute("DELETE FROM jobs WHERE namespace = ? AND id = ?", (namespace, rid))
            removed += int(cur.rowcount or 0)
    return removed


def clear_cache(sqlite_path: str, namespace: str | None = None) -> int:
    """Drop every row of `namespace` (all namespaces when None)."""
    if not os.path.exists(sqlite_path):
        return 0
    with _session(sqlite_path, "clear") as conn:
        if namespace is None:
            cur = conn.execute("DELETE FROM jobs")
        else:
            cur = conn.execute("DELETE FROM jobs WHERE namespace = ?", (namespace,))
        return int(cur.rowcount or 0)


def cache_stats(sqlite_path: str) -> dict[str, dict[str, Any]]:
    """namespace -> {count, oldest, newest} (timestamps are last_updated)."""
    if not os.path.exists(sqlite_path):
        return {}
    with _session(sqlite_path, "stats") as conn:
        rows = conn.execute(
            """
            SELECT namespace, COUNT(*), MIN(last_updated), MAX(last_updated)
              FROM jobs GROUP BY namespace ORDER BY namespace
            """
        ).fetchall()
    return {ns: {"count": int(n), "oldest": oldest, "newest": newest} for ns, n, oldest, newest in rows}


def fetch_rows(sqlite_path: str, namespace: str | None = None) -> list[dict[str, Any]]:
    if not os.path.exists(sqlite_path):
        return []
    with _session(sqlite_path, "fetch") as conn:
        conn.row_factory = sqlite3.Row
        if namespace is None:
            rows = conn.execute("SELECT * FROM jobs ORDER BY last_updated DESC").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE namespace = ? ORDER BY last_updated DESC", (namespace,)
            ).fetchall()
    out = []
    for r in rows:
        d = dict(r)
        d["sources"] = json.loads(d.get("sources") or "[]")
        out.append(d)
    return out


def count_rows(sqlite_path: str, namespace: str | None = None) -> int:
    """Return row count (optionally for one namespace); 0 if DB missing/empty."""
    if not os.path.exists(sqlite_path):
        return 0
    with _session(sqlite_path, "count") as conn:
        if namespace is None:
            (n,) = conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
        else:
            (n,) = conn.execute("SELECT COUNT(*) FROM jobs WHERE namespace = ?", (namespace,)).fetchone()
    return int(n or 0)


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file entirely (for pytest fixtures).
    Safe if it doesn't exist.
    """
    for suffix in ("", "-wal", "-shm"):
        with contextlib.suppress(FileNotFoundError):
            os.remove(sqlite_path + suffix)


# ---- Internal utilities -----------------------------------------------------


@contextlib.contextmanager
def _session(sqlite_path: str, op: str):
    """Open, prepare and close a connection; sqlite/OS errors become StoreError."""
    try:
        _ensure_dir(sqlite_path)
        conn = _connect(sqlite_path)
    except (sqlite3.Error, OSError) as e:
        raise StoreError(f"cache {op} failed to open {sqlite_path}: {e}") from e
    try:
        _apply_pragmas(conn)
        _ensure_schema(conn)
        yield conn
    except sqlite3.Error as e:
        raise StoreError(f"cache {op} failed: {e}") from e
    finally:
        conn.close()


def _ts(dt: datetime | None) -> str:
    # Fixed-width so lexical order == chronological order.
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; transactions are explicit.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-8000;")  # approx 8MB cache


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
          namespace     TEXT NOT NULL,
          id            TEXT NOT NULL,
          normalized_id TEXT NOT NULL,
          title         TEXT NOT NULL,
          company       TEXT NOT NULL DEFAULT '',
          location      TEXT NOT NULL DEFAULT '',
          url           TEXT NOT NULL DEFAULT '',
          posted_date   TEXT NOT NULL DEFAULT '',
          source        TEXT NOT NULL,
          sources       TEXT NOT NULL DEFAULT '[]',
          description   TEXT NOT NULL DEFAULT '',
          role          TEXT,
          category      TEXT,
          scraped_at    TEXT NOT NULL,
          last_updated  TEXT NOT NULL,
          PRIMARY KEY (namespace, id)
        );
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS ix_jobs_recency
          ON jobs (namespace, last_updated);
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS ix_jobs_normalized ON jobs (normalized_id);")
