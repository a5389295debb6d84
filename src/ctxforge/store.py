"""Persistent workspace storage using SQLite.

One database holds fragments, their embedding vectors, typed relationships
and the append-only usage log. The store implements every collaborator
interface the engine consumes, so the CLI can run the engine against a
project directory without any external service.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from ctxforge.exceptions import StoreError
from ctxforge.models import Fragment, FragmentType, RelationshipEdge, RelationType, UsageEvent, as_utc
from ctxforge.providers.base import (
    EventLog,
    FragmentStore,
    RelationshipStore,
    SimilarityProvider,
)
from ctxforge.providers.vectors import cosine_similarity, similarity_matrix

# Fixed-width UTC timestamps sort lexicographically in SQL
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).strftime(_TS_FORMAT)


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(datetime.strptime(value, _TS_FORMAT))


class WorkspaceStore(FragmentStore, RelationshipStore, EventLog, SimilarityProvider):
    """Persists fragments, vectors, relationships and usage events.

    Writes are synchronous helpers for the CLI. The collaborator methods the
    engine awaits run the same queries in a worker thread, so a slow query
    never blocks the event loop and can be abandoned by a caller timeout.
    One connection is shared across threads and guarded by a lock.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            except (OSError, sqlite3.Error) as e:
                raise StoreError(f"Cannot open workspace database {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        return self._conn

    def _create_tables(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS fragments (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                type TEXT NOT NULL,
                text TEXT NOT NULL DEFAULT '',
                token_count INTEGER NOT NULL DEFAULT 0,
                tags TEXT NOT NULL DEFAULT '[]',    -- JSON list
                priority INTEGER NOT NULL DEFAULT 0,
                usage_count INTEGER NOT NULL DEFAULT 0,
                last_used_at TEXT,
                created_at TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1
            );

            -- One vector per fragment, for its current text
            CREATE TABLE IF NOT EXISTS embeddings (
                fragment_id TEXT PRIMARY KEY REFERENCES fragments(id),
                vector TEXT NOT NULL                -- JSON list of floats
            );

            CREATE TABLE IF NOT EXISTS relationships (
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                type TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (source_id, target_id, type)
            );

            -- Append-only
            CREATE TABLE IF NOT EXISTS usage_events (
                eid INTEGER PRIMARY KEY,
                user_id TEXT NOT NULL,
                fragment_id TEXT NOT NULL,
                activity_type TEXT,
                timestamp TEXT NOT NULL,
                success INTEGER NOT NULL DEFAULT 1,
                duration_s REAL,
                related_fragment_ids TEXT NOT NULL DEFAULT '[]'
            );

            CREATE INDEX IF NOT EXISTS idx_fragments_owner ON fragments(owner_id);
            CREATE INDEX IF NOT EXISTS idx_rel_source ON relationships(source_id);
            CREATE INDEX IF NOT EXISTS idx_rel_target ON relationships(target_id);
            CREATE INDEX IF NOT EXISTS idx_events_user_ts ON usage_events(user_id, timestamp);
        """)
        conn.commit()

    def _execute(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            conn = self._get_conn()
            try:
                rows = conn.execute(sql, params).fetchall()
                conn.commit()
            except sqlite3.Error as e:
                raise StoreError(f"Workspace query failed: {e}") from e
        return rows

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_fragment(row: sqlite3.Row) -> Fragment:
        return Fragment(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            description=row["description"],
            type=FragmentType(row["type"]),
            text=row["text"],
            token_count=row["token_count"],
            tags=json.loads(row["tags"]),
            priority=row["priority"],
            usage_count=row["usage_count"],
            last_used_at=_parse_ts(row["last_used_at"]),
            created_at=_parse_ts(row["created_at"]),
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> UsageEvent:
        return UsageEvent(
            user_id=row["user_id"],
            fragment_id=row["fragment_id"],
            activity_type=row["activity_type"],
            timestamp=_parse_ts(row["timestamp"]),
            success=bool(row["success"]),
            duration_s=row["duration_s"],
            related_fragment_ids=json.loads(row["related_fragment_ids"]),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_fragment(self, fragment: Fragment, vector: list[float] | None = None) -> None:
        """Insert or replace a fragment, optionally with its embedding."""
        self._execute(
            """INSERT OR REPLACE INTO fragments
               (id, owner_id, name, description, type, text, token_count, tags,
                priority, usage_count, last_used_at, created_at, is_active)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                fragment.id, fragment.owner_id, fragment.name, fragment.description,
                fragment.type.value, fragment.text, fragment.tokens,
                json.dumps(fragment.tags), fragment.priority, fragment.usage_count,
                _ts(fragment.last_used_at), _ts(fragment.created_at), int(fragment.is_active),
            ),
        )
        if vector is not None:
            self.upsert_vector(fragment.id, vector)

    def upsert_vector(self, fragment_id: str, vector: list[float]) -> None:
        self._execute(
            "INSERT OR REPLACE INTO embeddings (fragment_id, vector) VALUES (?, ?)",
            (fragment_id, json.dumps([float(x) for x in vector])),
        )

    def set_active(self, fragment_id: str, active: bool) -> None:
        self._execute(
            "UPDATE fragments SET is_active = ? WHERE id = ?", (int(active), fragment_id)
        )

    def add_relationship(self, edge: RelationshipEdge) -> None:
        self._execute(
            """INSERT OR REPLACE INTO relationships (source_id, target_id, type, metadata)
               VALUES (?, ?, ?, ?)""",
            (edge.source_id, edge.target_id, edge.type.value, json.dumps(edge.metadata)),
        )

    def record_usage(self, event: UsageEvent) -> None:
        """Append a usage event and bump the fragment's usage statistics."""
        ts = _ts(event.timestamp)
        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    conn.execute(
                        """INSERT INTO usage_events
                           (user_id, fragment_id, activity_type, timestamp, success,
                            duration_s, related_fragment_ids)
                           VALUES (?, ?, ?, ?, ?, ?, ?)""",
                        (
                            event.user_id, event.fragment_id, event.activity_type, ts,
                            int(event.success), event.duration_s,
                            json.dumps(event.related_fragment_ids),
                        ),
                    )
                    conn.execute(
                        """UPDATE fragments
                           SET usage_count = usage_count + 1,
                               last_used_at = MAX(COALESCE(last_used_at, ''), ?)
                           WHERE id = ?""",
                        (ts, event.fragment_id),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Could not record usage: {e}") from e

    # ------------------------------------------------------------------
    # Sync reads
    # ------------------------------------------------------------------

    def load_fragment(self, fragment_id: str) -> Fragment | None:
        rows = self._execute("SELECT * FROM fragments WHERE id = ?", (fragment_id,))
        return self._row_to_fragment(rows[0]) if rows else None

    def resolve_ref(self, owner_id: str, ref: str) -> Fragment | None:
        """Find an owner's fragment by id, then by exact name."""
        rows = self._execute(
            """SELECT * FROM fragments WHERE owner_id = ? AND (id = ? OR name = ?)
               ORDER BY (id = ?) DESC, created_at LIMIT 1""",
            (owner_id, ref, ref, ref),
        )
        return self._row_to_fragment(rows[0]) if rows else None

    def load_vector(self, fragment_id: str) -> list[float] | None:
        rows = self._execute(
            "SELECT vector FROM embeddings WHERE fragment_id = ?", (fragment_id,)
        )
        return json.loads(rows[0]["vector"]) if rows else None

    def _load_vectors(self, fragment_ids: list[str] | None) -> list[tuple[str, list[float]]]:
        if fragment_ids is None:
            rows = self._execute("SELECT fragment_id, vector FROM embeddings")
            return [(r["fragment_id"], json.loads(r["vector"])) for r in rows]
        if not fragment_ids:
            return []
        placeholders = ",".join("?" * len(fragment_ids))
        rows = self._execute(
            f"SELECT fragment_id, vector FROM embeddings WHERE fragment_id IN ({placeholders})",  # noqa: S608
            list(fragment_ids),
        )
        found = {r["fragment_id"]: json.loads(r["vector"]) for r in rows}
        # Keep the caller's order
        return [(fid, found[fid]) for fid in fragment_ids if fid in found]

    def stats(self, owner_id: str) -> dict[str, int]:
        """Counts for the status command."""
        def count(sql: str, params: tuple) -> int:
            return self._execute(sql, params)[0][0]

        return {
            "fragments": count(
                "SELECT COUNT(*) FROM fragments WHERE owner_id = ? AND is_active = 1", (owner_id,)
            ),
            "inactive": count(
                "SELECT COUNT(*) FROM fragments WHERE owner_id = ? AND is_active = 0", (owner_id,)
            ),
            "embedded": count(
                """SELECT COUNT(*) FROM embeddings e JOIN fragments f ON f.id = e.fragment_id
                   WHERE f.owner_id = ?""",
                (owner_id,),
            ),
            "relationships": count(
                """SELECT COUNT(*) FROM relationships r JOIN fragments f ON f.id = r.source_id
                   WHERE f.owner_id = ?""",
                (owner_id,),
            ),
            "events": count("SELECT COUNT(*) FROM usage_events WHERE user_id = ?", (owner_id,)),
        }

    # ------------------------------------------------------------------
    # FragmentStore
    # ------------------------------------------------------------------

    async def get_fragment(self, fragment_id: str) -> Fragment | None:
        return await asyncio.to_thread(self.load_fragment, fragment_id)

    async def get_fragments(
        self,
        owner_id: str,
        fragment_ids: list[str] | None = None,
        active_only: bool = True,
        limit: int | None = None,
    ) -> list[Fragment]:
        return await asyncio.to_thread(
            self.query_fragments, owner_id, fragment_ids, active_only, limit
        )

    def query_fragments(
        self,
        owner_id: str,
        fragment_ids: list[str] | None = None,
        active_only: bool = True,
        limit: int | None = None,
    ) -> list[Fragment]:
        conditions = ["owner_id = ?"]
        params: list = [owner_id]
        if active_only:
            conditions.append("is_active = 1")
        if fragment_ids is not None:
            if not fragment_ids:
                return []
            conditions.append(f"id IN ({','.join('?' * len(fragment_ids))})")
            params.extend(fragment_ids)

        sql = f"SELECT * FROM fragments WHERE {' AND '.join(conditions)} ORDER BY created_at, id"  # noqa: S608
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_fragment(r) for r in self._execute(sql, params)]

    # ------------------------------------------------------------------
    # RelationshipStore
    # ------------------------------------------------------------------

    async def get_relationships(self, fragment_id: str) -> list[RelationshipEdge]:
        return await asyncio.to_thread(self.query_relationships, fragment_id)

    def query_relationships(self, fragment_id: str) -> list[RelationshipEdge]:
        rows = self._execute(
            """SELECT source_id, target_id, type, metadata FROM relationships
               WHERE source_id = ? OR target_id = ?
               ORDER BY source_id, target_id, type""",
            (fragment_id, fragment_id),
        )
        return [
            RelationshipEdge(
                source_id=r["source_id"],
                target_id=r["target_id"],
                type=RelationType(r["type"]),
                metadata=json.loads(r["metadata"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # EventLog
    # ------------------------------------------------------------------

    async def append(self, event: UsageEvent) -> None:
        await asyncio.to_thread(self.record_usage, event)

    async def get_usage_events(
        self, owner_id: str, since: datetime, until: datetime | None = None
    ) -> list[UsageEvent]:
        return await asyncio.to_thread(self.query_usage_events, owner_id, since, until)

    def query_usage_events(
        self, owner_id: str, since: datetime, until: datetime | None = None
    ) -> list[UsageEvent]:
        sql = "SELECT * FROM usage_events WHERE user_id = ? AND timestamp >= ?"
        params: list = [owner_id, _ts(since)]
        if until is not None:
            sql += " AND timestamp <= ?"
            params.append(_ts(until))
        sql += " ORDER BY timestamp, eid"
        return [self._row_to_event(r) for r in self._execute(sql, params)]

    # ------------------------------------------------------------------
    # SimilarityProvider
    # ------------------------------------------------------------------

    async def get_vector(self, fragment_id: str) -> list[float] | None:
        return await asyncio.to_thread(self.load_vector, fragment_id)

    async def similarity_search(
        self,
        query_vector: list[float],
        candidate_ids: list[str] | None = None,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[str, float]]:
        return await asyncio.to_thread(
            self.search_vectors, query_vector, candidate_ids, k, min_similarity
        )

    def search_vectors(
        self,
        query_vector: list[float],
        candidate_ids: list[str] | None = None,
        k: int = 10,
        min_similarity: float = 0.0,
    ) -> list[tuple[str, float]]:
        scored = []
        for fid, vec in self._load_vectors(candidate_ids):
            sim = cosine_similarity(query_vector, vec)
            if sim >= min_similarity:
                scored.append((fid, sim))
        scored.sort(key=lambda x: (-x[1], x[0]))
        return scored[:k]

    async def pairwise_similarity(
        self, fragment_ids: list[str]
    ) -> dict[tuple[str, str], float]:
        return await asyncio.to_thread(self.pairwise_vectors, fragment_ids)

    def pairwise_vectors(self, fragment_ids: list[str]) -> dict[tuple[str, str], float]:
        loaded = self._load_vectors(fragment_ids)
        sims = similarity_matrix([vec for _, vec in loaded])
        pairs: dict[tuple[str, str], float] = {}
        for i in range(len(loaded)):
            for j in range(i + 1, len(loaded)):
                pairs[(loaded[i][0], loaded[j][0])] = float(sims[i, j])
        return pairs

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
