"""
SQLite-backed durable episode storage for EDEN.

Contract:
- SQLite is the source of truth; the memory store's cache is a working set.
- Rows are never evicted. Only explicit deletes remove them.
- Embeddings are stored as float32 blobs alongside their dimension.
- Satisfaction is the only column updated after insert.
"""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from eden.models import Episode, EpisodeContext, Satisfaction, as_utc

DB_PATH = Path("data") / "episodes.db"

_COLUMNS = (
    "id, conversation_id, timestamp, user_message, assistant_response, "
    "context_json, satisfaction, embedding, dimension"
)


class EpisodeDatabase:
    """
    Connection and schema are set up lazily on first use, so a damaged file
    surfaces as sqlite3.DatabaseError from the first read instead of from
    the constructor. quarantine() moves such a file aside.
    """

    def __init__(self, db_path: Union[str, Path] = DB_PATH):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                _create_schema(conn)
            except sqlite3.Error:
                conn.close()
                raise
            self._conn = conn
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def quarantine(self) -> Path:
        """Move an unreadable database file (and its WAL files) aside, then start a fresh one."""
        self.close()
        target = self.db_path.with_name(self.db_path.name + ".corrupt")
        self.db_path.replace(target)
        for suffix in ("-wal", "-shm"):
            sidecar = self.db_path.with_name(self.db_path.name + suffix)
            if sidecar.exists():
                sidecar.replace(target.with_name(target.name + suffix))
        self._connect()
        return target

    def insert(self, episode: Episode) -> str:
        blob = None
        dimension = None
        if episode.embedding is not None:
            vector = np.asarray(episode.embedding, dtype=np.float32)
            blob = vector.tobytes()
            dimension = int(vector.shape[0])
        conn = self._connect()
        conn.execute(
            f"INSERT OR REPLACE INTO episodes({_COLUMNS}) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                episode.id,
                episode.conversation_id,
                episode.timestamp.isoformat(),
                episode.user_message,
                episode.assistant_response,
                json.dumps(episode.context.to_dict(), ensure_ascii=False),
                episode.satisfaction.value if episode.satisfaction else None,
                blob,
                dimension,
            ),
        )
        conn.commit()
        return episode.id

    def get(self, episode_id: str) -> Optional[Episode]:
        row = self._connect().execute(
            f"SELECT {_COLUMNS} FROM episodes WHERE id = ?", (episode_id,)
        ).fetchone()
        return _row_to_episode(row) if row else None

    def delete(self, episode_id: str) -> bool:
        conn = self._connect()
        cur = conn.execute("DELETE FROM episodes WHERE id = ?", (episode_id,))
        conn.commit()
        return cur.rowcount > 0

    def delete_by_conversation(self, conversation_id: str) -> int:
        conn = self._connect()
        cur = conn.execute("DELETE FROM episodes WHERE conversation_id = ?", (conversation_id,))
        conn.commit()
        return int(cur.rowcount)

    def delete_all(self) -> int:
        conn = self._connect()
        cur = conn.execute("DELETE FROM episodes")
        conn.commit()
        return int(cur.rowcount)

    def update_satisfaction(self, episode_id: str, satisfaction: Optional[Satisfaction]) -> bool:
        conn = self._connect()
        cur = conn.execute(
            "UPDATE episodes SET satisfaction = ? WHERE id = ?",
            (satisfaction.value if satisfaction else None, episode_id),
        )
        conn.commit()
        return cur.rowcount > 0

    def recent(self, limit: int) -> List[Episode]:
        """Most recent `limit` episodes, returned oldest -> newest."""
        rows = self._connect().execute(
            f"SELECT {_COLUMNS} FROM episodes ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_episode(row) for row in reversed(rows)]

    def query(
        self,
        conversation_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Episode]:
        query = f"SELECT {_COLUMNS} FROM episodes"
        where = []
        params: List[str] = []
        if conversation_id is not None:
            where.append("conversation_id = ?")
            params.append(conversation_id)
        if start is not None:
            where.append("timestamp >= ?")
            params.append(as_utc(start).isoformat())
        if end is not None:
            where.append("timestamp <= ?")
            params.append(as_utc(end).isoformat())
        if where:
            query += " WHERE " + " AND ".join(where)
        query += " ORDER BY timestamp ASC, rowid ASC"
        rows = self._connect().execute(query, params).fetchall()
        return [_row_to_episode(row) for row in rows]

    def stats(self) -> Dict[str, Any]:
        conn = self._connect()
        total, conversations, oldest, newest = conn.execute(
            "SELECT COUNT(*), COUNT(DISTINCT conversation_id), MIN(timestamp), MAX(timestamp) FROM episodes"
        ).fetchone()
        positive, rated = conn.execute(
            "SELECT SUM(CASE WHEN satisfaction = 'positive' THEN 1 ELSE 0 END), "
            "COUNT(satisfaction) FROM episodes"
        ).fetchone()
        return {
            "total_episodes": int(total),
            "conversation_count": int(conversations),
            "oldest_episode": datetime.fromisoformat(oldest) if oldest else None,
            "newest_episode": datetime.fromisoformat(newest) if newest else None,
            "average_satisfaction": (positive or 0) / rated if rated else 0.0,
        }


def _row_to_episode(row) -> Episode:
    (episode_id, conversation_id, timestamp, user_message, assistant_response,
     context_json, satisfaction, blob, dimension) = row
    embedding = None
    if blob is not None:
        embedding = np.frombuffer(blob, dtype=np.float32).copy()
        if dimension is not None and embedding.shape[0] != dimension:
            raise ValueError(
                f"Episode {episode_id}: embedding has {embedding.shape[0]} values, expected {dimension}"
            )
    return Episode(
        id=episode_id,
        conversation_id=conversation_id,
        timestamp=datetime.fromisoformat(timestamp),
        user_message=user_message,
        assistant_response=assistant_response,
        context=EpisodeContext.from_dict(json.loads(context_json)),
        embedding=embedding,
        satisfaction=Satisfaction(satisfaction) if satisfaction else None,
    )


def _create_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS episodes (
            id TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            user_message TEXT NOT NULL,
            assistant_response TEXT NOT NULL,
            context_json TEXT NOT NULL,
            satisfaction TEXT NULL,
            embedding BLOB NULL,
            dimension INTEGER NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_conversation ON episodes(conversation_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_episodes_timestamp ON episodes(timestamp)")
    conn.commit()
