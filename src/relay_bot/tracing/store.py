"""SQLite storage for event traces."""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock

from relay_bot.tracing.context import EventTrace

logger = logging.getLogger(__name__)


@dataclass
class TraceSummary:
    """One row of the trace list: everything but the steps."""

    id: str
    created_at: datetime
    persona: str
    room_id: str
    event_id: str
    trigger_text: str
    final_state: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "persona": self.persona,
            "room_id": self.room_id,
            "event_id": self.event_id,
            "trigger_text": self.trigger_text,
            "final_state": self.final_state,
        }


class TraceStore:
    """SQLite-backed trace storage, shared by all personas."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = Lock()
        self._ensure_schema()
        logger.info(f"TraceStore initialized at {self.db_path}")

    def _ensure_schema(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS traces (
                id TEXT PRIMARY KEY,
                created_at TIMESTAMP NOT NULL,
                persona TEXT NOT NULL,
                room_id TEXT NOT NULL,
                event_id TEXT NOT NULL,
                trigger_text TEXT,
                final_state TEXT NOT NULL,
                trace_json TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_traces_created ON traces(created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_traces_persona ON traces(persona);
            CREATE INDEX IF NOT EXISTS idx_traces_room ON traces(room_id);
        """)
        self._conn.commit()

    def save(self, trace: EventTrace) -> None:
        """Insert or overwrite a trace (keyed by trace id)."""
        final_state = trace.final_state or "unknown"
        trigger_text = trace.trigger_text[:100]

        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO traces
                (id, created_at, persona, room_id, event_id, trigger_text, final_state, trace_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trace.id,
                    trace.started_at.isoformat(),
                    trace.persona,
                    trace.room_id,
                    trace.event_id,
                    trigger_text,
                    final_state,
                    json.dumps(trace.to_dict()),
                ),
            )
            self._conn.commit()
        logger.debug(f"Saved trace {trace.id[:8]}... state={final_state}")

    def get(self, trace_id: str) -> EventTrace | None:
        """Get a trace by ID."""
        with self._lock:
            row = self._conn.execute(
                "SELECT trace_json FROM traces WHERE id = ?", (trace_id,)
            ).fetchone()
        if row is None:
            return None
        return EventTrace.from_dict(json.loads(row["trace_json"]))

    def recent(
        self,
        limit: int = 50,
        persona: str | None = None,
        room_id: str | None = None,
    ) -> list[TraceSummary]:
        """Get recent trace summaries, newest first."""
        query = (
            "SELECT id, created_at, persona, room_id, event_id, trigger_text, final_state "
            "FROM traces"
        )
        params: list = []
        conditions = []

        if persona:
            conditions.append("persona = ?")
            params.append(persona)
        if room_id:
            conditions.append("room_id = ?")
            params.append(room_id)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [
            TraceSummary(
                id=row["id"],
                created_at=datetime.fromisoformat(row["created_at"]),
                persona=row["persona"],
                room_id=row["room_id"],
                event_id=row["event_id"],
                trigger_text=row["trigger_text"] or "",
                final_state=row["final_state"],
            )
            for row in rows
        ]

    def state_counts(self, persona: str | None = None) -> dict[str, int]:
        """Number of stored traces per final state, optionally for one persona."""
        query = "SELECT final_state, COUNT(*) AS n FROM traces"
        params: tuple = ()
        if persona:
            query += " WHERE persona = ?"
            params = (persona,)
        query += " GROUP BY final_state"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return {row["final_state"]: row["n"] for row in rows}

    def prune(self, keep_last: int = 500) -> int:
        """Keep the newest ``keep_last`` traces and return how many were deleted."""
        with self._lock:
            cutoff = self._conn.execute(
                "SELECT created_at FROM traces ORDER BY created_at DESC LIMIT 1 OFFSET ?",
                (keep_last - 1,),
            ).fetchone()

            if cutoff is None:
                return 0

            result = self._conn.execute(
                "DELETE FROM traces WHERE created_at < ?", (cutoff["created_at"],)
            )
            self._conn.commit()
        deleted = result.rowcount
        if deleted > 0:
            logger.info(f"Pruned {deleted} old traces")
        return deleted

    def close(self) -> None:
        self._conn.close()
