"""Async SQLite decision log."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from shelfwise.storage.models import Decision

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS decision (
    item_id INTEGER PRIMARY KEY,
    item_name TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('keep', 'remove', 'skip')),
    reasoning TEXT NOT NULL DEFAULT '',
    notes TEXT NOT NULL DEFAULT '',
    decided_at TEXT NOT NULL
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Async SQLite wrapper holding one decision per item."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._conn

    async def connect(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # -- decisions ------------------------------------------------------------

    async def save_decision(self, decision: Decision) -> Decision:
        """Insert or replace the decision for ``decision.item_id``."""
        decided_at = decision.decided_at.isoformat() if decision.decided_at else _now_iso()
        cur = await self.conn.execute(
            """
            INSERT INTO decision (item_id, item_name, status, reasoning, notes, decided_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (item_id) DO UPDATE SET
                item_name = excluded.item_name,
                status = excluded.status,
                reasoning = excluded.reasoning,
                notes = excluded.notes,
                decided_at = excluded.decided_at
            RETURNING *
            """,
            (
                decision.item_id,
                decision.item_name,
                decision.status,
                decision.reasoning,
                decision.notes,
                decided_at,
            ),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_decision(row)

    async def get_decision(self, item_id: int) -> Decision | None:
        cur = await self.conn.execute("SELECT * FROM decision WHERE item_id = ?", (item_id,))
        row = await cur.fetchone()
        return self._row_to_decision(row) if row else None

    async def delete_decision(self, item_id: int) -> bool:
        cur = await self.conn.execute("DELETE FROM decision WHERE item_id = ?", (item_id,))
        await self.conn.commit()
        return cur.rowcount > 0

    async def list_decisions(self) -> list[Decision]:
        cur = await self.conn.execute("SELECT * FROM decision ORDER BY decided_at, item_id")
        rows = await cur.fetchall()
        return [self._row_to_decision(r) for r in rows]

    async def decided_ids(self) -> set[int]:
        cur = await self.conn.execute("SELECT item_id FROM decision")
        rows = await cur.fetchall()
        return {row["item_id"] for row in rows}

    async def count_by_status(self) -> dict[str, int]:
        cur = await self.conn.execute("SELECT status, COUNT(*) AS cnt FROM decision GROUP BY status")
        rows = await cur.fetchall()
        counts = {"keep": 0, "remove": 0, "skip": 0}
        for row in rows:
            counts[row["status"]] = row["cnt"]
        return counts

    # -- row → model helpers --------------------------------------------------

    @staticmethod
    def _row_to_decision(row: aiosqlite.Row) -> Decision:
        return Decision(
            item_id=row["item_id"],
            item_name=row["item_name"],
            status=row["status"],
            reasoning=row["reasoning"],
            notes=row["notes"],
            decided_at=row["decided_at"],
        )
