import asyncio
import json
import os
import sqlite3
import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set

import aiosqlite

from dispatchkit.errors import AlreadyResolved, CourierBusy, InvalidInput, NotFound
from dispatchkit.ledger.interfaces import AssignmentLedger
from dispatchkit.models import Assignment, AssignmentState, utcnow
from dispatchkit.utils.logging import get_logger

logger = get_logger("SQLiteAssignmentLedger")

SCHEMA = """
CREATE TABLE IF NOT EXISTS assignments (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL,
    shop_order_id TEXT NOT NULL,
    shop_id TEXT NOT NULL,
    candidates TEXT NOT NULL,
    assignee TEXT,
    state TEXT NOT NULL DEFAULT 'broadcast',
    superseded INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    accepted_at TEXT
);
CREATE TABLE IF NOT EXISTS assignment_candidates (
    assignment_id TEXT NOT NULL REFERENCES assignments(id),
    courier_id TEXT NOT NULL,
    PRIMARY KEY (assignment_id, courier_id)
);
CREATE INDEX IF NOT EXISTS idx_candidates_courier ON assignment_candidates(courier_id);
CREATE UNIQUE INDEX IF NOT EXISTS uq_one_accepted_per_courier
    ON assignments(assignee) WHERE state = 'accepted';
CREATE UNIQUE INDEX IF NOT EXISTS uq_one_live_per_line
    ON assignments(order_id, shop_order_id) WHERE superseded = 0 AND state <> 'completed';
"""

ACCEPT_SQL = """
UPDATE assignments
   SET assignee = ?, state = 'accepted', accepted_at = ?
 WHERE id = ?
   AND state = 'broadcast'
   AND superseded = 0
   AND EXISTS (SELECT 1 FROM assignment_candidates c
                WHERE c.assignment_id = assignments.id AND c.courier_id = ?)
   AND NOT EXISTS (SELECT 1 FROM assignments busy
                    WHERE busy.assignee = ? AND busy.state = 'accepted')
"""


class SQLiteAssignmentLedger(AssignmentLedger):
    """
    Persistent ledger on SQLite.

    Acceptance is one conditional UPDATE judged by its rowcount. The
    partial unique index on accepted assignees holds the one-job-per-courier
    rule even against writers in other processes.
    """
    def __init__(self, path: str):
        self.path = path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def start(self):
        dirname = os.path.dirname(self.path)
        if dirname and not os.path.exists(dirname):
            os.makedirs(dirname)

        # Autocommit; multi-statement writes open their own transaction
        self._db = await aiosqlite.connect(self.path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA busy_timeout = 5000")
        await self._db.executescript(SCHEMA)
        logger.info(f"Opened SQLite ledger at {self.path}")

    async def stop(self):
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Ledger not started")
        return self._db

    @staticmethod
    def _decode(row: aiosqlite.Row) -> Assignment:
        return Assignment(
            id=row["id"],
            order_id=row["order_id"],
            shop_order_id=row["shop_order_id"],
            shop_id=row["shop_id"],
            candidates=tuple(json.loads(row["candidates"])),
            assignee=row["assignee"],
            state=AssignmentState(row["state"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            accepted_at=datetime.fromisoformat(row["accepted_at"]) if row["accepted_at"] else None,
        )

    async def _fetch_one(self, sql: str, params: tuple) -> Optional[Assignment]:
        async with self._conn().execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return self._decode(row) if row else None

    async def _fetch_all(self, sql: str, params: tuple) -> List[Assignment]:
        async with self._conn().execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._decode(row) for row in rows]

    async def create(self, order_id: str, shop_order_id: str, shop_id: str,
                     candidates: Sequence[str]) -> Assignment:
        if not candidates:
            raise InvalidInput("cannot create an assignment without candidates")

        db = self._conn()
        assignment = Assignment(
            id=uuid.uuid4().hex,
            order_id=order_id,
            shop_order_id=shop_order_id,
            shop_id=shop_id,
            candidates=tuple(dict.fromkeys(candidates)),
        )
        async with self._lock:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute(
                    "UPDATE assignments SET superseded = 1 "
                    "WHERE order_id = ? AND shop_order_id = ? AND state = 'broadcast' AND superseded = 0",
                    (order_id, shop_order_id),
                )
                await db.execute(
                    "INSERT INTO assignments (id, order_id, shop_order_id, shop_id, candidates, state, created_at) "
                    "VALUES (?, ?, ?, ?, ?, 'broadcast', ?)",
                    (assignment.id, order_id, shop_order_id, shop_id,
                     json.dumps(list(assignment.candidates)), assignment.created_at.isoformat()),
                )
                await db.executemany(
                    "INSERT INTO assignment_candidates (assignment_id, courier_id) VALUES (?, ?)",
                    [(assignment.id, cid) for cid in assignment.candidates],
                )
                await db.execute("COMMIT")
            except sqlite3.IntegrityError:
                await db.execute("ROLLBACK")
                # The only live record left for the line is an accepted one
                raise InvalidInput(f"line {shop_order_id} of order {order_id} is already accepted")
            except Exception:
                await db.execute("ROLLBACK")
                raise
        return assignment

    async def accept(self, assignment_id: str, courier_id: str) -> Assignment:
        db = self._conn()
        async with self._lock:
            try:
                cursor = await db.execute(
                    ACCEPT_SQL,
                    (courier_id, utcnow().isoformat(), assignment_id, courier_id, courier_id),
                )
                won = cursor.rowcount == 1
                await cursor.close()
            except sqlite3.IntegrityError:
                raise CourierBusy(f"courier {courier_id} already holds an accepted assignment")

        current = await self.get(assignment_id)
        if won:
            return current

        # Lost: work out which guard rejected the update
        if current is None:
            raise NotFound(f"assignment {assignment_id} not found")
        if current.state != AssignmentState.BROADCAST or current.assignee is not None:
            raise AlreadyResolved(f"assignment {assignment_id} is {current.state.value}")
        latest = await self.find_for_line(current.order_id, current.shop_order_id)
        if latest is None or latest.id != assignment_id:
            raise AlreadyResolved(f"assignment {assignment_id} was superseded")
        if courier_id not in current.candidates:
            raise InvalidInput(f"courier {courier_id} was not offered assignment {assignment_id}")
        raise CourierBusy(f"courier {courier_id} already holds an accepted assignment")

    async def complete(self, order_id: str, shop_order_id: str, courier_id: str) -> Optional[Assignment]:
        db = self._conn()
        async with self._lock:
            target = await self._fetch_one(
                "SELECT * FROM assignments WHERE order_id = ? AND shop_order_id = ? "
                "AND assignee = ? AND state = 'accepted'",
                (order_id, shop_order_id, courier_id),
            )
            if target is None:
                return None
            cursor = await db.execute(
                "UPDATE assignments SET state = 'completed' WHERE id = ? AND state = 'accepted'",
                (target.id,),
            )
            changed = cursor.rowcount == 1
            await cursor.close()

        if not changed:
            return None
        target.state = AssignmentState.COMPLETED
        return target

    async def get(self, assignment_id: str) -> Optional[Assignment]:
        return await self._fetch_one("SELECT * FROM assignments WHERE id = ?", (assignment_id,))

    async def find_for_line(self, order_id: str, shop_order_id: str) -> Optional[Assignment]:
        return await self._fetch_one(
            "SELECT * FROM assignments WHERE order_id = ? AND shop_order_id = ? AND superseded = 0 "
            "ORDER BY created_at DESC, rowid DESC LIMIT 1",
            (order_id, shop_order_id),
        )

    async def find_active_for_courier(self, courier_id: str) -> List[Assignment]:
        return await self._fetch_all(
            "SELECT a.* FROM assignments a "
            "JOIN assignment_candidates c ON c.assignment_id = a.id "
            "WHERE c.courier_id = ? AND a.state = 'broadcast' AND a.superseded = 0 "
            "ORDER BY a.created_at",
            (courier_id,),
        )

    async def find_accepted_for_courier(self, courier_id: str) -> Optional[Assignment]:
        return await self._fetch_one(
            "SELECT * FROM assignments WHERE assignee = ? AND state = 'accepted'",
            (courier_id,),
        )

    async def busy_couriers(self, courier_ids: Iterable[str]) -> Set[str]:
        ids = list(courier_ids)
        if not ids:
            return set()
        placeholders = ",".join("?" for _ in ids)
        async with self._conn().execute(
            f"SELECT assignee FROM assignments WHERE state = 'accepted' AND assignee IN ({placeholders})",
            tuple(ids),
        ) as cursor:
            rows = await cursor.fetchall()
        return {row["assignee"] for row in rows}
