"""SQLite storage backend implementation."""

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite

from ..errors import ConflictError
from ..models.core import (
    ActiveState,
    AdSpace,
    ApprovalTask,
    AuthorizationStatus,
    CalendarPeriod,
    DeletedState,
    FaceRequest,
    InventorySlot,
    Proposal,
    ProposalStatus,
    Reservation,
    TaskKind,
    TaskStatus,
    Track,
)
from ..models.criteria import CriteriaRule, ThresholdRange
from .base import StorageBackend

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS criteria_rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    format TEXT NOT NULL,
    medium_type TEXT NOT NULL,
    market TEXT NOT NULL,
    dg_tariff_min REAL,
    dg_tariff_max REAL,
    dg_faces_min REAL,
    dg_faces_max REAL,
    dcm_tariff_min REAL,
    dcm_tariff_max REAL,
    dcm_faces_min REAL,
    dcm_faces_max REAL,
    active INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_criteria_key
    ON criteria_rules(format, medium_type, market, active);

CREATE TABLE IF NOT EXISTS proposals (
    proposal_id TEXT PRIMARY KEY,
    client_name TEXT,
    campaign_name TEXT,
    requester TEXT,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS face_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    proposal_id TEXT NOT NULL REFERENCES proposals(proposal_id),
    city TEXT,
    state TEXT,
    format TEXT,
    medium_type TEXT,
    requested_faces INTEGER,
    bonus_faces INTEGER NOT NULL DEFAULT 0,
    cost REAL,
    public_tariff REAL NOT NULL DEFAULT 0,
    period_start TEXT,
    period_end TEXT,
    dg_status TEXT NOT NULL,
    dcm_status TEXT NOT NULL,
    reason_dg TEXT,
    reason_dcm TEXT,
    rejection_reason TEXT,
    effective_tariff REAL,
    total_faces INTEGER
);

CREATE INDEX IF NOT EXISTS idx_faces_proposal ON face_requests(proposal_id);

CREATE TABLE IF NOT EXISTS inventory_slots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    city TEXT,
    state TEXT,
    format TEXT NOT NULL,
    medium_type TEXT NOT NULL,
    orientation TEXT NOT NULL,
    public_tariff REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS ad_spaces (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slot_id INTEGER NOT NULL REFERENCES inventory_slots(id),
    label TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_spaces_slot ON ad_spaces(slot_id);

CREATE TABLE IF NOT EXISTS calendar_periods (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    year INTEGER NOT NULL,
    number INTEGER NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    UNIQUE (year, number)
);

CREATE TABLE IF NOT EXISTS reservations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    space_id INTEGER NOT NULL REFERENCES ad_spaces(id),
    face_id INTEGER NOT NULL REFERENCES face_requests(id),
    period_id INTEGER NOT NULL REFERENCES calendar_periods(id),
    status TEXT NOT NULL,
    group_id INTEGER,
    aps INTEGER,
    created_at TEXT NOT NULL,
    deleted_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_reservations_active_space_period
    ON reservations(space_id, period_id) WHERE deleted_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_reservations_face ON reservations(face_id);
CREATE INDEX IF NOT EXISTS idx_reservations_group ON reservations(group_id);

CREATE TABLE IF NOT EXISTS approval_tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    proposal_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    track TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    assignees TEXT NOT NULL DEFAULT '[]',
    due_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_proposal ON approval_tasks(proposal_id, status);

CREATE TABLE IF NOT EXISTS sequences (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""

# Sequences are seeded from the highest value already stored so ids are never reused.
SEQUENCE_SEEDS = {
    "group_id": "SELECT COALESCE(MAX(group_id), 0) FROM reservations",
    "aps": "SELECT COALESCE(MAX(aps), 0) FROM reservations",
}

_TRACK_COLUMNS = {Track.DG: "dg_status", Track.DCM: "dcm_status"}

_RESERVATION_SELECT = """
    SELECT r.id, r.space_id, s.slot_id, r.face_id, r.period_id, r.status,
           r.group_id, r.aps, r.created_at, r.deleted_at
    FROM reservations r
    JOIN ad_spaces s ON s.id = r.space_id
    JOIN face_requests f ON f.id = r.face_id
"""


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" for _ in values)


class SQLiteBackend(StorageBackend):
    """SQLite-based storage backend.

    Relational tables with soft-deleted reservations. The reservation insert
    is a single conditional statement so two writers cannot book the same
    space for overlapping periods.
    """

    def __init__(self, database_url: str):
        """Initialize SQLite backend.

        Args:
            database_url: SQLite connection string (e.g., sqlite:///./ooh_booking.db)
        """
        # Extract path from URL
        if database_url.startswith("sqlite:///"):
            self.db_path = database_url[len("sqlite:///"):]
        else:
            self.db_path = database_url

        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Establish connection and create tables."""
        # Ensure directory exists
        if self.db_path != ":memory:":
            db_dir = Path(self.db_path).parent
            if db_dir and not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)

        # Autocommit; multi-statement writes open explicit transactions
        self._connection = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.executescript(SCHEMA)

    async def disconnect(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Storage not connected. Call connect() first.")
        return self._connection

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize writers and wrap them in an immediate transaction."""
        conn = self._conn()
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self._conn().execute(sql, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> Optional[aiosqlite.Row]:
        async with self._conn().execute(sql, tuple(params)) as cursor:
            return await cursor.fetchone()

    # -------------------------------------------------------------------------
    # Criteria rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _rule_from_row(row: aiosqlite.Row) -> CriteriaRule:
        return CriteriaRule(
            rule_id=row["id"],
            format=row["format"],
            medium_type=row["medium_type"],
            market=row["market"],
            dg_tariff=ThresholdRange(minimum=row["dg_tariff_min"], maximum=row["dg_tariff_max"]),
            dg_faces=ThresholdRange(minimum=row["dg_faces_min"], maximum=row["dg_faces_max"]),
            dcm_tariff=ThresholdRange.band(minimum=row["dcm_tariff_min"], maximum=row["dcm_tariff_max"]),
            dcm_faces=ThresholdRange.band(minimum=row["dcm_faces_min"], maximum=row["dcm_faces_max"]),
            active=bool(row["active"]),
        )

    async def save_criteria_rule(self, rule: CriteriaRule) -> CriteriaRule:
        values = (
            rule.format,
            rule.medium_type.value,
            rule.market,
            rule.dg_tariff.minimum,
            rule.dg_tariff.maximum,
            rule.dg_faces.minimum,
            rule.dg_faces.maximum,
            rule.dcm_tariff.minimum,
            rule.dcm_tariff.maximum,
            rule.dcm_faces.minimum,
            rule.dcm_faces.maximum,
            int(rule.active),
        )
        async with self._transaction() as conn:
            if rule.rule_id is None:
                cursor = await conn.execute(
                    """
                    INSERT INTO criteria_rules (
                        format, medium_type, market,
                        dg_tariff_min, dg_tariff_max, dg_faces_min, dg_faces_max,
                        dcm_tariff_min, dcm_tariff_max, dcm_faces_min, dcm_faces_max,
                        active
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                return rule.model_copy(update={"rule_id": cursor.lastrowid})

            await conn.execute(
                """
                UPDATE criteria_rules SET
                    format = ?, medium_type = ?, market = ?,
                    dg_tariff_min = ?, dg_tariff_max = ?, dg_faces_min = ?, dg_faces_max = ?,
                    dcm_tariff_min = ?, dcm_tariff_max = ?, dcm_faces_min = ?, dcm_faces_max = ?,
                    active = ?
                WHERE id = ?
                """,
                values + (rule.rule_id,),
            )
            return rule

    async def list_criteria_rules(self, active_only: bool = True) -> list[CriteriaRule]:
        sql = "SELECT * FROM criteria_rules"
        if active_only:
            sql += " WHERE active = 1"
        rows = await self._fetchall(sql + " ORDER BY id")
        return [self._rule_from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Proposals and faces
    # -------------------------------------------------------------------------

    async def save_proposal(self, proposal: Proposal) -> Proposal:
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT OR REPLACE INTO proposals (
                    proposal_id, client_name, campaign_name, requester, status, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    proposal.proposal_id,
                    proposal.client_name,
                    proposal.campaign_name,
                    proposal.requester,
                    proposal.status.value,
                    proposal.created_at.isoformat(),
                ),
            )
        return proposal

    async def get_proposal(self, proposal_id: str) -> Optional[Proposal]:
        row = await self._fetchone("SELECT * FROM proposals WHERE proposal_id = ?", (proposal_id,))
        if row is None:
            return None
        return Proposal(**dict(row))

    async def update_proposal_status(self, proposal_id: str, status: ProposalStatus) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                "UPDATE proposals SET status = ? WHERE proposal_id = ?",
                (status.value, proposal_id),
            )

    @staticmethod
    def _face_from_row(row: aiosqlite.Row) -> FaceRequest:
        data = dict(row)
        data["face_id"] = data.pop("id")
        return FaceRequest(**data)

    async def save_face(self, face: FaceRequest) -> FaceRequest:
        values = (
            face.proposal_id,
            face.city,
            face.state,
            face.format,
            face.medium_type,
            face.requested_faces,
            face.bonus_faces,
            face.cost,
            face.public_tariff,
            _iso(face.period_start),
            _iso(face.period_end),
            face.dg_status.value,
            face.dcm_status.value,
            face.reason_dg,
            face.reason_dcm,
            face.rejection_reason,
            face.effective_tariff,
            face.total_faces,
        )
        async with self._transaction() as conn:
            if face.face_id is None:
                cursor = await conn.execute(
                    """
                    INSERT INTO face_requests (
                        proposal_id, city, state, format, medium_type,
                        requested_faces, bonus_faces, cost, public_tariff,
                        period_start, period_end,
                        dg_status, dcm_status, reason_dg, reason_dcm, rejection_reason,
                        effective_tariff, total_faces
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                return face.model_copy(update={"face_id": cursor.lastrowid})

            await conn.execute(
                """
                UPDATE face_requests SET
                    proposal_id = ?, city = ?, state = ?, format = ?, medium_type = ?,
                    requested_faces = ?, bonus_faces = ?, cost = ?, public_tariff = ?,
                    period_start = ?, period_end = ?,
                    dg_status = ?, dcm_status = ?, reason_dg = ?, reason_dcm = ?,
                    rejection_reason = ?, effective_tariff = ?, total_faces = ?
                WHERE id = ?
                """,
                values + (face.face_id,),
            )
            return face

    async def get_face(self, face_id: int) -> Optional[FaceRequest]:
        row = await self._fetchone("SELECT * FROM face_requests WHERE id = ?", (face_id,))
        return self._face_from_row(row) if row is not None else None

    async def list_faces(self, proposal_id: str) -> list[FaceRequest]:
        rows = await self._fetchall(
            "SELECT * FROM face_requests WHERE proposal_id = ? ORDER BY id",
            (proposal_id,),
        )
        return [self._face_from_row(row) for row in rows]

    async def transition_track(
        self,
        proposal_id: str,
        track: Track,
        from_status: AuthorizationStatus,
        to_status: AuthorizationStatus,
        reason: Optional[str] = None,
    ) -> list[int]:
        column = _TRACK_COLUMNS[track]
        async with self._transaction() as conn:
            async with conn.execute(
                f"SELECT id FROM face_requests WHERE proposal_id = ? AND {column} = ? ORDER BY id",
                (proposal_id, from_status.value),
            ) as cursor:
                face_ids = [row["id"] for row in await cursor.fetchall()]

            if face_ids:
                params: list[Any] = [to_status.value]
                assignments = f"{column} = ?"
                if reason is not None:
                    assignments += ", rejection_reason = ?"
                    params.append(reason)
                await conn.execute(
                    f"UPDATE face_requests SET {assignments} WHERE id IN ({_placeholders(face_ids)})",
                    params + face_ids,
                )
        return face_ids

    # -------------------------------------------------------------------------
    # Inventory
    # -------------------------------------------------------------------------

    async def save_slot(self, slot: InventorySlot, spaces: int = 1) -> InventorySlot:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO inventory_slots (
                    code, latitude, longitude, city, state, format,
                    medium_type, orientation, public_tariff
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    slot.code,
                    slot.latitude,
                    slot.longitude,
                    slot.city,
                    slot.state,
                    slot.format,
                    slot.medium_type.value,
                    slot.orientation.value,
                    slot.public_tariff,
                ),
            )
            slot_id = cursor.lastrowid
            for position in range(1, max(spaces, 1) + 1):
                await conn.execute(
                    "INSERT INTO ad_spaces (slot_id, label) VALUES (?, ?)",
                    (slot_id, f"{slot.code}-{position}"),
                )
        return slot.model_copy(update={"slot_id": slot_id})

    @staticmethod
    def _slot_from_row(row: aiosqlite.Row) -> InventorySlot:
        data = dict(row)
        data["slot_id"] = data.pop("id")
        return InventorySlot(**data)

    async def get_slot(self, slot_id: int) -> Optional[InventorySlot]:
        row = await self._fetchone("SELECT * FROM inventory_slots WHERE id = ?", (slot_id,))
        return self._slot_from_row(row) if row is not None else None

    async def list_slots(
        self,
        city: Optional[str] = None,
        format: Optional[str] = None,
    ) -> list[InventorySlot]:
        clauses = []
        params: list[Any] = []
        if city:
            clauses.append("UPPER(city) = UPPER(?)")
            params.append(city)
        if format:
            clauses.append("UPPER(format) = UPPER(?)")
            params.append(format)
        sql = "SELECT * FROM inventory_slots"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = await self._fetchall(sql + " ORDER BY id", params)
        return [self._slot_from_row(row) for row in rows]

    async def list_spaces(self, slot_id: int) -> list[AdSpace]:
        rows = await self._fetchall(
            "SELECT id, slot_id, label FROM ad_spaces WHERE slot_id = ? ORDER BY id",
            (slot_id,),
        )
        return [AdSpace(space_id=row["id"], slot_id=row["slot_id"], label=row["label"]) for row in rows]

    @staticmethod
    def _period_from_row(row: aiosqlite.Row) -> CalendarPeriod:
        data = dict(row)
        data["period_id"] = data.pop("id")
        return CalendarPeriod(**data)

    async def save_period(self, period: CalendarPeriod) -> CalendarPeriod:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "INSERT INTO calendar_periods (year, number, start_date, end_date) VALUES (?, ?, ?, ?)",
                (period.year, period.number, _iso(period.start_date), _iso(period.end_date)),
            )
        return period.model_copy(update={"period_id": cursor.lastrowid})

    async def get_period(self, period_id: int) -> Optional[CalendarPeriod]:
        row = await self._fetchone("SELECT * FROM calendar_periods WHERE id = ?", (period_id,))
        return self._period_from_row(row) if row is not None else None

    async def find_overlapping_periods(self, start: date, end: date) -> list[CalendarPeriod]:
        rows = await self._fetchall(
            """
            SELECT * FROM calendar_periods
            WHERE start_date <= ? AND end_date >= ?
            ORDER BY start_date
            """,
            (_iso(end), _iso(start)),
        )
        return [self._period_from_row(row) for row in rows]

    async def find_period_for_date(self, day: date) -> Optional[CalendarPeriod]:
        row = await self._fetchone(
            """
            SELECT * FROM calendar_periods
            WHERE start_date <= ? AND end_date >= ?
            ORDER BY start_date LIMIT 1
            """,
            (_iso(day), _iso(day)),
        )
        return self._period_from_row(row) if row is not None else None

    # -------------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------------

    @staticmethod
    def _reservation_from_row(row: aiosqlite.Row) -> Reservation:
        deleted_at = row["deleted_at"]
        state = DeletedState(at=datetime.fromisoformat(deleted_at)) if deleted_at else ActiveState()
        return Reservation(
            reservation_id=row["id"],
            space_id=row["space_id"],
            slot_id=row["slot_id"],
            face_id=row["face_id"],
            period_id=row["period_id"],
            status=row["status"],
            group_id=row["group_id"],
            aps=row["aps"],
            created_at=datetime.fromisoformat(row["created_at"]),
            state=state,
        )

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    """
                    INSERT INTO reservations (
                        space_id, face_id, period_id, status, group_id, aps, created_at
                    )
                    SELECT ?, ?, ?, ?, ?, ?, ?
                    WHERE NOT EXISTS (
                        SELECT 1
                        FROM reservations r
                        JOIN calendar_periods p ON p.id = r.period_id
                        JOIN calendar_periods q ON q.id = ?
                        WHERE r.space_id = ?
                          AND r.deleted_at IS NULL
                          AND p.start_date <= q.end_date
                          AND p.end_date >= q.start_date
                    )
                    """,
                    (
                        reservation.space_id,
                        reservation.face_id,
                        reservation.period_id,
                        reservation.status.value,
                        reservation.group_id,
                        reservation.aps,
                        reservation.created_at.isoformat(),
                        reservation.period_id,
                        reservation.space_id,
                    ),
                )
                if cursor.rowcount == 0:
                    logger.debug(f"Reservation insert rejected for space {reservation.space_id}")
                    raise ConflictError(
                        f"Space {reservation.space_id} is already reserved for an overlapping period",
                        space_id=reservation.space_id,
                    )
                reservation_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Space {reservation.space_id} could not be reserved: {e}",
                space_id=reservation.space_id,
            ) from e

        return await self.get_reservation(reservation_id)

    async def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        row = await self._fetchone(_RESERVATION_SELECT + " WHERE r.id = ?", (reservation_id,))
        return self._reservation_from_row(row) if row is not None else None

    async def list_reservations(
        self,
        proposal_id: Optional[str] = None,
        face_id: Optional[int] = None,
        space_ids: Optional[Iterable[int]] = None,
        group_ids: Optional[Iterable[int]] = None,
        period_ids: Optional[Iterable[int]] = None,
        active_only: bool = True,
    ) -> list[Reservation]:
        clauses = []
        params: list[Any] = []
        if proposal_id is not None:
            clauses.append("f.proposal_id = ?")
            params.append(proposal_id)
        if face_id is not None:
            clauses.append("r.face_id = ?")
            params.append(face_id)
        for column, values in (
            ("r.space_id", space_ids),
            ("r.group_id", group_ids),
            ("r.period_id", period_ids),
        ):
            if values is None:
                continue
            values = list(values)
            if not values:
                return []
            clauses.append(f"{column} IN ({_placeholders(values)})")
            params.extend(values)
        if active_only:
            clauses.append("r.deleted_at IS NULL")

        sql = _RESERVATION_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        rows = await self._fetchall(sql + " ORDER BY r.id", params)
        return [self._reservation_from_row(row) for row in rows]

    async def soft_delete_reservations(self, reservation_ids: Iterable[int], at: datetime) -> list[int]:
        ids = list(dict.fromkeys(reservation_ids))
        if not ids:
            return []
        async with self._transaction() as conn:
            async with conn.execute(
                f"SELECT id FROM reservations WHERE deleted_at IS NULL AND id IN ({_placeholders(ids)})",
                ids,
            ) as cursor:
                active_ids = [row["id"] for row in await cursor.fetchall()]
            if active_ids:
                await conn.execute(
                    f"UPDATE reservations SET deleted_at = ? WHERE id IN ({_placeholders(active_ids)})",
                    [at.isoformat()] + active_ids,
                )
        return active_ids

    async def stamp_aps(self, space_ids: Iterable[int], group_ids: Iterable[int], aps: int) -> int:
        space_ids = list(space_ids)
        group_ids = list(group_ids)
        targets = []
        params: list[Any] = [aps]
        if space_ids:
            targets.append(f"space_id IN ({_placeholders(space_ids)})")
            params.extend(space_ids)
        if group_ids:
            targets.append(f"group_id IN ({_placeholders(group_ids)})")
            params.extend(group_ids)
        if not targets:
            return 0
        condition = " OR ".join(targets)
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"""
                UPDATE reservations SET aps = ?
                WHERE deleted_at IS NULL
                  AND (aps IS NULL OR aps = 0)
                  AND ({condition})
                """,
                params,
            )
            return cursor.rowcount

    async def next_sequence(self, name: str) -> int:
        seed_sql = SEQUENCE_SEEDS.get(name, "SELECT 0")
        async with self._transaction() as conn:
            await conn.execute(
                f"INSERT OR IGNORE INTO sequences (name, value) SELECT ?, ({seed_sql})",
                (name,),
            )
            await conn.execute("UPDATE sequences SET value = value + 1 WHERE name = ?", (name,))
            async with conn.execute("SELECT value FROM sequences WHERE name = ?", (name,)) as cursor:
                row = await cursor.fetchone()
        logger.debug(f"Sequence {name} advanced to {row['value']}")
        return int(row["value"])

    # -------------------------------------------------------------------------
    # Approval tasks
    # -------------------------------------------------------------------------

    @staticmethod
    def _task_from_row(row: aiosqlite.Row) -> ApprovalTask:
        data = dict(row)
        data["task_id"] = data.pop("id")
        data["assignees"] = json.loads(data["assignees"] or "[]")
        return ApprovalTask(**data)

    async def create_task(self, task: ApprovalTask) -> ApprovalTask:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO approval_tasks (
                    proposal_id, kind, track, title, description, status,
                    assignees, due_at, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.proposal_id,
                    task.kind.value,
                    task.track.value if task.track else None,
                    task.title,
                    task.description,
                    task.status.value,
                    json.dumps(task.assignees),
                    task.due_at.isoformat() if task.due_at else None,
                    task.created_at.isoformat(),
                ),
            )
        return task.model_copy(update={"task_id": cursor.lastrowid})

    async def resolve_tasks(
        self,
        proposal_id: str,
        track: Optional[Track] = None,
        kind: TaskKind = TaskKind.AUTHORIZATION,
    ) -> int:
        sql = "UPDATE approval_tasks SET status = ? WHERE proposal_id = ? AND kind = ? AND status = ?"
        params: list[Any] = [
            TaskStatus.RESOLVED.value,
            proposal_id,
            kind.value,
            TaskStatus.PENDING.value,
        ]
        if track is not None:
            sql += " AND track = ?"
            params.append(track.value)
        async with self._transaction() as conn:
            cursor = await conn.execute(sql, params)
            return cursor.rowcount

    async def list_tasks(
        self,
        proposal_id: str,
        status: Optional[TaskStatus] = None,
    ) -> list[ApprovalTask]:
        sql = "SELECT * FROM approval_tasks WHERE proposal_id = ?"
        params: list[Any] = [proposal_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        rows = await self._fetchall(sql + " ORDER BY id", params)
        return [self._task_from_row(row) for row in rows]
