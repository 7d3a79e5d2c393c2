"""SQLite-based persistent storage for generation jobs and schedules.

Jobs and schedule entries survive server restarts.
Uses aiosqlite for async database operations.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from models.job import GenerationJob
from models.schedule import ScheduleEntry

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = ".trendshorts/jobs.db"


def _utc(instant: datetime) -> str:
    """Sortable UTC ISO timestamp for indexed comparisons."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).isoformat()


class JobStore:
    """Async SQLite job and schedule storage.

    WebSocket connections and phase streams remain in-memory (they're
    ephemeral by nature).
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize job store with database path.

        Args:
            db_path: Path to SQLite database file. Parent directory
                     will be created if it doesn't exist.
        """
        self.db_path = Path(db_path)
        self.db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and create schema.

        Creates the jobs and schedules tables if they don't exist and
        enables WAL mode for better concurrent read performance.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row

        await self.db.execute("PRAGMA journal_mode=WAL")

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                owner_id TEXT,
                schedule_id TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                topic TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                data JSON,
                error TEXT
            )
        """)
        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_owner_status
            ON jobs (owner_id, status)
        """)
        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_created_at
            ON jobs (created_at DESC)
        """)

        await self.db.execute("""
            CREATE TABLE IF NOT EXISTS schedules (
                id TEXT PRIMARY KEY,
                owner_id TEXT,
                active INTEGER NOT NULL DEFAULT 1,
                next_run TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                data JSON
            )
        """)
        await self.db.execute("""
            CREATE INDEX IF NOT EXISTS idx_schedules_due
            ON schedules (active, next_run)
        """)

        await self.db.commit()
        logger.info(f"Job store connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self.db:
            await self.db.close()
            self.db = None
            logger.info("Job store connection closed")

    def _require_db(self) -> aiosqlite.Connection:
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def save_job(self, job: GenerationJob) -> dict[str, Any]:
        """Insert or update a job.

        Raises:
            RuntimeError: If database is not connected
        """
        db = self._require_db()
        now = datetime.now(timezone.utc).isoformat()
        data = job.to_dict()

        await db.execute(
            """
            INSERT INTO jobs (id, owner_id, schedule_id, status, topic, created_at, updated_at, data, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                topic = excluded.topic,
                updated_at = excluded.updated_at,
                data = excluded.data,
                error = excluded.error
            """,
            (
                job.id,
                job.owner_id,
                job.schedule_id,
                job.status.value,
                job.topic,
                data["created_at"],
                now,
                json.dumps(data),
                job.error,
            ),
        )
        await db.commit()
        logger.debug(f"Saved job {job.id}: status={job.status.value}")
        return data

    async def get_job(self, job_id: str) -> dict[str, Any] | None:
        """Get a job by ID, or None if not found."""
        db = self._require_db()
        async with db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

    async def list_jobs(
        self,
        owner_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """List jobs with optional filters, newest first."""
        db = self._require_db()
        query = "SELECT * FROM jobs WHERE 1=1"
        params: list[Any] = []

        if owner_id:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if status:
            query += " AND status = ?"
            params.append(status)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_dict(row) for row in rows]

    async def recent_topics(self, owner_id: str, limit: int = 20) -> list[str]:
        """Topics of an owner's most recent jobs, used to avoid repeats."""
        db = self._require_db()
        async with db.execute(
            "SELECT topic FROM jobs WHERE owner_id = ? AND topic != '' "
            "ORDER BY created_at DESC LIMIT ?",
            (owner_id, limit),
        ) as cursor:
            rows = await cursor.fetchall()
            return [row["topic"] for row in rows if row["topic"]]

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job. Returns True if deleted, False if not found."""
        db = self._require_db()
        async with db.execute("DELETE FROM jobs WHERE id = ? RETURNING id", (job_id,)) as cursor:
            row = await cursor.fetchone()
            await db.commit()

            if row is not None:
                logger.info(f"Deleted job {job_id}")
                return True
            return False

    async def cleanup_old_jobs(self, days: int = 7) -> int:
        """Delete terminal jobs older than ``days``.

        Pending or running jobs are preserved regardless of age.

        Returns:
            Number of deleted jobs
        """
        db = self._require_db()
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()

        async with db.execute(
            "SELECT COUNT(*) FROM jobs WHERE created_at < ? AND status IN ('succeeded', 'failed')",
            (cutoff,),
        ) as cursor:
            row = await cursor.fetchone()
            count = row[0] if row else 0

        if count > 0:
            await db.execute(
                "DELETE FROM jobs WHERE created_at < ? AND status IN ('succeeded', 'failed')",
                (cutoff,),
            )
            await db.commit()
            logger.info(f"Cleaned up {count} old jobs (older than {days} days)")

        return count

    def _row_to_dict(self, row: aiosqlite.Row) -> dict[str, Any]:
        """Convert a jobs row to the job's dict form."""
        data_str = row["data"]
        if data_str:
            try:
                result = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse JSON data for job {row['id']}")
                result = {}
        else:
            result = {}

        result.update(
            {
                "id": row["id"],
                "owner_id": row["owner_id"],
                "schedule_id": row["schedule_id"],
                "status": row["status"],
                "topic": row["topic"] or "",
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
                "error": row["error"],
            }
        )
        return result

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    async def save_schedule(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Insert or update a schedule entry."""
        db = self._require_db()
        now = datetime.now(timezone.utc).isoformat()
        await db.execute(
            """
            INSERT INTO schedules (id, owner_id, active, next_run, updated_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                active = excluded.active,
                next_run = excluded.next_run,
                updated_at = excluded.updated_at,
                data = excluded.data
            """,
            (
                entry.id,
                entry.owner_id,
                1 if entry.active else 0,
                _utc(entry.next_run),
                now,
                json.dumps(entry.to_dict()),
            ),
        )
        await db.commit()
        return entry

    async def get_schedule(self, schedule_id: str) -> ScheduleEntry | None:
        db = self._require_db()
        async with db.execute("SELECT data FROM schedules WHERE id = ?", (schedule_id,)) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return ScheduleEntry.from_dict(json.loads(row["data"]))

    async def list_schedules(
        self, owner_id: str | None = None, active_only: bool = False
    ) -> list[ScheduleEntry]:
        db = self._require_db()
        query = "SELECT data FROM schedules WHERE 1=1"
        params: list[Any] = []
        if owner_id:
            query += " AND owner_id = ?"
            params.append(owner_id)
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY next_run ASC"

        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [ScheduleEntry.from_dict(json.loads(row["data"])) for row in rows]

    async def list_due_schedules(self, now: datetime) -> list[ScheduleEntry]:
        """Active entries whose next run is at or before ``now``."""
        db = self._require_db()
        async with db.execute(
            "SELECT data FROM schedules WHERE active = 1 AND next_run <= ? ORDER BY next_run ASC",
            (_utc(now),),
        ) as cursor:
            rows = await cursor.fetchall()
            return [ScheduleEntry.from_dict(json.loads(row["data"])) for row in rows]

    async def delete_schedule(self, schedule_id: str) -> bool:
        db = self._require_db()
        async with db.execute(
            "DELETE FROM schedules WHERE id = ? RETURNING id", (schedule_id,)
        ) as cursor:
            row = await cursor.fetchone()
            await db.commit()
            if row is not None:
                logger.info(f"Deleted schedule {schedule_id}")
                return True
            return False


# Module-level singleton
_job_store: JobStore | None = None


async def get_job_store(db_path: str = DEFAULT_DB_PATH) -> JobStore:
    """Get or create the global JobStore singleton.

    Creates the database connection if it doesn't exist.
    """
    global _job_store
    if _job_store is None:
        _job_store = JobStore(db_path)
        await _job_store.connect()
    return _job_store


async def close_job_store() -> None:
    """Close the global JobStore connection.

    Call this during application shutdown to properly close the database.
    """
    global _job_store
    if _job_store is not None:
        await _job_store.close()
        _job_store = None
