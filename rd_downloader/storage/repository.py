"""
SQLite-backed repository for download jobs.

Every public method is a coroutine; the blocking sqlite3 work runs in a thread
so workers, the relay task and the CLI can share one repository.
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from rd_downloader.exceptions import PersistenceError
from rd_downloader.models.job import RESUMABLE_PHASES, TERMINAL_PHASES, Job, Phase

log = logging.getLogger(__name__)

_JSON_FIELDS = ("available_files", "selected_file_ids", "resource_links", "local_paths")

_COLUMNS = (
    "external_id",
    "name",
    "phase",
    "progress",
    "total_bytes",
    "downloaded_bytes",
    "available_files",
    "selected_file_ids",
    "resource_links",
    "local_paths",
    "fetch_subtitles",
    "subtitle_outcome",
    "error_detail",
    "created_at",
    "updated_at",
)


class JobRepository:
    """
    A thread-safe SQLite store for download jobs with a bounded number of
    concurrent connections.
    """

    def __init__(self, db_path: Path, pool_size: int = 5):
        self.db_path = Path(db_path)
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            return conn
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to connect to job database: {e}") from e

    def _initialize_db(self) -> None:
        """Creates the jobs table and its indexes if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with closing(self._get_connection()) as conn, conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS jobs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        external_id TEXT UNIQUE,
                        name TEXT NOT NULL,
                        phase TEXT NOT NULL DEFAULT 'pending',
                        progress REAL NOT NULL DEFAULT 0,
                        total_bytes INTEGER NOT NULL DEFAULT 0,
                        downloaded_bytes INTEGER NOT NULL DEFAULT 0,
                        available_files TEXT NOT NULL DEFAULT '[]',
                        selected_file_ids TEXT NOT NULL DEFAULT '[]',
                        resource_links TEXT NOT NULL DEFAULT '[]',
                        local_paths TEXT NOT NULL DEFAULT '[]',
                        fetch_subtitles INTEGER NOT NULL DEFAULT 1,
                        subtitle_outcome TEXT NOT NULL DEFAULT '',
                        error_detail TEXT NOT NULL DEFAULT '',
                        created_at TIMESTAMP NOT NULL,
                        updated_at TIMESTAMP NOT NULL
                    );
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_phase ON jobs(phase);")
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to initialize job database at '{self.db_path}': {e}"
            ) from e

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function within the connection pool semaphore."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(func, *args)

    # Row mapping

    @staticmethod
    def _to_row(job: Job) -> dict[str, Any]:
        data = job.model_dump(mode="json", exclude={"id"})
        for key in _JSON_FIELDS:
            data[key] = json.dumps(data[key])
        data["external_id"] = job.external_id or None
        data["fetch_subtitles"] = int(job.fetch_subtitles)
        data["created_at"] = job.created_at.isoformat()
        data["updated_at"] = job.updated_at.isoformat()
        return data

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Job:
        data = dict(row)
        for key in _JSON_FIELDS:
            data[key] = json.loads(data[key] or "[]")
        data["external_id"] = data["external_id"] or ""
        data["fetch_subtitles"] = bool(data["fetch_subtitles"])
        return Job(**data)

    def _execute(self, query: str, params: tuple | dict = ()) -> int:
        try:
            with closing(self._get_connection()) as conn, conn:
                cursor = conn.execute(query, params)
                return cursor.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"Job database write failed: {e}") from e

    def _fetch(self, query: str, params: tuple = ()) -> list[Job]:
        try:
            with closing(self._get_connection()) as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Job database read failed: {e}") from e
        return [self._from_row(row) for row in rows]

    # Synchronous implementations

    def _create_sync(self, job: Job) -> Job:
        row = self._to_row(job)
        placeholders = ", ".join(f":{col}" for col in _COLUMNS)
        try:
            with closing(self._get_connection()) as conn, conn:
                cursor = conn.execute(
                    f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",  # noqa: S608
                    row,
                )
                job.id = cursor.lastrowid
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to create job '{job.name}': {e}") from e
        return job

    def _update_sync(self, job: Job) -> int:
        row = self._to_row(job)
        row["id"] = job.id
        assignments = ", ".join(f"{col} = :{col}" for col in _COLUMNS)
        return self._execute(
            f"UPDATE jobs SET {assignments} WHERE id = :id",  # noqa: S608
            row,
        )

    # Public API

    async def create(self, job: Job) -> Job:
        """Inserts a new job and assigns its sequential id."""
        return await self._run_in_executor(self._create_sync, job)

    async def get(self, job_id: int) -> Optional[Job]:
        jobs = await self._run_in_executor(
            self._fetch, "SELECT * FROM jobs WHERE id = ?", (job_id,)
        )
        return jobs[0] if jobs else None

    async def get_by_external_id(self, external_id: str) -> Optional[Job]:
        jobs = await self._run_in_executor(
            self._fetch, "SELECT * FROM jobs WHERE external_id = ?", (external_id,)
        )
        return jobs[0] if jobs else None

    async def list_all(self) -> list[Job]:
        """Returns every job, newest first."""
        return await self._run_in_executor(
            self._fetch, "SELECT * FROM jobs ORDER BY created_at DESC, id DESC"
        )

    async def list_active(self) -> list[Job]:
        """Returns jobs that have not reached a terminal phase."""
        terminal = tuple(p.value for p in TERMINAL_PHASES)
        return await self._run_in_executor(
            self._fetch,
            "SELECT * FROM jobs WHERE phase NOT IN (?, ?) ORDER BY id",
            terminal,
        )

    async def list_resumable(self) -> list[Job]:
        """Returns jobs a restarted process can pick up without user input."""
        phases = tuple(p.value for p in RESUMABLE_PHASES)
        placeholders = ",".join("?" * len(phases))
        return await self._run_in_executor(
            self._fetch,
            f"SELECT * FROM jobs WHERE phase IN ({placeholders}) ORDER BY id",  # noqa: S608
            phases,
        )

    async def update(self, job: Job) -> None:
        """Writes the full job record."""
        await self._run_in_executor(self._update_sync, job)

    async def update_phase(self, job_id: int, phase: Phase) -> None:
        await self._run_in_executor(
            self._execute,
            "UPDATE jobs SET phase = ?, updated_at = ? WHERE id = ?",
            (phase.value, datetime.now().isoformat(), job_id),
        )

    async def update_progress(
        self, job_id: int, progress: float, downloaded_bytes: int
    ) -> None:
        await self._run_in_executor(
            self._execute,
            "UPDATE jobs SET progress = ?, downloaded_bytes = ?, updated_at = ? "
            "WHERE id = ?",
            (progress, downloaded_bytes, datetime.now().isoformat(), job_id),
        )

    async def update_error(self, job_id: int, message: str) -> None:
        await self._run_in_executor(
            self._execute,
            "UPDATE jobs SET phase = ?, error_detail = ?, updated_at = ? WHERE id = ?",
            (Phase.ERROR.value, message, datetime.now().isoformat(), job_id),
        )

    async def delete(self, job_id: int) -> bool:
        """Removes a job. Returns False if it did not exist."""
        deleted = await self._run_in_executor(
            self._execute, "DELETE FROM jobs WHERE id = ?", (job_id,)
        )
        return deleted > 0
