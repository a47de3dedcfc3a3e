"""
SQLite-based state store implementation.

Tables:
- extraction_jobs: One extraction job per document (queue state machine)
- canonical_codes: Canonical code catalog
- item_code_aliases: Normalized alias -> canonical code mappings
- codified_extractions / codified_items: Fast Pass / Smart Pass output per document
- intelligence_fields: Per-client / per-project facts with provenance
- store_versions: Version counters for cache invalidation
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import (
    CodeNotFoundError,
    DuplicateCodeError,
    ExtractionNotFoundError,
    JobNotFoundError,
)
from ..schemas.codification import (
    AliasSource,
    CodifiedItem,
    DataType,
    MappingStats,
    MappingStatus,
    normalize_alias,
)
from ..schemas.intelligence import EntityType, IntelligenceField

logger = logging.getLogger(__name__)

ALIAS_VERSION_KEY = "aliases"
CATALOG_VERSION_KEY = "canonical_codes"


def utc_now() -> str:
    """Current UTC time as a fixed-width ISO timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by utc_now()."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class JobStatus(str, Enum):
    """Status of an extraction job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SKIPPED)


@dataclass
class ExtractionJob:
    """Record of a document extraction job."""

    id: int
    document_id: str
    client_id: str
    project_id: str | None
    file_ref: str
    document_name: str
    status: JobStatus
    attempts: int
    max_attempts: int
    last_error: str | None
    result_ref: int | None
    result_json: str | None
    created_at: str
    updated_at: str
    last_attempt_at: str | None
    completed_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ExtractionJob":
        """Create from database row."""
        return cls(
            id=row["id"],
            document_id=row["document_id"],
            client_id=row["client_id"],
            project_id=row["project_id"],
            file_ref=row["file_ref"],
            document_name=row["document_name"],
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            last_error=row["last_error"],
            result_ref=row["result_ref"],
            result_json=row["result_json"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_attempt_at=row["last_attempt_at"],
            completed_at=row["completed_at"],
        )

    @property
    def result(self) -> dict[str, Any] | None:
        return json.loads(self.result_json) if self.result_json else None


@dataclass
class CanonicalCode:
    """Record of a canonical code in the catalog."""

    id: int
    code: str
    display_name: str
    category: str
    data_type: DataType
    is_active: bool
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CanonicalCode":
        """Create from database row."""
        return cls(
            id=row["id"],
            code=row["code"],
            display_name=row["display_name"],
            category=row["category"],
            data_type=DataType(row["data_type"]),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )


@dataclass
class ItemCodeAlias:
    """Record of an alias mapping."""

    id: int
    alias: str
    alias_normalized: str
    canonical_code_id: int
    canonical_code: str
    confidence: float
    source: AliasSource
    usage_count: int
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ItemCodeAlias":
        """Create from database row."""
        return cls(
            id=row["id"],
            alias=row["alias"],
            alias_normalized=row["alias_normalized"],
            canonical_code_id=row["canonical_code_id"],
            canonical_code=row["canonical_code"],
            confidence=row["confidence"],
            source=AliasSource(row["source"]),
            usage_count=row["usage_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class AliasUpsertResult:
    """Outcome of an alias upsert: created, updated or kept."""

    alias: ItemCodeAlias
    action: str


@dataclass
class CodifiedExtraction:
    """Record of a document's codified line items."""

    id: int
    document_id: str
    client_id: str | None
    project_id: str | None
    job_id: int | None
    smart_pass_completed: bool
    created_at: str
    updated_at: str
    items: list[CodifiedItem] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row, items: list[CodifiedItem]) -> "CodifiedExtraction":
        """Create from database row plus its item rows."""
        return cls(
            id=row["id"],
            document_id=row["document_id"],
            client_id=row["client_id"],
            project_id=row["project_id"],
            job_id=row["job_id"],
            smart_pass_completed=bool(row["smart_pass_completed"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            items=items,
        )

    @property
    def stats(self) -> MappingStats:
        return MappingStats.from_items(self.items)

    @property
    def is_fully_confirmed(self) -> bool:
        return self.stats.is_fully_confirmed

    def get_item(self, item_id: str) -> CodifiedItem | None:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None


def _item_from_row(row: sqlite3.Row, document_id: str) -> CodifiedItem:
    return CodifiedItem(
        item_id=row["item_id"],
        original_name=row["original_name"],
        value=row["value"],
        category=row["category"],
        data_type=DataType(row["data_type"]),
        currency=row["currency"],
        document_id=document_id,
        item_code=row["item_code"],
        suggested_code=row["suggested_code"],
        suggested_code_id=row["suggested_code_id"],
        confidence=row["confidence"],
        mapping_status=MappingStatus(row["mapping_status"]),
    )


class StateStore:
    """
    SQLite-based state store for the pipeline.

    Provides persistent tracking of:
    - Extraction jobs (queue state machine)
    - Canonical code catalog and alias mappings
    - Codified extractions
    - Intelligence fields

    Every connection is short-lived; writes that must not race (job claims,
    alias upserts) are single conditional statements or run inside one
    transaction.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Extraction job queue
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extraction_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL UNIQUE,
                    client_id TEXT NOT NULL,
                    project_id TEXT,
                    file_ref TEXT NOT NULL,
                    document_name TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    attempts INTEGER NOT NULL DEFAULT 0,
                    max_attempts INTEGER NOT NULL DEFAULT 3,
                    last_error TEXT,
                    result_ref INTEGER,
                    result_json TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_attempt_at TEXT,
                    completed_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_extraction_jobs_status
                ON extraction_jobs(status, created_at)
            """
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Version counters

    def get_version(self, name: str) -> int:
        """Get a version counter (0 if never bumped)."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT version FROM store_versions WHERE name = ?", (name,)
            ).fetchone()
            return row["version"] if row else 0

    def _bump_version(self, conn: sqlite3.Connection, name: str) -> None:
        conn.execute(
            """
            INSERT INTO store_versions (name, version) VALUES (?, 1)
            ON CONFLICT(name) DO UPDATE SET version = version + 1
        """,
            (name,),
        )

    # Extraction job methods

    def create_job(
        self,
        document_id: str,
        client_id: str,
        file_ref: str,
        document_name: str,
        project_id: str | None = None,
        max_attempts: int = 3,
    ) -> int:
        """
        Create an extraction job for a document.

        Idempotent: if a job already exists for the document, its id is
        returned and the job is left unchanged.

        Returns:
            Job ID (new or pre-existing)
        """
        now = utc_now()
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO extraction_jobs
                    (document_id, client_id, project_id, file_ref, document_name,
                     status, attempts, max_attempts, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 'pending', 0, ?, ?, ?)
                """,
                    (
                        document_id,
                        client_id,
                        project_id,
                        file_ref,
                        document_name,
                        max_attempts,
                        now,
                        now,
                    ),
                )
                return cursor.lastrowid or 0
            except sqlite3.IntegrityError:
                row = conn.execute(
                    "SELECT id FROM extraction_jobs WHERE document_id = ?", (document_id,)
                ).fetchone()
                if row is None:
                    raise
                logger.debug(f"Extraction job already exists for document {document_id}")
                return row["id"]

    def get_job(self, job_id: int) -> ExtractionJob | None:
        """Get an extraction job by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM extraction_jobs WHERE id = ?", (job_id,)).fetchone()
            return ExtractionJob.from_row(row) if row else None

    def get_job_by_document(self, document_id: str) -> ExtractionJob | None:
        """Get the extraction job for a document."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM extraction_jobs WHERE document_id = ?", (document_id,)
            ).fetchone()
            return ExtractionJob.from_row(row) if row else None

    def get_pending_jobs(self, limit: int = 10) -> list[ExtractionJob]:
        """List pending jobs in FIFO order without claiming them."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM extraction_jobs
                WHERE status = 'pending'
                ORDER BY created_at ASC, id ASC
                LIMIT ?
            """,
                (limit,),
            ).fetchall()
            return [ExtractionJob.from_row(row) for row in rows]

    def list_jobs(
        self,
        status: JobStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExtractionJob]:
        """List jobs, newest first, optionally filtered by status."""
        with self._transaction() as conn:
            if status:
                rows = conn.execute(
                    """
                    SELECT * FROM extraction_jobs WHERE status = ?
                    ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                """,
                    (JobStatus(status).value, limit, offset),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM extraction_jobs
                    ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?
                """,
                    (limit, offset),
                ).fetchall()
            return [ExtractionJob.from_row(row) for row in rows]

    def claim_next_jobs(self, limit: int) -> list[ExtractionJob]:
        """
        Atomically claim up to `limit` pending jobs in FIFO order.

        Each job moves pending -> processing (attempts + 1) through a single
        conditional UPDATE; a job another driver claimed first affects zero
        rows and is not returned.
        """
        if limit <= 0:
            return []

        now = utc_now()
        claimed: list[ExtractionJob] = []
        with self._transaction() as conn:
            candidates = conn.execute(
                """
                SELECT id FROM extraction_jobs
                WHERE status = 'pending'
                ORDER BY created_at ASC, id ASC
                LIMIT ?
            """,
                (limit,),
            ).fetchall()

            for candidate in candidates:
                cursor = conn.execute(
                    """
                    UPDATE extraction_jobs
                    SET status = 'processing', attempts = attempts + 1,
                        last_attempt_at = ?, updated_at = ?
                    WHERE id = ? AND status = 'pending'
                """,
                    (now, now, candidate["id"]),
                )
                if cursor.rowcount == 1:
                    row = conn.execute(
                        "SELECT * FROM extraction_jobs WHERE id = ?", (candidate["id"],)
                    ).fetchone()
                    claimed.append(ExtractionJob.from_row(row))

        return claimed

    def start_processing(self, job_id: int) -> bool:
        """
        Transition a pending job to processing (attempts + 1).

        Returns:
            True if started, False if the job is not pending

        Raises:
            JobNotFoundError: If the job does not exist
        """
        now = utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE extraction_jobs
                SET status = 'processing', attempts = attempts + 1,
                    last_attempt_at = ?, updated_at = ?
                WHERE id = ? AND status = 'pending'
            """,
                (now, now, job_id),
            )
            if cursor.rowcount == 1:
                return True

            exists = conn.execute(
                "SELECT 1 FROM extraction_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if exists is None:
                raise JobNotFoundError(job_id)
            return False

    def complete_job(
        self,
        job_id: int,
        result_ref: int | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Mark a job completed. Re-invocation overwrites the stored result."""
        now = utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE extraction_jobs
                SET status = 'completed', result_ref = ?, result_json = ?,
                    completed_at = ?, updated_at = ?
                WHERE id = ?
            """,
                (result_ref, json.dumps(result) if result is not None else None, now, now, job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

    def fail_job(self, job_id: int, error_message: str, can_retry: bool = True) -> JobStatus:
        """
        Record a failed attempt.

        The job returns to pending while attempts < max_attempts (and
        can_retry is set); otherwise it becomes failed. last_error is always
        recorded.

        Returns:
            The job's new status
        """
        now = utc_now()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT attempts, max_attempts FROM extraction_jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if row is None:
                raise JobNotFoundError(job_id)

            if can_retry and row["attempts"] < row["max_attempts"]:
                new_status = JobStatus.PENDING
            else:
                new_status = JobStatus.FAILED

            conn.execute(
                """
                UPDATE extraction_jobs
                SET status = ?, last_error = ?, updated_at = ?
                WHERE id = ?
            """,
                (new_status.value, error_message, now, job_id),
            )
            return new_status

    def skip_job(self, job_id: int, reason: str) -> None:
        """Mark a job skipped (terminal); the reason is kept in last_error."""
        now = utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE extraction_jobs
                SET status = 'skipped', last_error = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
            """,
                (reason, now, now, job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

    def retry_job(self, job_id: int) -> bool:
        """Reset a failed job to pending with a fresh attempt budget."""
        now = utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE extraction_jobs
                SET status = 'pending', attempts = 0, completed_at = NULL, updated_at = ?
                WHERE id = ? AND status = 'failed'
            """,
                (now, job_id),
            )
            return cursor.rowcount == 1

    def requeue_stale_jobs(
        self,
        timeout_minutes: int,
        now: datetime | None = None,
    ) -> list[ExtractionJob]:
        """
        Recover jobs abandoned in processing.

        A processing job whose last attempt started more than
        `timeout_minutes` ago is failed with can_retry=True, so it returns
        to pending if attempts remain and is failed otherwise.

        Returns:
            The recovered jobs in their new state
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=timeout_minutes)

        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, last_attempt_at, updated_at FROM extraction_jobs WHERE status = 'processing'"
            ).fetchall()

        stale_ids = [
            row["id"]
            for row in rows
            if parse_timestamp(row["last_attempt_at"] or row["updated_at"]) < cutoff
        ]

        recovered = []
        for job_id in stale_ids:
            new_status = self.fail_job(
                job_id,
                f"stale processing lease expired after {timeout_minutes} minutes",
                can_retry=True,
            )
            logger.warning(f"Recovered stale job #{job_id} -> {new_status.value}")
            job = self.get_job(job_id)
            if job:
                recovered.append(job)
        return recovered

    def get_queue_stats(self) -> dict[str, int]:
        """Count jobs per status."""
        stats = {status.value: 0 for status in JobStatus}
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM extraction_jobs GROUP BY status"
            ).fetchall()
        for row in rows:
            stats[row["status"]] = row["count"]
        stats["total"] = sum(stats[s.value] for s in JobStatus)
        return stats

    def cleanup_old_jobs(self, days: int = 30) -> int:
        """Delete terminal jobs last updated more than `days` ago."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat(
            timespec="microseconds"
        ).replace("+00:00", "Z")
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM extraction_jobs
                WHERE status IN ('completed', 'failed', 'skipped') AND updated_at < ?
            """,
                (cutoff,),
            )
            return cursor.rowcount

    # Canonical code catalog

    def create_code(
        self,
        code: str,
        display_name: str,
        category: str,
        data_type: DataType | str = DataType.CURRENCY,
        is_active: bool = True,
    ) -> CanonicalCode:
        """
        Register a canonical code.

        Raises:
            DuplicateCodeError: If the code string is already registered
        """
        now = utc_now()
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO canonical_codes
                    (code, display_name, category, data_type, is_active, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (code, display_name, category, DataType(data_type).value, int(is_active), now),
                )
            except sqlite3.IntegrityError:
                raise DuplicateCodeError(code) from None
            self._bump_version(conn, CATALOG_VERSION_KEY)
            row = conn.execute(
                "SELECT * FROM canonical_codes WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return CanonicalCode.from_row(row)

    def get_code(self, code_id: int) -> CanonicalCode | None:
        """Get a canonical code by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM canonical_codes WHERE id = ?", (code_id,)).fetchone()
            return CanonicalCode.from_row(row) if row else None

    def get_code_by_code(self, code: str) -> CanonicalCode | None:
        """Get a canonical code by its code string."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM canonical_codes WHERE code = ?", (code,)).fetchone()
            return CanonicalCode.from_row(row) if row else None

    def list_codes(self, active_only: bool = True) -> list[CanonicalCode]:
        """List catalog codes ordered by category then code."""
        query = "SELECT * FROM canonical_codes"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY category, code"
        with self._transaction() as conn:
            return [CanonicalCode.from_row(row) for row in conn.execute(query).fetchall()]

    def set_code_active(self, code_id: int, is_active: bool) -> bool:
        """Activate or deactivate a code."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE canonical_codes SET is_active = ? WHERE id = ?", (int(is_active), code_id)
            )
            if cursor.rowcount:
                self._bump_version(conn, CATALOG_VERSION_KEY)
            return cursor.rowcount == 1

    # Alias methods

    def upsert_alias(
        self,
        alias: str,
        canonical_code_id: int,
        confidence: float,
        source: AliasSource | str,
    ) -> AliasUpsertResult:
        """
        Insert or update an alias mapping.

        Priority rule for an existing normalized alias: replace the mapping
        iff the source is user_confirmed/manual OR the confidence is strictly
        greater than the stored one. usage_count is incremented either way.

        Raises:
            CodeNotFoundError: If the canonical code does not exist
            ValueError: If the alias is blank
        """
        normalized = normalize_alias(alias)
        if not normalized:
            raise ValueError("Alias text is empty")
        source = AliasSource(source)
        now = utc_now()

        with self._transaction() as conn:
            code_row = conn.execute(
                "SELECT id, code FROM canonical_codes WHERE id = ?", (canonical_code_id,)
            ).fetchone()
            if code_row is None:
                raise CodeNotFoundError(f"Canonical code {canonical_code_id} not found")

            existing = conn.execute(
                "SELECT * FROM item_code_aliases WHERE alias_normalized = ?", (normalized,)
            ).fetchone()

            if existing is None:
                conn.execute(
                    """
                    INSERT INTO item_code_aliases
                    (alias, alias_normalized, canonical_code_id, canonical_code,
                     confidence, source, usage_count, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                    (
                        alias.strip(),
                        normalized,
                        canonical_code_id,
                        code_row["code"],
                        confidence,
                        source.value,
                        now,
                        now,
                    ),
                )
                action = "created"
                self._bump_version(conn, ALIAS_VERSION_KEY)
            elif source.is_authoritative or confidence > existing["confidence"]:
                conn.execute(
                    """
                    UPDATE item_code_aliases
                    SET alias = ?, canonical_code_id = ?, canonical_code = ?, confidence = ?,
                        source = ?, usage_count = usage_count + 1, updated_at = ?
                    WHERE id = ?
                """,
                    (
                        alias.strip(),
                        canonical_code_id,
                        code_row["code"],
                        confidence,
                        source.value,
                        now,
                        existing["id"],
                    ),
                )
                action = "updated"
                self._bump_version(conn, ALIAS_VERSION_KEY)
            else:
                conn.execute(
                    """
                    UPDATE item_code_aliases
                    SET usage_count = usage_count + 1, updated_at = ?
                    WHERE id = ?
                """,
                    (now, existing["id"]),
                )
                action = "kept"

            row = conn.execute(
                "SELECT * FROM item_code_aliases WHERE alias_normalized = ?", (normalized,)
            ).fetchone()
            return AliasUpsertResult(alias=ItemCodeAlias.from_row(row), action=action)

    def bulk_upsert_aliases(self, entries: list[dict[str, Any]]) -> dict[str, int]:
        """
        Upsert many aliases.

        Each entry needs alias, canonical_code_id, confidence and source.

        Returns:
            Counts of created, updated and skipped (kept) entries
        """
        counts = {"created": 0, "updated": 0, "skipped": 0}
        for entry in entries:
            result = self.upsert_alias(
                alias=entry["alias"],
                canonical_code_id=entry["canonical_code_id"],
                confidence=entry.get("confidence", 1.0),
                source=entry.get("source", AliasSource.MANUAL),
            )
            key = "skipped" if result.action == "kept" else result.action
            counts[key] += 1
        return counts

    def get_alias(self, alias: str) -> ItemCodeAlias | None:
        """Look up an alias by (un-normalized) text."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM item_code_aliases WHERE alias_normalized = ?",
                (normalize_alias(alias),),
            ).fetchone()
            return ItemCodeAlias.from_row(row) if row else None

    def list_aliases(
        self,
        canonical_code_id: int | None = None,
        source: AliasSource | str | None = None,
    ) -> list[ItemCodeAlias]:
        """List aliases, optionally filtered by code or source."""
        clauses = []
        params: list[Any] = []
        if canonical_code_id is not None:
            clauses.append("canonical_code_id = ?")
            params.append(canonical_code_id)
        if source is not None:
            clauses.append("source = ?")
            params.append(AliasSource(source).value)

        query = "SELECT * FROM item_code_aliases"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY alias_normalized"

        with self._transaction() as conn:
            return [ItemCodeAlias.from_row(row) for row in conn.execute(query, params).fetchall()]

    def increment_alias_usage(self, alias_ids: list[int]) -> None:
        """Record a Fast Pass hit on each alias (duplicates count twice)."""
        if not alias_ids:
            return
        now = utc_now()
        with self._transaction() as conn:
            conn.executemany(
                """
                UPDATE item_code_aliases
                SET usage_count = usage_count + 1, updated_at = ?
                WHERE id = ?
            """,
                [(now, alias_id) for alias_id in alias_ids],
            )

    def delete_alias(self, alias_id: int) -> bool:
        """Delete an alias mapping."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM item_code_aliases WHERE id = ?", (alias_id,))
            if cursor.rowcount:
                self._bump_version(conn, ALIAS_VERSION_KEY)
            return cursor.rowcount == 1

    def get_alias_samples(self, per_code: int = 5) -> dict[str, list[str]]:
        """Most-used aliases per canonical code, for prompt context."""
        samples: dict[str, list[str]] = {}
        if per_code <= 0:
            return samples
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT canonical_code, alias FROM item_code_aliases
                ORDER BY canonical_code, confidence DESC, usage_count DESC, alias
            """
            ).fetchall()
        for row in rows:
            bucket = samples.setdefault(row["canonical_code"], [])
            if len(bucket) < per_code:
                bucket.append(row["alias"])
        return samples

    # Codified extraction methods

    def save_codified_extraction(
        self,
        document_id: str,
        items: list[CodifiedItem],
        client_id: str | None = None,
        project_id: str | None = None,
        job_id: int | None = None,
    ) -> int:
        """
        Store the codified items for a document, replacing earlier items.

        Returns:
            Codified extraction ID
        """
        now = utc_now()
        with self._transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM codified_extractions WHERE document_id = ?", (document_id,)
            ).fetchone()

            if existing:
                extraction_id = existing["id"]
                conn.execute(
                    """
                    UPDATE codified_extractions
                    SET client_id = ?, project_id = ?, job_id = ?,
                        smart_pass_completed = 0, updated_at = ?
                    WHERE id = ?
                """,
                    (client_id, project_id, job_id, now, extraction_id),
                )
                conn.execute(
                    "DELETE FROM codified_items WHERE extraction_id = ?", (extraction_id,)
                )
            else:
                cursor = conn.execute(
                    """
                    INSERT INTO codified_extractions
                    (document_id, client_id, project_id, job_id, smart_pass_completed,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                    (document_id, client_id, project_id, job_id, now, now),
                )
                extraction_id = cursor.lastrowid

            conn.executemany(
                """
                INSERT INTO codified_items
                (extraction_id, position, item_id, original_name, value, category, data_type,
                 currency, item_code, suggested_code, suggested_code_id, confidence,
                 mapping_status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        extraction_id,
                        position,
                        item.item_id,
                        item.original_name,
                        item.value,
                        item.category,
                        item.data_type.value,
                        item.currency,
                        item.item_code,
                        item.suggested_code,
                        item.suggested_code_id,
                        item.confidence,
                        item.mapping_status.value,
                    )
                    for position, item in enumerate(items)
                ],
            )
            return extraction_id

    def get_codified_extraction(self, document_id: str) -> CodifiedExtraction | None:
        """Get a document's codified extraction with its items."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM codified_extractions WHERE document_id = ?", (document_id,)
            ).fetchone()
            if row is None:
                return None
            item_rows = conn.execute(
                "SELECT * FROM codified_items WHERE extraction_id = ? ORDER BY position",
                (row["id"],),
            ).fetchall()
            items = [_item_from_row(r, document_id) for r in item_rows]
            return CodifiedExtraction.from_row(row, items)

    def update_codified_items(
        self,
        document_id: str,
        items: list[CodifiedItem],
        smart_pass_completed: bool | None = None,
    ) -> None:
        """
        Persist mapping changes for existing items (matched by item_id).

        Raises:
            ExtractionNotFoundError: If the document has no codified extraction
        """
        now = utc_now()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id FROM codified_extractions WHERE document_id = ?", (document_id,)
            ).fetchone()
            if row is None:
                raise ExtractionNotFoundError(f"No codified extraction for document {document_id}")

            conn.executemany(
                """
                UPDATE codified_items
                SET item_code = ?, suggested_code = ?, suggested_code_id = ?, data_type = ?,
                    confidence = ?, mapping_status = ?
                WHERE extraction_id = ? AND item_id = ?
            """,
                [
                    (
                        item.item_code,
                        item.suggested_code,
                        item.suggested_code_id,
                        item.data_type.value,
                        item.confidence,
                        item.mapping_status.value,
                        row["id"],
                        item.item_id,
                    )
                    for item in items
                ],
            )
            if smart_pass_completed is None:
                conn.execute(
                    "UPDATE codified_extractions SET updated_at = ? WHERE id = ?", (now, row["id"])
                )
            else:
                conn.execute(
                    """
                    UPDATE codified_extractions
                    SET smart_pass_completed = ?, updated_at = ?
                    WHERE id = ?
                """,
                    (int(smart_pass_completed), now, row["id"]),
                )

    # Intelligence methods

    def get_intelligence_fields(
        self,
        entity_type: EntityType | str,
        entity_id: str,
    ) -> dict[str, IntelligenceField]:
        """Load an entity's fields keyed by field path."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM intelligence_fields
                WHERE entity_type = ? AND entity_id = ?
                ORDER BY field_path
            """,
                (EntityType(entity_type).value, entity_id),
            ).fetchall()
        return {
            row["field_path"]: IntelligenceField(
                field_path=row["field_path"],
                value=json.loads(row["value_json"]),
                confidence=row["confidence"],
                source_text=row["source_text"],
                source_document_id=row["source_document_id"],
                source_document_name=row["source_document_name"],
                updated_at=row["updated_at"],
            )
            for row in rows
        }

    def save_intelligence_fields(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        fields: list[IntelligenceField],
    ) -> int:
        """Insert or replace fields for an entity; bumps the entity's version."""
        if not fields:
            return 0
        entity_type = EntityType(entity_type)
        now = utc_now()
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO intelligence_fields
                (entity_type, entity_id, field_path, value_json, confidence, source_text,
                 source_document_id, source_document_name, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(entity_type, entity_id, field_path) DO UPDATE SET
                    value_json = excluded.value_json,
                    confidence = excluded.confidence,
                    source_text = excluded.source_text,
                    source_document_id = excluded.source_document_id,
                    source_document_name = excluded.source_document_name,
                    updated_at = excluded.updated_at
            """,
                [
                    (
                        entity_type.value,
                        entity_id,
                        f.field_path,
                        json.dumps(f.value),
                        f.confidence,
                        f.source_text,
                        f.source_document_id,
                        f.source_document_name,
                        f.updated_at or now,
                    )
                    for f in fields
                ],
            )
            self._bump_version(conn, f"intelligence:{entity_type.value}:{entity_id}")
        return len(fields)

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get overall pipeline statistics."""
        with self._transaction() as conn:
            codes = conn.execute(
                "SELECT COUNT(*) FROM canonical_codes WHERE is_active = 1"
            ).fetchone()[0]
            aliases = conn.execute("SELECT COUNT(*) FROM item_code_aliases").fetchone()[0]
            extractions = conn.execute("SELECT COUNT(*) FROM codified_extractions").fetchone()[0]
            item_rows = conn.execute(
                "SELECT mapping_status, COUNT(*) AS count FROM codified_items GROUP BY mapping_status"
            ).fetchall()
            entities = conn.execute(
                "SELECT COUNT(DISTINCT entity_type || ':' || entity_id) FROM intelligence_fields"
            ).fetchone()[0]

        items = {status.value: 0 for status in MappingStatus}
        for row in item_rows:
            items[row["mapping_status"]] = row["count"]

        return {
            "jobs": self.get_queue_stats(),
            "canonical_codes": codes,
            "aliases": aliases,
            "codified_extractions": extractions,
            "items": items,
            "intelligence_entities": entities,
        }
