from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sales_tool_detector.models import (
    NEEDS_REVIEW,
    TERMINAL_RUN_STATUSES,
    CandidateFact,
    IdentifiedCompany,
    NotificationEvent,
    RawPosting,
    ScrapingRun,
    SearchTerm,
    Tier,
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS raw_jobs (
        job_id TEXT PRIMARY KEY,
        platform TEXT NOT NULL DEFAULT 'LinkedIn',
        company TEXT NOT NULL,
        job_title TEXT NOT NULL,
        location TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        job_url TEXT NOT NULL DEFAULT '',
        search_term TEXT NOT NULL,
        scraped_date TEXT NOT NULL,
        processed INTEGER NOT NULL DEFAULT 0,
        analyzed_date TEXT,
        analysis_attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        review_status TEXT,
        CHECK (analyzed_date IS NULL OR processed = 1)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_raw_jobs_queue ON raw_jobs (processed, scraped_date)",
    """
    CREATE TABLE IF NOT EXISTS search_terms (
        search_term TEXT NOT NULL UNIQUE,
        is_active INTEGER NOT NULL DEFAULT 1,
        priority INTEGER NOT NULL DEFAULT 5,
        last_scraped_date TEXT,
        jobs_found_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS identified_companies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        company_name TEXT NOT NULL,
        normalized_name TEXT NOT NULL,
        tool_detected TEXT NOT NULL CHECK (tool_detected IN ('Outreach.io', 'SalesLoft', 'Both')),
        signal_type TEXT NOT NULL DEFAULT '',
        context TEXT NOT NULL DEFAULT '',
        confidence TEXT NOT NULL DEFAULT 'medium',
        job_title TEXT NOT NULL DEFAULT '',
        job_url TEXT NOT NULL DEFAULT '',
        platform TEXT NOT NULL DEFAULT 'LinkedIn',
        tier TEXT NOT NULL DEFAULT 'Tier 2' CHECK (tier IN ('Tier 1', 'Tier 2')),
        identified_date TEXT NOT NULL,
        leads_generated INTEGER NOT NULL DEFAULT 0,
        leads_generated_date TEXT,
        leads_generated_by TEXT,
        lead_gen_notes TEXT,
        UNIQUE (normalized_name, tool_detected)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tier_one_companies (
        company_name TEXT NOT NULL UNIQUE,
        industry TEXT,
        company_size TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scraping_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        search_term TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'running', 'completed', 'failed')),
        started_at TEXT NOT NULL,
        completed_at TEXT,
        jobs_scraped INTEGER NOT NULL DEFAULT 0,
        jobs_analyzed INTEGER NOT NULL DEFAULT 0,
        new_companies_found INTEGER NOT NULL DEFAULT 0,
        error_message TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        notification_type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL DEFAULT '',
        metadata TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        is_read INTEGER NOT NULL DEFAULT 0,
        is_sent INTEGER NOT NULL DEFAULT 0,
        sent_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pipeline_locks (
        name TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def parse_utc(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class PipelineStore(AbstractContextManager["PipelineStore"]):
    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, timeout=30.0)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA synchronous=NORMAL")
        self._init_schema()

    def _init_schema(self) -> None:
        with self.conn:
            for statement in _SCHEMA:
                self.conn.execute(statement)

    def ping(self) -> bool:
        row = self.conn.execute("SELECT 1 AS ok").fetchone()
        return row is not None and int(row["ok"]) == 1

    def _count(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        row = self.conn.execute(sql, params).fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    # raw_jobs

    def insert_posting_if_absent(self, posting: RawPosting) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO raw_jobs (
                    job_id, platform, company, job_title, location,
                    description, job_url, search_term, scraped_date
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    posting.job_id,
                    posting.platform,
                    posting.company,
                    posting.title,
                    posting.location,
                    posting.description,
                    posting.url,
                    posting.search_term,
                    posting.scraped_at,
                ),
            )
        return cursor.rowcount == 1

    def get_posting(self, job_id: str) -> RawPosting | None:
        row = self.conn.execute("SELECT * FROM raw_jobs WHERE job_id = ?", (job_id,)).fetchone()
        return _posting_from_row(row) if row else None

    def fetch_unprocessed(self, limit: int, search_term: str | None = None) -> list[RawPosting]:
        sql = "SELECT * FROM raw_jobs WHERE processed = 0 AND review_status IS NULL"
        params: list[Any] = []
        if search_term is not None:
            sql += " AND search_term = ?"
            params.append(search_term)
        sql += " ORDER BY scraped_date ASC, rowid ASC LIMIT ?"
        params.append(limit)
        return [_posting_from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def mark_processed(self, job_id: str, analyzed_at: str) -> bool:
        # analyzed_date never precedes scraped_date, even with a skewed clock.
        with self.conn:
            cursor = self.conn.execute(
                """
                UPDATE raw_jobs
                SET processed = 1, analyzed_date = MAX(?, scraped_date), last_error = NULL
                WHERE job_id = ? AND processed = 0
                """,
                (analyzed_at, job_id),
            )
        return cursor.rowcount == 1

    def record_analysis_failure(self, job_id: str, error: str, max_attempts: int = 0) -> tuple[int, bool]:
        """Count a failed analysis attempt; returns (attempts, sent_to_review)."""
        with self.conn:
            self.conn.execute(
                """
                UPDATE raw_jobs
                SET analysis_attempts = analysis_attempts + 1, last_error = ?
                WHERE job_id = ? AND processed = 0
                """,
                (error[:1000], job_id),
            )
            sent_to_review = False
            if max_attempts > 0:
                cursor = self.conn.execute(
                    """
                    UPDATE raw_jobs SET review_status = ?
                    WHERE job_id = ? AND processed = 0 AND review_status IS NULL
                      AND analysis_attempts >= ?
                    """,
                    (NEEDS_REVIEW, job_id, max_attempts),
                )
                sent_to_review = cursor.rowcount == 1
        row = self.conn.execute(
            "SELECT analysis_attempts FROM raw_jobs WHERE job_id = ?", (job_id,)
        ).fetchone()
        return (int(row["analysis_attempts"]) if row else 0), sent_to_review

    def count_postings(self) -> int:
        return self._count("SELECT COUNT(*) FROM raw_jobs")

    def count_unprocessed(self) -> int:
        return self._count("SELECT COUNT(*) FROM raw_jobs WHERE processed = 0 AND review_status IS NULL")

    def count_needs_review(self) -> int:
        return self._count("SELECT COUNT(*) FROM raw_jobs WHERE review_status = ?", (NEEDS_REVIEW,))

    def count_scraped_between(self, start: str, end: str) -> int:
        return self._count(
            "SELECT COUNT(*) FROM raw_jobs WHERE scraped_date >= ? AND scraped_date < ?",
            (start, end),
        )

    def count_analyzed_between(self, start: str, end: str) -> int:
        return self._count(
            """
            SELECT COUNT(*) FROM raw_jobs
            WHERE processed = 1 AND analyzed_date >= ? AND analyzed_date < ?
            """,
            (start, end),
        )

    def analysis_latencies_since(self, start: str, limit: int = 1000) -> list[tuple[str, str]]:
        rows = self.conn.execute(
            """
            SELECT scraped_date, analyzed_date FROM raw_jobs
            WHERE processed = 1 AND analyzed_date >= ?
            ORDER BY analyzed_date DESC
            LIMIT ?
            """,
            (start, limit),
        ).fetchall()
        return [(str(row["scraped_date"]), str(row["analyzed_date"])) for row in rows]

    # search_terms

    def add_search_term(
        self,
        term: str,
        *,
        created_at: str,
        priority: int = 5,
        is_active: bool = True,
    ) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO search_terms (search_term, is_active, priority, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (term, int(is_active), priority, created_at),
            )
        return cursor.rowcount == 1

    def register_terms_from_postings(self, created_at: str) -> int:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO search_terms (search_term, created_at)
                SELECT DISTINCT search_term, ? FROM raw_jobs WHERE search_term != ''
                """,
                (created_at,),
            )
        return max(cursor.rowcount, 0)

    def get_search_term(self, term: str) -> SearchTerm | None:
        row = self.conn.execute("SELECT * FROM search_terms WHERE search_term = ?", (term,)).fetchone()
        return _term_from_row(row) if row else None

    def list_search_terms(self, *, active_only: bool = False) -> list[SearchTerm]:
        """Terms oldest-scraped first (never scraped before all), then insertion order."""
        sql = "SELECT * FROM search_terms"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY last_scraped_date IS NOT NULL, last_scraped_date ASC, rowid ASC"
        return [_term_from_row(row) for row in self.conn.execute(sql).fetchall()]

    def set_term_active(self, term: str, is_active: bool) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                "UPDATE search_terms SET is_active = ? WHERE search_term = ?",
                (int(is_active), term),
            )
        return cursor.rowcount == 1

    def mark_term_scraped(self, term: str, scraped_at: str, jobs_found: int) -> None:
        with self.conn:
            self.conn.execute(
                """
                UPDATE search_terms
                SET last_scraped_date = ?, jobs_found_count = ?, last_error = NULL
                WHERE search_term = ?
                """,
                (scraped_at, jobs_found, term),
            )

    def record_term_error(self, term: str, error: str) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE search_terms SET last_error = ? WHERE search_term = ?",
                (error[:1000], term),
            )

    # identified_companies

    def find_company(self, normalized_name: str, tool: str) -> IdentifiedCompany | None:
        row = self.conn.execute(
            "SELECT * FROM identified_companies WHERE normalized_name = ? AND tool_detected = ?",
            (normalized_name, tool),
        ).fetchone()
        return _company_from_row(row) if row else None

    def get_company(self, company_id: int) -> IdentifiedCompany | None:
        row = self.conn.execute("SELECT * FROM identified_companies WHERE id = ?", (company_id,)).fetchone()
        return _company_from_row(row) if row else None

    def insert_company(
        self,
        candidate: CandidateFact,
        *,
        normalized_name: str,
        tier: Tier,
        identified_at: str,
    ) -> int:
        """Insert a new fact; raises sqlite3.IntegrityError when the key already exists."""
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO identified_companies (
                    company_name, normalized_name, tool_detected, signal_type, context,
                    confidence, job_title, job_url, platform, tier, identified_date
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    candidate.company.strip(),
                    normalized_name,
                    candidate.tool,
                    candidate.signal_type,
                    candidate.context,
                    candidate.confidence,
                    candidate.job_title,
                    candidate.job_url,
                    candidate.platform,
                    tier,
                    identified_at,
                ),
            )
        return int(cursor.lastrowid)

    def update_company_evidence(
        self,
        company_id: int,
        candidate: CandidateFact,
        *,
        tier: Tier,
        identified_at: str,
    ) -> None:
        with self.conn:
            self.conn.execute(
                """
                UPDATE identified_companies
                SET signal_type = ?, context = ?, confidence = ?, job_title = ?,
                    job_url = ?, platform = ?, tier = ?, identified_date = ?
                WHERE id = ?
                """,
                (
                    candidate.signal_type,
                    candidate.context,
                    candidate.confidence,
                    candidate.job_title,
                    candidate.job_url,
                    candidate.platform,
                    tier,
                    identified_at,
                    company_id,
                ),
            )

    def company_identified_since(self, normalized_name: str, since: str) -> bool:
        row = self.conn.execute(
            """
            SELECT 1 FROM identified_companies
            WHERE normalized_name = ? AND identified_date >= ?
            LIMIT 1
            """,
            (normalized_name, since),
        ).fetchone()
        return row is not None

    def list_companies(self, *, tier: Tier | None = None) -> list[IdentifiedCompany]:
        if tier is None:
            rows = self.conn.execute("SELECT * FROM identified_companies ORDER BY id").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM identified_companies WHERE tier = ? ORDER BY id", (tier,)
            ).fetchall()
        return [_company_from_row(row) for row in rows]

    def count_companies(self) -> int:
        return self._count("SELECT COUNT(*) FROM identified_companies")

    def count_identified_between(self, start: str, end: str) -> int:
        return self._count(
            "SELECT COUNT(*) FROM identified_companies WHERE identified_date >= ? AND identified_date < ?",
            (start, end),
        )

    def tool_distribution(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT tool_detected, COUNT(*) AS c FROM identified_companies GROUP BY tool_detected"
        ).fetchall()
        return {str(row["tool_detected"]): int(row["c"]) for row in rows}

    def tier_distribution(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT tier, COUNT(*) AS c FROM identified_companies GROUP BY tier"
        ).fetchall()
        return {str(row["tier"]): int(row["c"]) for row in rows}

    def update_lead_status(
        self,
        company_id: int,
        leads_generated: bool,
        *,
        updated_at: str,
        notes: str | None = None,
        generated_by: str | None = None,
    ) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                """
                UPDATE identified_companies
                SET leads_generated = ?,
                    leads_generated_date = ?,
                    leads_generated_by = ?,
                    lead_gen_notes = COALESCE(?, lead_gen_notes)
                WHERE id = ?
                """,
                (
                    int(leads_generated),
                    updated_at if leads_generated else None,
                    generated_by if leads_generated else None,
                    notes,
                    company_id,
                ),
            )
        return cursor.rowcount == 1

    # tier_one_companies

    def add_tier_one_company(
        self,
        company_name: str,
        *,
        industry: str | None = None,
        company_size: str | None = None,
    ) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO tier_one_companies (company_name, industry, company_size)
                VALUES (?, ?, ?)
                """,
                (company_name.strip(), industry, company_size),
            )
        return cursor.rowcount == 1

    def list_tier_one_names(self) -> list[str]:
        rows = self.conn.execute("SELECT company_name FROM tier_one_companies ORDER BY rowid").fetchall()
        return [str(row["company_name"]) for row in rows]

    # scraping_runs

    def create_run(self, search_term: str, started_at: str) -> int:
        with self.conn:
            cursor = self.conn.execute(
                "INSERT INTO scraping_runs (search_term, status, started_at) VALUES (?, 'pending', ?)",
                (search_term, started_at),
            )
        return int(cursor.lastrowid)

    def update_run_status(self, run_id: int, status: str) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                """
                UPDATE scraping_runs SET status = ?
                WHERE id = ? AND status NOT IN (?, ?)
                """,
                (status, run_id, *TERMINAL_RUN_STATUSES),
            )
        return cursor.rowcount == 1

    def finish_run(
        self,
        run_id: int,
        *,
        status: str,
        completed_at: str,
        jobs_scraped: int = 0,
        jobs_analyzed: int = 0,
        new_companies_found: int = 0,
        error_message: str | None = None,
    ) -> bool:
        if status not in TERMINAL_RUN_STATUSES:
            raise ValueError(f"not a terminal run status: {status}")
        with self.conn:
            cursor = self.conn.execute(
                """
                UPDATE scraping_runs
                SET status = ?, completed_at = ?, jobs_scraped = ?, jobs_analyzed = ?,
                    new_companies_found = ?, error_message = ?
                WHERE id = ? AND status NOT IN (?, ?)
                """,
                (
                    status,
                    completed_at,
                    jobs_scraped,
                    jobs_analyzed,
                    new_companies_found,
                    error_message,
                    run_id,
                    *TERMINAL_RUN_STATUSES,
                ),
            )
        return cursor.rowcount == 1

    def get_run(self, run_id: int) -> ScrapingRun | None:
        row = self.conn.execute("SELECT * FROM scraping_runs WHERE id = ?", (run_id,)).fetchone()
        return _run_from_row(row) if row else None

    def list_runs(self, limit: int = 10) -> list[ScrapingRun]:
        rows = self.conn.execute(
            "SELECT * FROM scraping_runs ORDER BY started_at DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [_run_from_row(row) for row in rows]

    def run_status_counts_since(self, start: str) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS c FROM scraping_runs WHERE started_at >= ? GROUP BY status",
            (start,),
        ).fetchall()
        return {str(row["status"]): int(row["c"]) for row in rows}

    # notifications

    def add_notification(
        self,
        notification_type: str,
        title: str,
        message: str,
        *,
        created_at: str,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO notifications (notification_type, title, message, metadata, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    notification_type,
                    title,
                    message,
                    json.dumps(metadata or {}, ensure_ascii=False, sort_keys=True),
                    created_at,
                ),
            )
        return int(cursor.lastrowid)

    def list_notifications(
        self,
        *,
        unread_only: bool = False,
        notification_type: str | None = None,
        limit: int = 50,
    ) -> list[NotificationEvent]:
        clauses: list[str] = []
        params: list[Any] = []
        if unread_only:
            clauses.append("is_read = 0")
        if notification_type is not None:
            clauses.append("notification_type = ?")
            params.append(notification_type)
        sql = "SELECT * FROM notifications"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        return [_notification_from_row(row) for row in self.conn.execute(sql, params).fetchall()]

    def mark_notification_read(self, notification_id: int) -> bool:
        with self.conn:
            cursor = self.conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND is_read = 0",
                (notification_id,),
            )
        return cursor.rowcount == 1

    def list_unsent_notifications(self, types: Iterable[str], limit: int = 50) -> list[NotificationEvent]:
        wanted = sorted(set(types))
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        rows = self.conn.execute(
            f"""
            SELECT * FROM notifications
            WHERE is_sent = 0 AND notification_type IN ({placeholders})
            ORDER BY id ASC
            LIMIT ?
            """,
            (*wanted, limit),
        ).fetchall()
        return [_notification_from_row(row) for row in rows]

    def mark_notifications_sent(self, notification_ids: list[int], sent_at: str) -> None:
        with self.conn:
            self.conn.executemany(
                "UPDATE notifications SET is_sent = 1, sent_at = ? WHERE id = ?",
                [(sent_at, notification_id) for notification_id in notification_ids],
            )

    # pipeline_locks

    def acquire_lease(self, name: str, owner: str, *, now: datetime, ttl_seconds: int) -> bool:
        """Take or renew the named lease; False while another owner holds it unexpired."""
        now_iso = iso_utc(now)
        expires_at = iso_utc(now + timedelta(seconds=ttl_seconds))
        with self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO pipeline_locks (name, owner, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    owner = excluded.owner,
                    expires_at = excluded.expires_at
                WHERE pipeline_locks.expires_at <= ? OR pipeline_locks.owner = excluded.owner
                """,
                (name, owner, expires_at, now_iso),
            )
        return cursor.rowcount == 1

    def release_lease(self, name: str, owner: str) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM pipeline_locks WHERE name = ? AND owner = ?", (name, owner))

    def get_lease(self, name: str) -> dict[str, str] | None:
        row = self.conn.execute(
            "SELECT owner, expires_at FROM pipeline_locks WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        return {"owner": str(row["owner"]), "expires_at": str(row["expires_at"])}

    def close(self) -> None:
        self.conn.close()

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


def _posting_from_row(row: sqlite3.Row) -> RawPosting:
    return RawPosting(
        job_id=str(row["job_id"]),
        platform=str(row["platform"]),
        company=str(row["company"]),
        title=str(row["job_title"]),
        description=str(row["description"]),
        url=str(row["job_url"]),
        search_term=str(row["search_term"]),
        scraped_at=str(row["scraped_date"]),
        location=str(row["location"]),
        processed=bool(row["processed"]),
        analyzed_at=row["analyzed_date"],
        analysis_attempts=int(row["analysis_attempts"]),
    )


def _term_from_row(row: sqlite3.Row) -> SearchTerm:
    return SearchTerm(
        term=str(row["search_term"]),
        is_active=bool(row["is_active"]),
        priority=int(row["priority"]),
        last_scraped_at=row["last_scraped_date"],
        jobs_found_count=int(row["jobs_found_count"]),
        last_error=row["last_error"],
    )


def _company_from_row(row: sqlite3.Row) -> IdentifiedCompany:
    return IdentifiedCompany(
        id=int(row["id"]),
        company_name=str(row["company_name"]),
        normalized_name=str(row["normalized_name"]),
        tool_detected=row["tool_detected"],
        signal_type=str(row["signal_type"]),
        context=str(row["context"]),
        confidence=str(row["confidence"]),
        job_title=str(row["job_title"]),
        job_url=str(row["job_url"]),
        platform=str(row["platform"]),
        tier=row["tier"],
        identified_at=str(row["identified_date"]),
        leads_generated=bool(row["leads_generated"]),
        leads_generated_date=row["leads_generated_date"],
        leads_generated_by=row["leads_generated_by"],
        lead_gen_notes=row["lead_gen_notes"],
    )


def _run_from_row(row: sqlite3.Row) -> ScrapingRun:
    return ScrapingRun(
        id=int(row["id"]),
        search_term=str(row["search_term"]),
        status=row["status"],
        started_at=str(row["started_at"]),
        completed_at=row["completed_at"],
        jobs_scraped=int(row["jobs_scraped"]),
        jobs_analyzed=int(row["jobs_analyzed"]),
        new_companies_found=int(row["new_companies_found"]),
        error_message=row["error_message"],
    )


def _notification_from_row(row: sqlite3.Row) -> NotificationEvent:
    try:
        metadata = json.loads(row["metadata"] or "{}")
    except ValueError:
        metadata = {}
    return NotificationEvent(
        id=int(row["id"]),
        notification_type=str(row["notification_type"]),
        title=str(row["title"]),
        message=str(row["message"]),
        metadata=metadata if isinstance(metadata, dict) else {},
        created_at=str(row["created_at"]),
        is_read=bool(row["is_read"]),
        is_sent=bool(row["is_sent"]),
    )
