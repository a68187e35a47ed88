from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sales_tool_detector.storage import PipelineStore, iso_utc, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SCRAPING_STARTED = "scraping_started"
SCRAPING_COMPLETE = "scraping_complete"
COMPANY_DISCOVERED = "company_discovered"
ERROR = "error"
NEEDS_REVIEW = "needs_review"


def clock_for(now: datetime | None) -> Clock:
    if now is None:
        return utc_now
    return lambda: now


class RunLedger:
    """Per-term run records. Write failures are logged, never raised."""

    def __init__(self, store: PipelineStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def record_run_start(self, search_term: str) -> int | None:
        try:
            return self.store.create_run(search_term, iso_utc(self.clock()))
        except sqlite3.Error:
            logger.exception("could not record run start for %r", search_term)
            return None

    def mark_running(self, run_id: int | None) -> None:
        if run_id is None:
            return
        try:
            self.store.update_run_status(run_id, "running")
        except sqlite3.Error:
            logger.exception("could not mark run %s running", run_id)

    def record_run_complete(
        self,
        run_id: int | None,
        *,
        jobs_scraped: int,
        jobs_analyzed: int = 0,
        new_companies_found: int = 0,
    ) -> None:
        if run_id is None:
            return
        try:
            applied = self.store.finish_run(
                run_id,
                status="completed",
                completed_at=iso_utc(self.clock()),
                jobs_scraped=jobs_scraped,
                jobs_analyzed=jobs_analyzed,
                new_companies_found=new_companies_found,
            )
        except sqlite3.Error:
            logger.exception("could not complete run %s", run_id)
            return
        if not applied:
            logger.warning("run %s already terminal; completion ignored", run_id)

    def record_run_fail(self, run_id: int | None, error: str, *, jobs_scraped: int = 0) -> None:
        if run_id is None:
            return
        try:
            applied = self.store.finish_run(
                run_id,
                status="failed",
                completed_at=iso_utc(self.clock()),
                jobs_scraped=jobs_scraped,
                error_message=error,
            )
        except sqlite3.Error:
            logger.exception("could not fail run %s", run_id)
            return
        if not applied:
            logger.warning("run %s already terminal; failure ignored", run_id)


class Notifier:
    def __init__(self, store: PipelineStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def notify(
        self,
        notification_type: str,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> int | None:
        try:
            return self.store.add_notification(
                notification_type,
                title,
                message,
                created_at=iso_utc(self.clock()),
                metadata=metadata,
            )
        except sqlite3.Error:
            logger.exception("could not write %s notification: %s", notification_type, title)
            return None
