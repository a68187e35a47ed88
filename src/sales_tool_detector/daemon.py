from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from sales_tool_detector.analysis import run_analysis_batch
from sales_tool_detector.classifier import classify_posting
from sales_tool_detector.config import ANALYZER_REQUIRED_ENVS, Settings, missing_settings
from sales_tool_detector.models import BatchResult, TriggerResult
from sales_tool_detector.notifier_slack import forward_notifications
from sales_tool_detector.scheduler import run_next_due_term
from sales_tool_detector.storage import PipelineStore

logger = logging.getLogger(__name__)

SCRAPER_JOB_ID = "scraper"
ANALYZER_JOB_ID = "analyzer"
NOTIFIER_JOB_ID = "slack-forwarder"


def scraper_tick(settings: Settings) -> TriggerResult:
    result = run_next_due_term(settings)
    if result.status not in ("ok", "idle"):
        logger.warning("scraper tick: status=%s error=%s", result.status, result.error)
    return result


def analyzer_tick(settings: Settings) -> BatchResult | None:
    missing = missing_settings(ANALYZER_REQUIRED_ENVS, settings)
    if missing:
        logger.warning("analyzer unavailable; missing %s", ", ".join(missing))
        return None
    try:
        with PipelineStore(settings.db_path) as store:
            return run_analysis_batch(settings, store, classify_posting)
    except (sqlite3.Error, OSError):
        logger.exception("analyzer tick could not reach the datastore")
        return None


def notifier_tick(settings: Settings) -> int:
    try:
        with PipelineStore(settings.db_path) as store:
            return forward_notifications(settings, store)
    except (sqlite3.Error, OSError):
        logger.exception("notification forwarding could not reach the datastore")
        return 0


class SchedulerController:
    """Owns the background scheduler so the CLI can stop it on a signal."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            logger.info("shutting down scheduler")
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()

    def join(self, timeout: float | None = None) -> bool:
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


def build_scheduler(settings: Settings) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(4)},
    )
    scheduler.add_job(
        scraper_tick,
        IntervalTrigger(minutes=settings.scheduler_interval_minutes),
        args=(settings,),
        id=SCRAPER_JOB_ID,
        next_run_time=datetime.now(timezone.utc),
        name="scrape next due search term",
    )
    scheduler.add_job(
        analyzer_tick,
        IntervalTrigger(minutes=settings.analyzer_interval_minutes),
        args=(settings,),
        id=ANALYZER_JOB_ID,
        next_run_time=datetime.now(timezone.utc),
        name="analyze unprocessed postings",
    )
    if settings.slack_webhook_url:
        scheduler.add_job(
            notifier_tick,
            IntervalTrigger(minutes=settings.analyzer_interval_minutes),
            args=(settings,),
            id=NOTIFIER_JOB_ID,
            name="forward notifications to slack",
        )
    return scheduler


def start(settings: Settings) -> SchedulerController:
    scheduler = build_scheduler(settings)
    scheduler.start()
    logger.info("scheduler started with %d job(s)", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)
