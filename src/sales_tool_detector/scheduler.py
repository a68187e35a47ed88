from __future__ import annotations

import logging
import os
import socket
import sqlite3
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sales_tool_detector.analysis import Classify, run_analysis_batch
from sales_tool_detector.config import SCRAPER_REQUIRED_ENVS, Settings, missing_settings
from sales_tool_detector.ingestion import Provider, ingest_term
from sales_tool_detector.ledger import ERROR, SCRAPING_COMPLETE, SCRAPING_STARTED, Notifier, RunLedger, clock_for
from sales_tool_detector.models import SearchTerm, TriggerResult
from sales_tool_detector.scrapers.apify_linkedin import search_linkedin_jobs
from sales_tool_detector.storage import PipelineStore, iso_utc, parse_utc, utc_now

logger = logging.getLogger(__name__)

SCRAPING_LEASE = "scraping"


def lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def is_due(term: SearchTerm, now: datetime, staleness_window: timedelta) -> bool:
    if not term.is_active:
        return False
    last_scraped = parse_utc(term.last_scraped_at)
    if last_scraped is None:
        return True
    return now - last_scraped > staleness_window


def due_terms(store: PipelineStore, now: datetime, staleness_window: timedelta) -> list[SearchTerm]:
    return [
        term
        for term in store.list_search_terms(active_only=True)
        if is_due(term, now, staleness_window)
    ]


def next_due_term(store: PipelineStore, now: datetime, staleness_window: timedelta) -> SearchTerm | None:
    terms = due_terms(store, now, staleness_window)
    return terms[0] if terms else None


def elapsed_clock(start: datetime) -> Callable[[], datetime]:
    """Clock that starts at start and advances with wall time."""
    origin = time.monotonic()
    return lambda: start + timedelta(seconds=time.monotonic() - origin)


def _lease_renewer(
    settings: Settings,
    store: PipelineStore,
    owner: str,
    clock: Callable[[], datetime],
) -> Callable[[], None]:
    def renew() -> None:
        try:
            held = store.acquire_lease(SCRAPING_LEASE, owner, now=clock(), ttl_seconds=settings.scrape_lease_seconds)
        except sqlite3.Error:
            logger.exception("could not renew scraping lease")
            return
        if not held:
            logger.warning("scraping lease of %s was taken over by another worker", owner)

    return renew


def _run_term(
    settings: Settings,
    store: PipelineStore,
    term: str,
    *,
    provider: Provider,
    classify: Classify | None,
    now: datetime,
    renew_lease: Callable[[], None],
) -> TriggerResult:
    clock = clock_for(now)
    ledger = RunLedger(store, clock)
    notifier = Notifier(store, clock)

    run_id = ledger.record_run_start(term)
    ledger.mark_running(run_id)
    notifier.notify(
        SCRAPING_STARTED,
        f"Scraping started: {term}",
        f"Searching job postings for {term!r}",
        {"search_term": term, "run_id": run_id},
    )

    try:
        ingest = ingest_term(settings, store, term, provider, now=now, notifier=notifier)
    except sqlite3.Error as exc:
        logger.exception("datastore error while ingesting %r", term)
        error = f"datastore error: {exc}"
        ledger.record_run_fail(run_id, error)
        notifier.notify(ERROR, f"Scraping failed: {term}", error, {"search_term": term, "run_id": run_id})
        return TriggerResult(status="failed", search_term=term, run_id=run_id, error=error)

    if ingest.error:
        ledger.record_run_fail(run_id, ingest.error)
        return TriggerResult(status="failed", search_term=term, run_id=run_id, error=ingest.error)

    renew_lease()
    jobs_analyzed = 0
    companies_found = 0
    new_companies = 0
    if classify is not None:
        try:
            batch = run_analysis_batch(
                settings,
                store,
                classify,
                search_term=term,
                now=now,
                notifier=notifier,
                limit=settings.max_postings_per_term,
                heartbeat=renew_lease,
            )
        except sqlite3.Error:
            # Postings stay queued for the periodic analyzer.
            logger.exception("same-run analysis of %r could not read the queue", term)
        else:
            jobs_analyzed = batch.processed
            companies_found = batch.companies_found
            new_companies = batch.inserted

    ledger.record_run_complete(
        run_id,
        jobs_scraped=ingest.scraped,
        jobs_analyzed=jobs_analyzed,
        new_companies_found=new_companies,
    )
    notifier.notify(
        SCRAPING_COMPLETE,
        f"Scraping complete: {term}",
        f"{ingest.scraped} postings, {ingest.new_added} new, {companies_found} companies",
        {
            "search_term": term,
            "run_id": run_id,
            "jobs_scraped": ingest.scraped,
            "new_jobs_added": ingest.new_added,
            "duplicates": ingest.duplicates,
            "companies_found": companies_found,
        },
    )
    return TriggerResult(
        status="ok",
        search_term=term,
        jobs_scraped=ingest.scraped,
        new_jobs_added=ingest.new_added,
        companies_found=companies_found,
        run_id=run_id,
    )


def dispatch_term(
    settings: Settings,
    store: PipelineStore,
    term: str,
    *,
    provider: Provider,
    classify: Classify | None = None,
    now: datetime,
    owner: str | None = None,
    require_due: bool = False,
    clock: Callable[[], datetime] | None = None,
) -> TriggerResult:
    """Run one term under the scraping lease.

    Returns a ``busy`` result instead of waiting when another owner holds an
    unexpired lease. With ``require_due`` the term is re-checked after the
    lease is taken, since a concurrent run may have just scraped it.
    The lease is renewed after ingestion and before each analyzed posting,
    using ``clock`` (wall time elapsed since ``now`` by default).
    """
    owner = owner or lease_owner()
    if not store.acquire_lease(SCRAPING_LEASE, owner, now=now, ttl_seconds=settings.scrape_lease_seconds):
        logger.info("scrape already in progress; %r not dispatched", term)
        return TriggerResult(status="busy", search_term=term)

    try:
        if require_due:
            current = store.get_search_term(term)
            if current is None or not is_due(current, now, settings.staleness_window):
                return TriggerResult(status="idle", search_term=term)
        return _run_term(
            settings,
            store,
            term,
            provider=provider,
            classify=classify,
            now=now,
            renew_lease=_lease_renewer(settings, store, owner, clock or elapsed_clock(now)),
        )
    finally:
        try:
            store.release_lease(SCRAPING_LEASE, owner)
        except sqlite3.Error:
            logger.exception("could not release scraping lease; it expires on its own")


def _scraper_unavailable(settings: Settings, provider: Provider | None, term: str | None) -> TriggerResult | None:
    if provider is not None:
        return None
    missing = missing_settings(SCRAPER_REQUIRED_ENVS, settings)
    if not missing:
        return None
    return TriggerResult(
        status="unavailable",
        search_term=term,
        error=f"missing configuration: {', '.join(missing)}",
    )


def trigger_ingestion(
    settings: Settings,
    search_term: str,
    *,
    provider: Provider | None = None,
    classify: Classify | None = None,
    now: datetime | None = None,
) -> TriggerResult:
    term = search_term.strip()
    if not term:
        raise ValueError("search term must not be empty")

    unavailable = _scraper_unavailable(settings, provider, term)
    if unavailable is not None:
        return unavailable

    run_at = now or utc_now()
    try:
        with PipelineStore(settings.db_path) as store:
            store.add_search_term(term, created_at=iso_utc(run_at))
            return dispatch_term(
                settings,
                store,
                term,
                provider=provider or search_linkedin_jobs,
                classify=classify,
                now=run_at,
            )
    except (sqlite3.Error, OSError) as exc:
        logger.exception("datastore unavailable for trigger %r", term)
        return TriggerResult(status="unavailable", search_term=term, error=f"datastore unavailable: {exc}")


def run_next_due_term(
    settings: Settings,
    *,
    provider: Provider | None = None,
    classify: Classify | None = None,
    now: datetime | None = None,
) -> TriggerResult:
    unavailable = _scraper_unavailable(settings, provider, None)
    if unavailable is not None:
        return unavailable

    run_at = now or utc_now()
    try:
        with PipelineStore(settings.db_path) as store:
            term = next_due_term(store, run_at, settings.staleness_window)
            if term is None:
                logger.info("no search term is due")
                return TriggerResult(status="idle")
            return dispatch_term(
                settings,
                store,
                term.term,
                provider=provider or search_linkedin_jobs,
                classify=classify,
                now=run_at,
                require_due=True,
            )
    except (sqlite3.Error, OSError) as exc:
        logger.exception("datastore unavailable for scheduled scrape")
        return TriggerResult(status="unavailable", error=f"datastore unavailable: {exc}")
