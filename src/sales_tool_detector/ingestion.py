from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sales_tool_detector.config import Settings
from sales_tool_detector.ledger import ERROR, Notifier
from sales_tool_detector.models import IngestResult, SearchResult
from sales_tool_detector.storage import PipelineStore, iso_utc

logger = logging.getLogger(__name__)

Provider = Callable[[Settings, str], SearchResult]


def _safe_search(provider: Provider, settings: Settings, term: str) -> SearchResult:
    try:
        return provider(settings, term)
    except Exception as exc:  # pragma: no cover - provider boundary
        logger.exception("provider raised for %r", term)
        return SearchResult(search_term=term, postings=[], error=f"unexpected error: {exc}")


def ingest_term(
    settings: Settings,
    store: PipelineStore,
    term: str,
    provider: Provider,
    *,
    now: datetime,
    notifier: Notifier | None = None,
) -> IngestResult:
    """Fetch postings for one term and store the ones not seen before.

    A provider failure leaves last_scraped_date untouched so the term stays
    due and is retried on a later tick.
    """
    result = _safe_search(provider, settings, term)
    if result.error:
        logger.warning("search failed for %r: %s", term, result.error)
        store.record_term_error(term, result.error)
        if notifier is not None:
            notifier.notify(
                ERROR,
                f"Scraping failed: {term}",
                result.error,
                {"search_term": term, "stage": "ingestion"},
            )
        return IngestResult(search_term=term, scraped=0, new_added=0, duplicates=0, error=result.error)

    new_added = 0
    for posting in result.postings:
        if store.insert_posting_if_absent(posting):
            new_added += 1

    # Job ids repeated inside one response count as scraped duplicates.
    scraped = len(result.postings) + result.repeated
    duplicates = scraped - new_added
    store.mark_term_scraped(term, iso_utc(now), scraped)
    logger.info("ingested %r: scraped=%d new=%d duplicates=%d", term, scraped, new_added, duplicates)
    return IngestResult(
        search_term=term,
        scraped=scraped,
        new_added=new_added,
        duplicates=duplicates,
    )
