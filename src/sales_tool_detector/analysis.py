from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from datetime import datetime

from sales_tool_detector.config import Settings
from sales_tool_detector.dedupe import normalize_company_name, upsert_candidate
from sales_tool_detector.errors import ClassificationError
from sales_tool_detector.ledger import ERROR, NEEDS_REVIEW, Notifier, clock_for
from sales_tool_detector.models import BatchResult, CandidateFact, RawPosting, ToolDetection
from sales_tool_detector.storage import PipelineStore, iso_utc, utc_now
from sales_tool_detector.tiers import TierClassifier

logger = logging.getLogger(__name__)

Classify = Callable[[Settings, RawPosting], ToolDetection]


def paced(classify: Classify, delay_seconds: float, sleep: Callable[[float], None] = time.sleep) -> Classify:
    """Wrap a classifier so consecutive calls are at least delay_seconds apart."""
    calls = 0

    def classify_paced(settings: Settings, posting: RawPosting) -> ToolDetection:
        nonlocal calls
        if calls and delay_seconds > 0:
            sleep(delay_seconds)
        calls += 1
        return classify(settings, posting)

    return classify_paced


def _analyze_posting(
    settings: Settings,
    store: PipelineStore,
    classify: Classify,
    posting: RawPosting,
    *,
    now: datetime,
    tiers: TierClassifier,
    notifier: Notifier,
    result: BatchResult,
) -> None:
    now_iso = iso_utc(now)
    normalized = normalize_company_name(posting.company)

    if settings.skip_known_companies and normalized:
        since = iso_utc(now - settings.skip_window)
        if store.company_identified_since(normalized, since):
            store.mark_processed(posting.job_id, now_iso)
            result.skipped_known += 1
            result.processed += 1
            return

    detection = classify(settings, posting)
    if detection.tool is not None:
        result.tools_detected += 1
        outcome = upsert_candidate(
            store,
            CandidateFact(
                company=posting.company,
                tool=detection.tool,
                signal_type=detection.signal_type,
                context=detection.context,
                job_title=posting.title,
                job_url=posting.url,
                platform=posting.platform,
                confidence=detection.confidence,
            ),
            tiers=tiers,
            notifier=notifier,
            now=now,
            skip_window=settings.skip_window,
        )
        if outcome.action == "inserted":
            result.inserted += 1
        elif outcome.action == "updated":
            result.updated += 1
        else:
            result.skipped_recent += 1

    store.mark_processed(posting.job_id, now_iso)
    result.processed += 1


def _record_failure(
    settings: Settings,
    store: PipelineStore,
    notifier: Notifier,
    posting: RawPosting,
    error: str,
    result: BatchResult,
) -> None:
    result.failed += 1
    result.errors.append(f"{posting.job_id}: {error}")
    notifier.notify(
        ERROR,
        f"Analysis failed: {posting.company}",
        error,
        {"job_id": posting.job_id, "search_term": posting.search_term, "stage": "analysis"},
    )
    try:
        attempts, sent_to_review = store.record_analysis_failure(
            posting.job_id,
            error,
            settings.max_analysis_attempts,
        )
    except sqlite3.Error:
        logger.exception("could not record analysis failure for %s", posting.job_id)
        return

    if sent_to_review:
        result.sent_to_review += 1
        notifier.notify(
            NEEDS_REVIEW,
            f"Posting needs review: {posting.company}",
            f"{posting.job_id} failed analysis {attempts} times",
            {"job_id": posting.job_id, "attempts": attempts, "last_error": error},
        )


def run_analysis_batch(
    settings: Settings,
    store: PipelineStore,
    classify: Classify,
    *,
    search_term: str | None = None,
    now: datetime | None = None,
    notifier: Notifier | None = None,
    tiers: TierClassifier | None = None,
    limit: int | None = None,
    heartbeat: Callable[[], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchResult:
    """Classify the oldest unprocessed postings and register detected companies.

    One posting failing never stops the batch; it stays queued for the next one.
    Classifier calls are spaced by analysis_request_delay_seconds. heartbeat,
    when given, runs before each posting.
    """
    run_at = now or utc_now()
    notifier = notifier or Notifier(store, clock_for(now))
    tiers = tiers or TierClassifier.from_store(store)
    postings = store.fetch_unprocessed(limit or settings.analysis_batch_size, search_term=search_term)

    classify = paced(classify, settings.analysis_request_delay_seconds, sleep)

    result = BatchResult(selected=len(postings))
    for posting in postings:
        if heartbeat is not None:
            heartbeat()
        try:
            _analyze_posting(
                settings,
                store,
                classify,
                posting,
                now=run_at,
                tiers=tiers,
                notifier=notifier,
                result=result,
            )
        except ClassificationError as exc:
            logger.warning("classification failed for %s: %s", posting.job_id, exc)
            _record_failure(settings, store, notifier, posting, str(exc), result)
        except sqlite3.Error as exc:
            logger.exception("datastore error while analyzing %s", posting.job_id)
            _record_failure(settings, store, notifier, posting, f"datastore error: {exc}", result)
        except Exception as exc:  # pragma: no cover - classifier boundary
            logger.exception("unexpected error while analyzing %s", posting.job_id)
            _record_failure(settings, store, notifier, posting, f"unexpected error: {exc}", result)

    if postings:
        logger.info(
            "analysis batch: selected=%d processed=%d detected=%d inserted=%d updated=%d failed=%d",
            result.selected,
            result.processed,
            result.tools_detected,
            result.inserted,
            result.updated,
            result.failed,
        )
    return result
