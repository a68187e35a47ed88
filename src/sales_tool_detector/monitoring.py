from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Literal

from sales_tool_detector.config import ANALYZER_REQUIRED_ENVS, SCRAPER_REQUIRED_ENVS, Settings, missing_settings
from sales_tool_detector.models import TIER_ONE, TIER_TWO, TOOLS
from sales_tool_detector.scheduler import due_terms as list_due_terms
from sales_tool_detector.storage import PipelineStore, iso_utc, parse_utc, utc_now

logger = logging.getLogger(__name__)

HealthStatus = Literal["healthy", "degraded", "critical"]


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    checked_at: str
    subsystems: dict[str, str]
    unprocessed: int = 0
    needs_review: int = 0
    due_terms: int = 0
    processed_today: int = 0
    identified_today: int = 0
    last_scrape_at: str | None = None
    alerts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DailyMetrics:
    date: str
    postings_scraped: int
    postings_analyzed: int
    companies_identified: int


@dataclass(frozen=True)
class MetricsReport:
    days: int
    generated_at: str
    daily: list[DailyMetrics]
    tool_distribution: dict[str, int]
    tier_distribution: dict[str, int]
    run_success_rate: float
    avg_processing_minutes: float | None
    total_postings: int
    total_companies: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


def subsystem_status(settings: Settings) -> dict[str, str]:
    return {
        "scraper": "unavailable" if missing_settings(SCRAPER_REQUIRED_ENVS, settings) else "available",
        "analyzer": "unavailable" if missing_settings(ANALYZER_REQUIRED_ENVS, settings) else "available",
    }


def pipeline_health(store: PipelineStore, settings: Settings, now: datetime | None = None) -> HealthReport:
    checked = now or utc_now()
    subsystems = subsystem_status(settings)
    try:
        store.ping()
        unprocessed = store.count_unprocessed()
        needs_review = store.count_needs_review()
        terms = store.list_search_terms()
        due = list_due_terms(store, checked, settings.staleness_window)
        day_start = iso_utc(_start_of_day(checked))
        day_end = iso_utc(_start_of_day(checked) + timedelta(days=1))
        processed_today = store.count_analyzed_between(day_start, day_end)
        identified_today = store.count_identified_between(day_start, day_end)
    except sqlite3.Error as exc:
        logger.exception("health check could not query the datastore")
        return HealthReport(
            status="critical",
            checked_at=iso_utc(checked),
            subsystems={**subsystems, "datastore": "unavailable"},
            alerts=[f"datastore unavailable: {exc}"],
        )
    subsystems["datastore"] = "available"

    scraped_dates = [term.last_scraped_at for term in terms if term.last_scraped_at]
    last_scrape_at = max(scraped_dates) if scraped_dates else None

    alerts: list[str] = []
    unavailable = [name for name in ("scraper", "analyzer") if subsystems[name] == "unavailable"]
    for name in unavailable:
        alerts.append(f"{name} is not configured")
    if unprocessed > settings.backlog_degraded_threshold:
        alerts.append(f"analysis backlog is {unprocessed} postings")
    if len(due) > settings.overdue_terms_degraded_threshold:
        alerts.append(f"{len(due)} search terms are overdue")
    if needs_review:
        alerts.append(f"{needs_review} postings need review")

    status: HealthStatus = "healthy"
    if len(unavailable) == 2:
        status = "critical"
    elif (
        unavailable
        or unprocessed > settings.backlog_degraded_threshold
        or len(due) > settings.overdue_terms_degraded_threshold
    ):
        status = "degraded"

    return HealthReport(
        status=status,
        checked_at=iso_utc(checked),
        subsystems=subsystems,
        unprocessed=unprocessed,
        needs_review=needs_review,
        due_terms=len(due),
        processed_today=processed_today,
        identified_today=identified_today,
        last_scrape_at=last_scrape_at,
        alerts=alerts,
    )


def check_health(settings: Settings, now: datetime | None = None) -> HealthReport:
    """Open the configured datastore and report; an unreachable store is critical."""
    try:
        with PipelineStore(settings.db_path) as store:
            return pipeline_health(store, settings, now)
    except (sqlite3.Error, OSError) as exc:
        logger.exception("health check could not open the datastore")
        return HealthReport(
            status="critical",
            checked_at=iso_utc(now or utc_now()),
            subsystems={**subsystem_status(settings), "datastore": "unavailable"},
            alerts=[f"datastore unavailable: {exc}"],
        )


def _average_minutes(pairs: list[tuple[str, str]]) -> float | None:
    durations: list[float] = []
    for scraped_raw, analyzed_raw in pairs:
        scraped = parse_utc(scraped_raw)
        analyzed = parse_utc(analyzed_raw)
        if scraped is None or analyzed is None:
            continue
        durations.append((analyzed - scraped).total_seconds() / 60)
    if not durations:
        return None
    return round(sum(durations) / len(durations), 1)


def pipeline_metrics(store: PipelineStore, days: int = 7, now: datetime | None = None) -> MetricsReport:
    if days < 1:
        raise ValueError("days must be at least 1")
    generated = now or utc_now()
    first_day = _start_of_day(generated) - timedelta(days=days - 1)

    daily: list[DailyMetrics] = []
    for offset in range(days):
        start = first_day + timedelta(days=offset)
        start_iso = iso_utc(start)
        end_iso = iso_utc(start + timedelta(days=1))
        daily.append(
            DailyMetrics(
                date=start.date().isoformat(),
                postings_scraped=store.count_scraped_between(start_iso, end_iso),
                postings_analyzed=store.count_analyzed_between(start_iso, end_iso),
                companies_identified=store.count_identified_between(start_iso, end_iso),
            )
        )

    tools = {tool: 0 for tool in TOOLS}
    tools.update(store.tool_distribution())
    tiers = {TIER_ONE: 0, TIER_TWO: 0}
    tiers.update(store.tier_distribution())

    window_start = iso_utc(first_day)
    run_counts = store.run_status_counts_since(window_start)
    completed = run_counts.get("completed", 0)
    terminal = completed + run_counts.get("failed", 0)
    success_rate = round(completed / terminal * 100, 1) if terminal else 100.0

    return MetricsReport(
        days=days,
        generated_at=iso_utc(generated),
        daily=daily,
        tool_distribution=tools,
        tier_distribution=tiers,
        run_success_rate=success_rate,
        avg_processing_minutes=_average_minutes(store.analysis_latencies_since(window_start)),
        total_postings=store.count_postings(),
        total_companies=store.count_companies(),
    )
