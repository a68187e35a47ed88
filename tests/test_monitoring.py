from datetime import datetime, timedelta, timezone

import pytest

from sales_tool_detector.config import Settings
from sales_tool_detector.models import CandidateFact, RawPosting
from sales_tool_detector.monitoring import check_health, pipeline_health, pipeline_metrics
from sales_tool_detector.storage import PipelineStore, iso_utc

NOW = datetime(2026, 2, 19, 12, 0, tzinfo=timezone.utc)


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "apify_token": "apify-token",
        "openai_api_key": "sk-test",
        "db_path": tmp_path / "pipeline.sqlite",
    }
    values.update(overrides)
    return Settings(**values)


def _posting(job_id: str, scraped_at: datetime) -> RawPosting:
    return RawPosting(
        job_id=job_id,
        platform="LinkedIn",
        company="Acme",
        title="SDR",
        description="",
        url="",
        search_term="sdr",
        scraped_at=iso_utc(scraped_at),
    )


def _candidate(company: str, tool: str = "Outreach.io") -> CandidateFact:
    return CandidateFact(
        company=company,
        tool=tool,
        signal_type="required",
        context="",
        job_title="SDR",
        job_url="",
    )


def test_healthy_pipeline(tmp_path) -> None:
    settings = _settings(tmp_path)
    with PipelineStore(settings.db_path) as store:
        store.add_search_term("sdr", created_at=iso_utc(NOW))
        store.mark_term_scraped("sdr", iso_utc(NOW - timedelta(hours=1)), 3)
        store.insert_posting_if_absent(_posting("1", NOW - timedelta(hours=1)))
        store.mark_processed("1", iso_utc(NOW - timedelta(minutes=30)))

        report = pipeline_health(store, settings, NOW)

    assert report.status == "healthy"
    assert report.subsystems == {"scraper": "available", "analyzer": "available", "datastore": "available"}
    assert report.processed_today == 1
    assert report.unprocessed == 0
    assert report.due_terms == 0
    assert report.last_scrape_at == iso_utc(NOW - timedelta(hours=1))
    assert report.alerts == []


def test_backlog_over_threshold_is_degraded(tmp_path) -> None:
    settings = _settings(tmp_path, backlog_degraded_threshold=1)
    with PipelineStore(settings.db_path) as store:
        store.insert_posting_if_absent(_posting("1", NOW))
        store.insert_posting_if_absent(_posting("2", NOW))
        report = pipeline_health(store, settings, NOW)

    assert report.status == "degraded"
    assert report.unprocessed == 2
    assert any("backlog" in alert for alert in report.alerts)


def test_overdue_terms_over_threshold_is_degraded(tmp_path) -> None:
    settings = _settings(tmp_path, overdue_terms_degraded_threshold=1)
    with PipelineStore(settings.db_path) as store:
        store.add_search_term("a", created_at=iso_utc(NOW))
        store.add_search_term("b", created_at=iso_utc(NOW))
        report = pipeline_health(store, settings, NOW)

    assert report.status == "degraded"
    assert report.due_terms == 2


def test_one_missing_subsystem_is_degraded_and_none_is_critical(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        partial = pipeline_health(store, _settings(tmp_path, openai_api_key=""), NOW)
        nothing = pipeline_health(store, _settings(tmp_path, openai_api_key="", apify_token=""), NOW)

    assert partial.status == "degraded"
    assert partial.subsystems["analyzer"] == "unavailable"
    assert nothing.status == "critical"


def test_unreachable_datastore_is_critical(tmp_path) -> None:
    settings = _settings(tmp_path, db_path=tmp_path)
    report = check_health(settings, NOW)

    assert report.status == "critical"
    assert report.subsystems["datastore"] == "unavailable"


def test_metrics_daily_counts_and_distributions(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        yesterday = NOW - timedelta(days=1)
        store.insert_posting_if_absent(_posting("old", yesterday))
        store.insert_posting_if_absent(_posting("today", NOW - timedelta(hours=2)))
        store.mark_processed("today", iso_utc(NOW - timedelta(hours=1)))
        store.insert_company(_candidate("Acme"), normalized_name="acme", tier="Tier 1", identified_at=iso_utc(NOW))
        store.insert_company(
            _candidate("Globex", "SalesLoft"), normalized_name="globex", tier="Tier 2", identified_at=iso_utc(yesterday)
        )
        completed = store.create_run("sdr", iso_utc(NOW))
        store.finish_run(completed, status="completed", completed_at=iso_utc(NOW))
        failed = store.create_run("bdr", iso_utc(NOW))
        store.finish_run(failed, status="failed", completed_at=iso_utc(NOW), error_message="boom")
        store.create_run("ae", iso_utc(NOW))

        report = pipeline_metrics(store, days=2, now=NOW)

    assert [d.date for d in report.daily] == ["2026-02-18", "2026-02-19"]
    assert [d.postings_scraped for d in report.daily] == [1, 1]
    assert [d.postings_analyzed for d in report.daily] == [0, 1]
    assert [d.companies_identified for d in report.daily] == [1, 1]
    assert report.tool_distribution == {"Outreach.io": 1, "SalesLoft": 1, "Both": 0}
    assert report.tier_distribution == {"Tier 1": 1, "Tier 2": 1}
    assert report.run_success_rate == 50.0
    assert report.avg_processing_minutes == 60.0
    assert report.total_postings == 2
    assert report.total_companies == 2


def test_metrics_without_runs(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        report = pipeline_metrics(store, days=1, now=NOW)
        with pytest.raises(ValueError):
            pipeline_metrics(store, days=0, now=NOW)

    assert report.run_success_rate == 100.0
    assert report.avg_processing_minutes is None
    assert report.to_dict()["daily"][0]["date"] == "2026-02-19"
