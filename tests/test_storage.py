import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from sales_tool_detector.models import CandidateFact, RawPosting
from sales_tool_detector.storage import PipelineStore, iso_utc, parse_utc

NOW = datetime(2026, 2, 19, 0, 0, tzinfo=timezone.utc)


def _posting(job_id: str, *, scraped_at: datetime = NOW, term: str = "sdr", company: str = "Acme") -> RawPosting:
    return RawPosting(
        job_id=job_id,
        platform="LinkedIn",
        company=company,
        title="Sales Development Representative",
        description="Experience with Outreach.io preferred",
        url=f"https://www.linkedin.com/jobs/view/{job_id}",
        search_term=term,
        scraped_at=iso_utc(scraped_at),
    )


def _candidate(company: str = "Acme") -> CandidateFact:
    return CandidateFact(
        company=company,
        tool="Outreach.io",
        signal_type="required",
        context="Experience with Outreach.io",
        job_title="SDR",
        job_url="https://www.linkedin.com/jobs/view/1",
    )


def test_iso_utc_truncates_and_converts() -> None:
    local = datetime(2026, 2, 19, 11, 0, 0, 123456, tzinfo=timezone(timedelta(hours=11)))
    assert iso_utc(local) == "2026-02-19T00:00:00+00:00"
    assert parse_utc("2026-02-19T00:00:00Z") == NOW
    assert parse_utc("not a date") is None
    assert parse_utc(None) is None


def test_reingested_posting_keeps_original_scraped_date(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        assert store.insert_posting_if_absent(_posting("linkedin_li-12345", scraped_at=NOW))
        assert not store.insert_posting_if_absent(_posting("linkedin_li-12345", scraped_at=NOW + timedelta(days=8)))

        stored = store.get_posting("linkedin_li-12345")
        assert stored is not None
        assert stored.scraped_at == iso_utc(NOW)
        assert store.count_postings() == 1


def test_fetch_unprocessed_orders_by_scraped_date_then_insertion(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.insert_posting_if_absent(_posting("c", scraped_at=NOW))
        store.insert_posting_if_absent(_posting("a", scraped_at=NOW - timedelta(hours=1)))
        store.insert_posting_if_absent(_posting("b", scraped_at=NOW))
        store.insert_posting_if_absent(_posting("other", scraped_at=NOW, term="bdr"))

        assert [p.job_id for p in store.fetch_unprocessed(10)] == ["a", "c", "b", "other"]
        assert [p.job_id for p in store.fetch_unprocessed(2)] == ["a", "c"]
        assert [p.job_id for p in store.fetch_unprocessed(10, search_term="bdr")] == ["other"]

        assert store.mark_processed("a", iso_utc(NOW))
        assert not store.mark_processed("a", iso_utc(NOW))
        assert [p.job_id for p in store.fetch_unprocessed(10)] == ["c", "b", "other"]
        assert store.count_unprocessed() == 3


def test_analyzed_date_never_precedes_scraped_date(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.insert_posting_if_absent(_posting("skewed", scraped_at=NOW))
        store.mark_processed("skewed", iso_utc(NOW - timedelta(minutes=5)))

        stored = store.get_posting("skewed")
        assert stored is not None
        assert stored.processed
        assert stored.analyzed_at == iso_utc(NOW)


def test_analysis_failures_without_limit_stay_queued(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.insert_posting_if_absent(_posting("flaky"))
        for expected in (1, 2, 3):
            attempts, sent = store.record_analysis_failure("flaky", "timeout", 0)
            assert attempts == expected
            assert not sent
        assert [p.job_id for p in store.fetch_unprocessed(10)] == ["flaky"]
        assert store.count_needs_review() == 0


def test_analysis_failures_reaching_limit_leave_queue(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.insert_posting_if_absent(_posting("flaky"))
        assert store.record_analysis_failure("flaky", "timeout", 2) == (1, False)
        assert store.record_analysis_failure("flaky", "timeout", 2) == (2, True)

        assert store.fetch_unprocessed(10) == []
        assert store.count_unprocessed() == 0
        assert store.count_needs_review() == 1


def test_search_terms_listed_never_scraped_first_then_oldest(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        created = iso_utc(NOW)
        for term in ("recent", "old", "never-a", "never-b"):
            assert store.add_search_term(term, created_at=created)
        assert not store.add_search_term("old", created_at=created)

        store.mark_term_scraped("recent", iso_utc(NOW - timedelta(days=1)), 10)
        store.mark_term_scraped("old", iso_utc(NOW - timedelta(days=30)), 4)

        assert [t.term for t in store.list_search_terms()] == ["never-a", "never-b", "old", "recent"]

        store.set_term_active("never-a", False)
        assert [t.term for t in store.list_search_terms(active_only=True)] == ["never-b", "old", "recent"]


def test_term_error_is_cleared_by_successful_scrape(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.add_search_term("sdr", created_at=iso_utc(NOW))
        store.record_term_error("sdr", "provider timed out")
        term = store.get_search_term("sdr")
        assert term is not None and term.last_error == "provider timed out"
        assert term.last_scraped_at is None

        store.mark_term_scraped("sdr", iso_utc(NOW), 12)
        term = store.get_search_term("sdr")
        assert term is not None
        assert term.last_error is None
        assert term.jobs_found_count == 12
        assert term.last_scraped_at == iso_utc(NOW)


def test_register_terms_from_postings(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.add_search_term("sdr", created_at=iso_utc(NOW))
        store.insert_posting_if_absent(_posting("1", term="sdr"))
        store.insert_posting_if_absent(_posting("2", term="account executive"))
        store.insert_posting_if_absent(_posting("3", term="account executive"))

        assert store.register_terms_from_postings(iso_utc(NOW)) == 1
        assert {t.term for t in store.list_search_terms()} == {"sdr", "account executive"}


def test_company_unique_key_rejects_second_insert(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        store.insert_company(_candidate(), normalized_name="acme", tier="Tier 2", identified_at=iso_utc(NOW))
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_company(_candidate("ACME"), normalized_name="acme", tier="Tier 2", identified_at=iso_utc(NOW))
        assert store.count_companies() == 1
        assert store.company_identified_since("acme", iso_utc(NOW - timedelta(days=90)))
        assert not store.company_identified_since("acme", iso_utc(NOW + timedelta(seconds=1)))


def test_update_lead_status(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        company_id = store.insert_company(
            _candidate(), normalized_name="acme", tier="Tier 1", identified_at=iso_utc(NOW)
        )
        assert store.update_lead_status(company_id, True, updated_at=iso_utc(NOW), notes="12 contacts", generated_by="sam")
        company = store.get_company(company_id)
        assert company is not None
        assert company.leads_generated
        assert company.leads_generated_by == "sam"
        assert company.lead_gen_notes == "12 contacts"

        assert store.update_lead_status(company_id, False, updated_at=iso_utc(NOW))
        company = store.get_company(company_id)
        assert company is not None
        assert not company.leads_generated
        assert company.leads_generated_date is None
        assert company.lead_gen_notes == "12 contacts"

        assert not store.update_lead_status(9999, True, updated_at=iso_utc(NOW))


def test_terminal_runs_are_final(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        run_id = store.create_run("sdr", iso_utc(NOW))
        assert store.get_run(run_id).status == "pending"
        assert store.update_run_status(run_id, "running")
        assert store.finish_run(run_id, status="completed", completed_at=iso_utc(NOW), jobs_scraped=5)

        assert not store.finish_run(run_id, status="failed", completed_at=iso_utc(NOW), error_message="late")
        assert not store.update_run_status(run_id, "running")
        run = store.get_run(run_id)
        assert run.status == "completed"
        assert run.jobs_scraped == 5
        assert run.error_message is None

        with pytest.raises(ValueError):
            store.finish_run(run_id, status="running", completed_at=iso_utc(NOW))


def test_notifications_read_and_sent_flags(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        first = store.add_notification("error", "boom", "provider down", created_at=iso_utc(NOW))
        second = store.add_notification(
            "company_discovered",
            "Acme",
            "uses Outreach.io",
            created_at=iso_utc(NOW),
            metadata={"company_id": 1},
        )

        assert [n.id for n in store.list_notifications()] == [second, first]
        assert store.list_notifications(notification_type="error")[0].title == "boom"
        assert store.list_notifications()[0].metadata == {"company_id": 1}

        assert store.mark_notification_read(first)
        assert not store.mark_notification_read(first)
        assert [n.id for n in store.list_notifications(unread_only=True)] == [second]

        unsent = store.list_unsent_notifications({"company_discovered"})
        assert [n.id for n in unsent] == [second]
        store.mark_notifications_sent([second], iso_utc(NOW))
        assert store.list_unsent_notifications({"company_discovered"}) == []
        assert store.list_unsent_notifications(set()) == []


def test_lease_is_exclusive_until_expiry(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        assert store.acquire_lease("scraping", "worker-a", now=NOW, ttl_seconds=60)
        assert not store.acquire_lease("scraping", "worker-b", now=NOW + timedelta(seconds=30), ttl_seconds=60)
        assert store.acquire_lease("scraping", "worker-a", now=NOW + timedelta(seconds=30), ttl_seconds=60)

        assert store.acquire_lease("scraping", "worker-b", now=NOW + timedelta(seconds=90), ttl_seconds=60)
        assert store.get_lease("scraping")["owner"] == "worker-b"

        store.release_lease("scraping", "worker-a")
        assert store.get_lease("scraping")["owner"] == "worker-b"
        store.release_lease("scraping", "worker-b")
        assert store.get_lease("scraping") is None


def test_lease_is_shared_across_connections(tmp_path) -> None:
    db_path = tmp_path / "pipeline.sqlite"
    with PipelineStore(db_path) as first, PipelineStore(db_path) as second:
        assert first.acquire_lease("scraping", "worker-a", now=NOW, ttl_seconds=3600)
        assert not second.acquire_lease("scraping", "worker-b", now=NOW, ttl_seconds=3600)
