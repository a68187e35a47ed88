import logging
from datetime import datetime, timezone

from sales_tool_detector.ledger import Notifier, RunLedger, clock_for
from sales_tool_detector.storage import PipelineStore

NOW = datetime(2026, 2, 19, 0, 0, tzinfo=timezone.utc)


def test_run_lifecycle(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        ledger = RunLedger(store, clock_for(NOW))
        run_id = ledger.record_run_start("sdr")
        assert store.get_run(run_id).status == "pending"

        ledger.mark_running(run_id)
        assert store.get_run(run_id).status == "running"

        ledger.record_run_complete(run_id, jobs_scraped=10, jobs_analyzed=4, new_companies_found=2)
        ledger.record_run_fail(run_id, "too late")

        run = store.get_run(run_id)
        assert run.status == "completed"
        assert run.completed_at == "2026-02-19T00:00:00+00:00"
        assert (run.jobs_scraped, run.jobs_analyzed, run.new_companies_found) == (10, 4, 2)
        assert run.error_message is None


def test_failed_run_records_error(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        ledger = RunLedger(store, clock_for(NOW))
        run_id = ledger.record_run_start("sdr")
        ledger.mark_running(run_id)
        ledger.record_run_fail(run_id, "provider timed out")

        run = store.get_run(run_id)
        assert run.status == "failed"
        assert run.error_message == "provider timed out"


def test_sink_failures_are_logged_not_raised(tmp_path, caplog) -> None:
    store = PipelineStore(tmp_path / "pipeline.sqlite")
    store.close()

    ledger = RunLedger(store, clock_for(NOW))
    notifier = Notifier(store, clock_for(NOW))
    with caplog.at_level(logging.ERROR):
        assert ledger.record_run_start("sdr") is None
        ledger.mark_running(1)
        ledger.record_run_complete(1, jobs_scraped=1)
        assert notifier.notify("error", "boom", "datastore gone") is None

    assert "could not record run start" in caplog.text
    assert "could not write error notification" in caplog.text


def test_notifier_writes_metadata(tmp_path) -> None:
    with PipelineStore(tmp_path / "pipeline.sqlite") as store:
        notification_id = Notifier(store, clock_for(NOW)).notify(
            "scraping_started", "Scraping started: sdr", "", {"search_term": "sdr"}
        )
        event = store.list_notifications()[0]
        assert event.id == notification_id
        assert event.metadata == {"search_term": "sdr"}
        assert event.created_at == "2026-02-19T00:00:00+00:00"
        assert not event.is_read


def test_clock_for_defaults_to_wall_clock() -> None:
    assert clock_for(NOW)() == NOW
    assert clock_for(None)().tzinfo is not None
