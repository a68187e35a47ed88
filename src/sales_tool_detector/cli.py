from __future__ import annotations

import argparse
import json
import logging
import signal
from pathlib import Path

from sales_tool_detector import daemon
from sales_tool_detector.analysis import run_analysis_batch
from sales_tool_detector.classifier import classify_posting
from sales_tool_detector.config import (
    ANALYZER_REQUIRED_ENVS,
    SCRAPER_REQUIRED_ENVS,
    Settings,
    load_settings,
    mask_secret,
    missing_settings,
    require_settings,
)
from sales_tool_detector.monitoring import check_health, pipeline_metrics
from sales_tool_detector.scheduler import SCRAPING_LEASE, is_due, run_next_due_term, trigger_ingestion
from sales_tool_detector.storage import PipelineStore, iso_utc, utc_now

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sales-tool-detector")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Run the periodic scraper and analyzer until interrupted")

    scrape_parser = subparsers.add_parser("scrape", help="Scrape one search term now")
    scrape_parser.add_argument("--term", default=None, help="Search term; defaults to the next due term")
    scrape_parser.add_argument(
        "--analyze",
        action="store_true",
        help="Also analyze the term's new postings in the same run",
    )

    analyze_parser = subparsers.add_parser("analyze", help="Analyze one batch of unprocessed postings")
    analyze_parser.add_argument("--batch-size", type=int, default=None)
    analyze_parser.add_argument("--term", default=None, help="Only analyze postings of this search term")

    subparsers.add_parser("healthcheck", help="Validate config and datastore readiness")
    subparsers.add_parser("status", help="Print the pipeline health report as JSON")

    metrics_parser = subparsers.add_parser("metrics", help="Print pipeline metrics as JSON")
    metrics_parser.add_argument("--days", type=int, default=7)

    seed_parser = subparsers.add_parser("seed-terms", help="Register search terms")
    seed_parser.add_argument("terms", nargs="*")
    seed_parser.add_argument("--priority", type=int, default=5)
    seed_parser.add_argument(
        "--from-postings",
        action="store_true",
        help="Also register every search term seen on stored postings",
    )

    import_parser = subparsers.add_parser(
        "import-tier-one",
        help="Load the Tier 1 reference list (one company per line)",
    )
    import_parser.add_argument("path", type=Path)

    notifications_parser = subparsers.add_parser("notifications", help="List recent notifications")
    notifications_parser.add_argument("--unread", action="store_true")
    notifications_parser.add_argument("--limit", type=int, default=20)
    notifications_parser.add_argument("--mark-read", type=int, default=None, metavar="ID")

    leads_parser = subparsers.add_parser("mark-leads", help="Record lead generation for a company")
    leads_parser.add_argument("company_id", type=int)
    leads_parser.add_argument("--notes", default=None)
    leads_parser.add_argument("--by", default=None)
    leads_parser.add_argument("--undo", action="store_true")

    terms_parser = subparsers.add_parser("terms", help="List search terms and whether they are due")
    terms_toggle = terms_parser.add_mutually_exclusive_group()
    terms_toggle.add_argument("--activate", default=None, metavar="TERM")
    terms_toggle.add_argument("--deactivate", default=None, metavar="TERM")

    runs_parser = subparsers.add_parser("runs", help="List recent scraping runs")
    runs_parser.add_argument("--limit", type=int, default=10)

    return parser


def _settings() -> Settings:
    settings = load_settings()
    configure_logging(settings.log_level)
    return settings


def _cmd_run() -> int:
    settings = _settings()
    scraper_missing = missing_settings(SCRAPER_REQUIRED_ENVS, settings)
    analyzer_missing = missing_settings(ANALYZER_REQUIRED_ENVS, settings)
    if scraper_missing and analyzer_missing:
        print("missing required env vars:", ", ".join(scraper_missing + analyzer_missing))
        return 1

    controller = daemon.start(settings)

    def _shutdown(signum, _frame) -> None:
        logging.getLogger(__name__).info("received signal %s", signum)
        controller.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    print("scheduler started:", ", ".join(controller.get_job_ids()))
    controller.join()
    return 0


def _cmd_scrape(args: argparse.Namespace) -> int:
    settings = _settings()
    classify = None
    if args.analyze:
        require_settings(ANALYZER_REQUIRED_ENVS, settings)
        classify = classify_posting

    if args.term:
        result = trigger_ingestion(settings, args.term, classify=classify)
    else:
        result = run_next_due_term(settings, classify=classify)

    print(
        "scrape summary:",
        f"status={result.status}",
        f"term={result.search_term}",
        f"jobs_scraped={result.jobs_scraped}",
        f"new_jobs_added={result.new_jobs_added}",
        f"companies_found={result.companies_found}",
    )
    if result.error:
        print(f"error: {result.error}")
    return 1 if result.status in ("failed", "unavailable") else 0


def _cmd_analyze(args: argparse.Namespace) -> int:
    settings = _settings()
    require_settings(ANALYZER_REQUIRED_ENVS, settings)
    if args.batch_size is not None and args.batch_size < 1:
        raise ValueError("--batch-size must be at least 1")

    with PipelineStore(settings.db_path) as store:
        result = run_analysis_batch(
            settings,
            store,
            classify_posting,
            search_term=args.term,
            limit=args.batch_size,
        )

    print(
        "analysis summary:",
        f"selected={result.selected}",
        f"processed={result.processed}",
        f"skipped_known={result.skipped_known}",
        f"tools_detected={result.tools_detected}",
        f"inserted={result.inserted}",
        f"updated={result.updated}",
        f"failed={result.failed}",
        f"sent_to_review={result.sent_to_review}",
    )
    if result.selected and result.failed == result.selected:
        return 1
    return 0


def _cmd_healthcheck() -> int:
    settings = _settings()
    report = check_health(settings)
    for name, state in sorted(report.subsystems.items()):
        print(f"{name}: {state}")
    if settings.apify_token:
        print(f"apify token: {mask_secret(settings.apify_token)}")
    if settings.openai_api_key:
        print(f"openai key: {mask_secret(settings.openai_api_key)}")
    for alert in report.alerts:
        print(f"alert: {alert}")
    if report.status == "critical":
        print("healthcheck failed")
        return 1
    print(f"healthcheck passed ({report.status})")
    return 0


def _cmd_status() -> int:
    settings = _settings()
    report = check_health(settings)
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 1 if report.status == "critical" else 0


def _cmd_metrics(args: argparse.Namespace) -> int:
    settings = _settings()
    with PipelineStore(settings.db_path) as store:
        report = pipeline_metrics(store, days=args.days)
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 0


def _cmd_seed_terms(args: argparse.Namespace) -> int:
    settings = _settings()
    if not args.terms and not args.from_postings:
        raise ValueError("give at least one search term or --from-postings")

    created_at = iso_utc(utc_now())
    added = 0
    with PipelineStore(settings.db_path) as store:
        for raw in args.terms:
            term = raw.strip()
            if term and store.add_search_term(term, created_at=created_at, priority=args.priority):
                added += 1
        derived = store.register_terms_from_postings(created_at) if args.from_postings else 0
        total = len(store.list_search_terms())

    print("seed summary:", f"added={added}", f"derived={derived}", f"total_terms={total}")
    return 0


def _cmd_import_tier_one(args: argparse.Namespace) -> int:
    settings = _settings()
    if not args.path.exists():
        raise ValueError(f"file not found: {args.path}")

    names = [
        line.strip()
        for line in args.path.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.lstrip().startswith("#")
    ]
    added = 0
    with PipelineStore(settings.db_path) as store:
        for name in names:
            if store.add_tier_one_company(name):
                added += 1
        total = len(store.list_tier_one_names())

    print("import summary:", f"read={len(names)}", f"added={added}", f"total_tier_one={total}")
    return 0


def _cmd_notifications(args: argparse.Namespace) -> int:
    settings = _settings()
    with PipelineStore(settings.db_path) as store:
        if args.mark_read is not None:
            if not store.mark_notification_read(args.mark_read):
                print(f"notification {args.mark_read} not found or already read")
                return 1
            print(f"notification {args.mark_read} marked read")
            return 0
        events = store.list_notifications(unread_only=args.unread, limit=args.limit)

    for event in events:
        flag = " " if event.is_read else "*"
        print(f"{flag} {event.id} {event.created_at} [{event.notification_type}] {event.title}")
    return 0


def _cmd_mark_leads(args: argparse.Namespace) -> int:
    settings = _settings()
    with PipelineStore(settings.db_path) as store:
        updated = store.update_lead_status(
            args.company_id,
            not args.undo,
            updated_at=iso_utc(utc_now()),
            notes=args.notes,
            generated_by=args.by,
        )
    if not updated:
        raise ValueError(f"company {args.company_id} not found")
    print(f"company {args.company_id} leads_generated={not args.undo}")
    return 0


def _cmd_terms(args: argparse.Namespace) -> int:
    settings = _settings()
    now = utc_now()
    with PipelineStore(settings.db_path) as store:
        toggle = args.activate or args.deactivate
        if toggle:
            if not store.set_term_active(toggle, bool(args.activate)):
                raise ValueError(f"search term not found: {toggle}")
            print(f"search term {toggle!r} active={bool(args.activate)}")
            return 0
        terms = store.list_search_terms()

    for term in terms:
        if not term.is_active:
            state = "inactive"
        elif is_due(term, now, settings.staleness_window):
            state = "due"
        else:
            state = "fresh"
        print(f"{state:8} {term.term} last_scraped={term.last_scraped_at or '-'} jobs_found={term.jobs_found_count}")
    return 0


def _cmd_runs(args: argparse.Namespace) -> int:
    settings = _settings()
    with PipelineStore(settings.db_path) as store:
        lease = store.get_lease(SCRAPING_LEASE)
        runs = store.list_runs(args.limit)

    if lease is not None:
        print(f"scrape in progress: owner={lease['owner']} expires_at={lease['expires_at']}")
    for run in runs:
        line = (
            f"{run.id} {run.started_at} [{run.status}] {run.search_term} "
            f"scraped={run.jobs_scraped} analyzed={run.jobs_analyzed} new_companies={run.new_companies_found}"
        )
        if run.error_message:
            line += f" error={run.error_message}"
        print(line)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "run":
            return _cmd_run()
        if args.command == "scrape":
            return _cmd_scrape(args)
        if args.command == "analyze":
            return _cmd_analyze(args)
        if args.command == "healthcheck":
            return _cmd_healthcheck()
        if args.command == "status":
            return _cmd_status()
        if args.command == "metrics":
            return _cmd_metrics(args)
        if args.command == "seed-terms":
            return _cmd_seed_terms(args)
        if args.command == "import-tier-one":
            return _cmd_import_tier_one(args)
        if args.command == "notifications":
            return _cmd_notifications(args)
        if args.command == "mark-leads":
            return _cmd_mark_leads(args)
        if args.command == "terms":
            return _cmd_terms(args)
        if args.command == "runs":
            return _cmd_runs(args)
    except ValueError as exc:
        print(exc)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
