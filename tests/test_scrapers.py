import hashlib
import json
from datetime import datetime, timezone

import httpx

from sales_tool_detector.config import Settings
from sales_tool_detector.scrapers.apify_linkedin import build_actor_input, search_linkedin_jobs
from sales_tool_detector.scrapers.common import html_to_text, make_job_id, normalize_items

NOW = datetime(2026, 2, 19, 0, 0, tzinfo=timezone.utc)


def _settings(tmp_path) -> Settings:
    return Settings(
        apify_token="apify-token",
        db_path=tmp_path / "pipeline.sqlite",
        max_postings_per_term=50,
        request_retry_attempts=3,
        request_retry_delay_seconds=0.0,
    )


def _item(**overrides) -> dict:
    item = {
        "id": "3812345678",
        "companyName": "Acme Inc",
        "title": "Sales Development Representative",
        "location": "Austin, TX",
        "description": "<p>We use <b>Outreach.io</b> daily.</p>",
        "jobUrl": "https://www.linkedin.com/jobs/view/3812345678",
    }
    item.update(overrides)
    return item


def test_job_id_prefers_provider_id() -> None:
    assert make_job_id(_item()) == "linkedin_3812345678"


def test_job_id_falls_back_to_content_hash() -> None:
    item = _item(id=None)
    signature = "Acme Inc|Sales Development Representative|Austin, TX|https://www.linkedin.com/jobs/view/3812345678"
    expected = "linkedin_gen_" + hashlib.md5(signature.encode("utf-8")).hexdigest()[:12]

    assert make_job_id(item) == expected
    assert make_job_id(dict(item)) == expected
    assert make_job_id(_item(id=None, title="Account Executive")) != expected


def test_html_to_text() -> None:
    assert html_to_text("<p>We use <b>Outreach.io</b> daily.</p>") == "We use Outreach.io daily."
    assert html_to_text("plain text stays") == "plain text stays"
    assert html_to_text("") == ""


def test_normalize_items_drops_unusable_and_duplicates() -> None:
    items = [_item(), _item(), _item(id="2", companyName=""), "not a dict", _item(id="3", companyName="Globex")]
    postings, dropped, repeated = normalize_items(items, search_term="sdr", scraped_at="2026-02-19T00:00:00+00:00")

    assert [p.job_id for p in postings] == ["linkedin_3812345678", "linkedin_3"]
    assert dropped == 2
    assert repeated == 1
    assert postings[0].description == "We use Outreach.io daily."
    assert postings[0].search_term == "sdr"
    assert postings[0].location == "Austin, TX"


def test_search_posts_actor_input_and_parses_items(tmp_path) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=[_item(), _item(id="99", companyName="Globex"), _item()])

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = search_linkedin_jobs(_settings(tmp_path), "sdr", client=client, now=NOW)

    assert result.error is None
    assert [p.company for p in result.postings] == ["Acme Inc", "Globex"]
    assert result.repeated == 1
    assert all(p.scraped_at == "2026-02-19T00:00:00+00:00" for p in result.postings)

    assert len(requests) == 1
    assert requests[0].url.path == "/v2/acts/bebity~linkedin-jobs-scraper/run-sync-get-dataset-items"
    assert json.loads(requests[0].content) == build_actor_input("sdr", 50)


def test_search_retries_rate_limit(tmp_path) -> None:
    statuses = [429, 503, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        return httpx.Response(status, json=[_item()] if status == 200 else {"error": "busy"})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = search_linkedin_jobs(_settings(tmp_path), "sdr", client=client, now=NOW)

    assert result.error is None
    assert len(result.postings) == 1
    assert statuses == []


def test_search_reports_persistent_server_error(tmp_path) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = search_linkedin_jobs(_settings(tmp_path), "sdr", client=client, now=NOW)

    assert result.postings == []
    assert result.error == "provider returned HTTP 500"
    assert len(calls) == 3


def test_search_does_not_retry_client_error(tmp_path) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": "bad token"})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = search_linkedin_jobs(_settings(tmp_path), "sdr", client=client, now=NOW)

    assert result.error == "provider returned HTTP 401"
    assert len(calls) == 1


def test_search_rejects_malformed_body(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": []})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = search_linkedin_jobs(_settings(tmp_path), "sdr", client=client, now=NOW)

    assert result.postings == []
    assert result.error is not None
    assert "malformed response" in result.error


def test_search_reports_timeout(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = search_linkedin_jobs(_settings(tmp_path), "sdr", client=client, now=NOW)

    assert result.error == "provider timed out"
