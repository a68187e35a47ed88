from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from sales_tool_detector.config import Settings
from sales_tool_detector.errors import ProviderError
from sales_tool_detector.models import SearchResult
from sales_tool_detector.net import build_client, build_retrying, describe_http_error
from sales_tool_detector.scrapers.common import normalize_items
from sales_tool_detector.storage import iso_utc, utc_now

logger = logging.getLogger(__name__)

APIFY_API_URL = "https://api.apify.com/v2"


def build_actor_input(term: str, max_rows: int) -> dict[str, Any]:
    return {
        "proxy": {"useApifyProxy": True, "apifyProxyGroups": []},
        "rows": max_rows,
        "title": term,
    }


def _post_actor(client: httpx.Client, url: str, payload: dict[str, Any]) -> Any:
    response = client.post(url, json=payload)
    response.raise_for_status()
    return response.json()


def fetch_actor_items(settings: Settings, client: httpx.Client, term: str) -> list[Any]:
    url = f"{APIFY_API_URL}/acts/{settings.apify_actor}/run-sync-get-dataset-items"
    payload = build_actor_input(term, settings.max_postings_per_term)
    body = build_retrying(settings)(_post_actor, client, url, payload)
    if not isinstance(body, list):
        raise ProviderError(f"malformed response: expected a list of items, got {type(body).__name__}")
    return body


def search_linkedin_jobs(
    settings: Settings,
    term: str,
    *,
    client: httpx.Client | None = None,
    now: datetime | None = None,
) -> SearchResult:
    scraped_at = iso_utc(now or utc_now())
    owns_client = client is None
    http = client or build_client(
        settings,
        timeout_seconds=settings.provider_timeout_seconds,
        token=settings.apify_token,
    )
    try:
        items = fetch_actor_items(settings, http, term)
    except httpx.HTTPError as exc:
        return SearchResult(search_term=term, postings=[], error=describe_http_error(exc, "provider"))
    except (ProviderError, ValueError) as exc:
        return SearchResult(search_term=term, postings=[], error=str(exc) or type(exc).__name__)
    finally:
        if owns_client:
            http.close()

    postings, dropped, repeated = normalize_items(items, search_term=term, scraped_at=scraped_at)
    if dropped or repeated:
        logger.info("%r: dropped %d unusable items, collapsed %d repeated job ids", term, dropped, repeated)
    return SearchResult(search_term=term, postings=postings, dropped=dropped, repeated=repeated)
