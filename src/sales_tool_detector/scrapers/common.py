from __future__ import annotations

import hashlib
import re
from typing import Any

from bs4 import BeautifulSoup

from sales_tool_detector.models import RawPosting

PLATFORM = "LinkedIn"
_MARKUP_HINT = re.compile(r"<[a-zA-Z/][^>]*>")


def clean_spaces(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _field(item: dict[str, Any], key: str) -> str:
    value = item.get(key)
    if value is None:
        return ""
    return str(value).strip()


def html_to_text(raw: str) -> str:
    if not raw:
        return ""
    if not _MARKUP_HINT.search(raw):
        return raw.strip()
    soup = BeautifulSoup(raw, "html.parser")
    return clean_spaces(soup.get_text(" ", strip=True))


def make_job_id(item: dict[str, Any]) -> str:
    provider_id = _field(item, "id")
    if provider_id:
        return f"linkedin_{provider_id}"

    company = _field(item, "companyName") or "unknown"
    title = _field(item, "title") or "unknown"
    location = _field(item, "location") or "unknown"
    signature = f"{company}|{title}|{location}|{_field(item, 'jobUrl')}"
    digest = hashlib.md5(signature.encode("utf-8")).hexdigest()[:12]
    return f"linkedin_gen_{digest}"


def normalize_item(item: dict[str, Any], *, search_term: str, scraped_at: str) -> RawPosting | None:
    company = clean_spaces(_field(item, "companyName"))
    if not company:
        return None
    return RawPosting(
        job_id=make_job_id(item),
        platform=PLATFORM,
        company=company,
        title=clean_spaces(_field(item, "title")),
        description=html_to_text(_field(item, "description")),
        url=_field(item, "jobUrl"),
        search_term=search_term,
        scraped_at=scraped_at,
        location=clean_spaces(_field(item, "location")),
    )


def dedupe_postings(postings: list[RawPosting]) -> tuple[list[RawPosting], int]:
    """Keeps the first posting per job id; also returns how many repeats were collapsed."""
    seen: set[str] = set()
    deduped: list[RawPosting] = []
    for posting in postings:
        if posting.job_id in seen:
            continue
        seen.add(posting.job_id)
        deduped.append(posting)
    return deduped, len(postings) - len(deduped)


def normalize_items(
    items: list[Any],
    *,
    search_term: str,
    scraped_at: str,
) -> tuple[list[RawPosting], int, int]:
    """Returns the usable postings, the unusable item count and the repeated job id count."""
    postings: list[RawPosting] = []
    dropped = 0
    for item in items:
        posting = normalize_item(item, search_term=search_term, scraped_at=scraped_at) if isinstance(item, dict) else None
        if posting is None:
            dropped += 1
            continue
        postings.append(posting)
    deduped, repeated = dedupe_postings(postings)
    return deduped, dropped, repeated
