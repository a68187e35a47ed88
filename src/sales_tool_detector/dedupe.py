from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta

from sales_tool_detector.ledger import COMPANY_DISCOVERED, Notifier
from sales_tool_detector.models import CandidateFact, UpsertOutcome
from sales_tool_detector.storage import PipelineStore, iso_utc, parse_utc
from sales_tool_detector.tiers import TierClassifier, normalize_name

logger = logging.getLogger(__name__)


def normalize_company_name(name: str) -> str:
    """Lower-case, trim and collapse whitespace; the company half of the uniqueness key."""
    return normalize_name(name)


def _within_window(identified_at: str, now: datetime, window: timedelta) -> bool:
    identified = parse_utc(identified_at)
    if identified is None:
        return False
    return now - identified <= window


def upsert_candidate(
    store: PipelineStore,
    candidate: CandidateFact,
    *,
    tiers: TierClassifier,
    notifier: Notifier | None = None,
    now: datetime,
    skip_window: timedelta,
) -> UpsertOutcome:
    normalized = normalize_company_name(candidate.company)
    if not normalized:
        raise ValueError("candidate has no company name")

    now_iso = iso_utc(now)
    existing = store.find_company(normalized, candidate.tool)
    if existing is not None and _within_window(existing.identified_at, now, skip_window):
        return UpsertOutcome(action="skipped", company_id=existing.id, tier=existing.tier)

    tier = tiers.classify(candidate.company)

    if existing is None:
        try:
            company_id = store.insert_company(
                candidate,
                normalized_name=normalized,
                tier=tier,
                identified_at=now_iso,
            )
        except sqlite3.IntegrityError:
            # Another writer inserted the same key between our read and write.
            existing = store.find_company(normalized, candidate.tool)
            if existing is None:
                raise
            logger.info("lost insert race for %r/%s; updating instead", normalized, candidate.tool)
        else:
            if notifier is not None:
                notifier.notify(
                    COMPANY_DISCOVERED,
                    f"New company discovered: {candidate.company.strip()}",
                    f"{candidate.company.strip()} uses {candidate.tool} ({tier})",
                    {
                        "company_id": company_id,
                        "company": candidate.company.strip(),
                        "tool": candidate.tool,
                        "tier": tier,
                        "job_url": candidate.job_url,
                    },
                )
            return UpsertOutcome(action="inserted", company_id=company_id, tier=tier)

    store.update_company_evidence(existing.id, candidate, tier=tier, identified_at=now_iso)
    return UpsertOutcome(action="updated", company_id=existing.id, tier=tier)
