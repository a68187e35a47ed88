from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Tool = Literal["Outreach.io", "SalesLoft", "Both"]
Tier = Literal["Tier 1", "Tier 2"]
RunStatus = Literal["pending", "running", "completed", "failed"]
UpsertAction = Literal["inserted", "updated", "skipped"]
TriggerStatus = Literal["ok", "failed", "busy", "unavailable", "idle"]

TOOL_OUTREACH: Tool = "Outreach.io"
TOOL_SALESLOFT: Tool = "SalesLoft"
TOOL_BOTH: Tool = "Both"
TOOLS: tuple[Tool, ...] = (TOOL_OUTREACH, TOOL_SALESLOFT, TOOL_BOTH)

TIER_ONE: Tier = "Tier 1"
TIER_TWO: Tier = "Tier 2"

TERMINAL_RUN_STATUSES = ("completed", "failed")
NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True)
class RawPosting:
    job_id: str
    platform: str
    company: str
    title: str
    description: str
    url: str
    search_term: str
    scraped_at: str
    location: str = ""
    processed: bool = False
    analyzed_at: str | None = None
    analysis_attempts: int = 0


@dataclass(frozen=True)
class SearchResult:
    search_term: str
    postings: list[RawPosting]
    error: str | None = None
    dropped: int = 0
    repeated: int = 0


@dataclass(frozen=True)
class SearchTerm:
    term: str
    is_active: bool = True
    priority: int = 5
    last_scraped_at: str | None = None
    jobs_found_count: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class ToolDetection:
    tool: Tool | None
    signal_type: str = "none"
    context: str = ""
    confidence: str = "low"


@dataclass(frozen=True)
class CandidateFact:
    company: str
    tool: Tool
    signal_type: str
    context: str
    job_title: str
    job_url: str
    platform: str = "LinkedIn"
    confidence: str = "medium"


@dataclass(frozen=True)
class IdentifiedCompany:
    id: int
    company_name: str
    normalized_name: str
    tool_detected: Tool
    signal_type: str
    context: str
    confidence: str
    job_title: str
    job_url: str
    platform: str
    tier: Tier
    identified_at: str
    leads_generated: bool = False
    leads_generated_date: str | None = None
    leads_generated_by: str | None = None
    lead_gen_notes: str | None = None


@dataclass(frozen=True)
class ScrapingRun:
    id: int
    search_term: str
    status: RunStatus
    started_at: str
    completed_at: str | None = None
    jobs_scraped: int = 0
    jobs_analyzed: int = 0
    new_companies_found: int = 0
    error_message: str | None = None


@dataclass(frozen=True)
class NotificationEvent:
    id: int
    notification_type: str
    title: str
    message: str
    metadata: dict[str, Any]
    created_at: str
    is_read: bool = False
    is_sent: bool = False


@dataclass(frozen=True)
class UpsertOutcome:
    action: UpsertAction
    company_id: int | None
    tier: Tier | None = None


@dataclass(frozen=True)
class IngestResult:
    search_term: str
    scraped: int
    new_added: int
    duplicates: int
    error: str | None = None


@dataclass
class BatchResult:
    selected: int = 0
    processed: int = 0
    skipped_known: int = 0
    tools_detected: int = 0
    inserted: int = 0
    updated: int = 0
    skipped_recent: int = 0
    failed: int = 0
    sent_to_review: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def companies_found(self) -> int:
        return self.inserted + self.updated


@dataclass(frozen=True)
class TriggerResult:
    status: TriggerStatus
    search_term: str | None = None
    jobs_scraped: int = 0
    new_jobs_added: int = 0
    companies_found: int = 0
    run_id: int | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status in ("ok", "idle")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "status": self.status,
            "searchTerm": self.search_term,
            "jobsScraped": self.jobs_scraped,
            "newJobsAdded": self.new_jobs_added,
            "companiesFound": self.companies_found,
        }
        if self.error:
            payload["error"] = self.error
        return payload
