from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from sales_tool_detector.config import Settings
from sales_tool_detector.errors import ClassificationError
from sales_tool_detector.models import TOOL_BOTH, TOOL_OUTREACH, TOOL_SALESLOFT, RawPosting, Tool, ToolDetection
from sales_tool_detector.net import build_client, build_retrying, describe_http_error

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 12_000
MAX_COMPLETION_TOKENS = 500

SYSTEM_PROMPT = """You analyze job descriptions to decide whether the hiring company uses Outreach.io or SalesLoft.

Distinguish "Outreach" the product from "outreach" the sales activity.

Valid indicators for Outreach.io:
- "Outreach.io", "Outreach platform", "Outreach sequences"
- capitalized "Outreach" listed next to other sales tools (Salesforce, Gong, ...)
- "experience with Outreach"

Not valid (general sales language):
- "sales outreach", "cold outreach", "outreach efforts", "customer outreach"

SalesLoft may appear as "SalesLoft", "Salesloft" or "Sales Loft".

Return ONLY this JSON object:
{
  "uses_tool": true or false,
  "tool_detected": "Outreach.io" or "SalesLoft" or "Both" or "none",
  "signal_type": "required" or "preferred" or "stack_mention" or "none",
  "context": "exact quote mentioning the tool",
  "confidence": "high" or "medium" or "low"
}"""

_TOOL_ALIASES: dict[str, Tool | None] = {
    "outreach.io": TOOL_OUTREACH,
    "outreach": TOOL_OUTREACH,
    "salesloft": TOOL_SALESLOFT,
    "sales loft": TOOL_SALESLOFT,
    "both": TOOL_BOTH,
    "outreach.io and salesloft": TOOL_BOTH,
    "none": None,
    "": None,
}
_SIGNAL_TYPES = {"required", "preferred", "stack_mention", "none"}
_CONFIDENCE = {"high", "medium", "low"}
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ToolAnalysis(BaseModel):
    uses_tool: bool = False
    tool_detected: str | None = None
    signal_type: str = "none"
    context: str = ""
    confidence: str = "low"

    @field_validator("signal_type", mode="before")
    @classmethod
    def _normalize_signal_type(cls, value: Any) -> str:
        normalized = str(value or "").strip().lower()
        return normalized if normalized in _SIGNAL_TYPES else "stack_mention"

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> str:
        normalized = str(value or "").strip().lower()
        return normalized if normalized in _CONFIDENCE else "low"

    def to_detection(self) -> ToolDetection:
        key = (self.tool_detected or "").strip().lower()
        if key not in _TOOL_ALIASES:
            raise ClassificationError(f"unknown tool in classifier output: {self.tool_detected!r}")
        tool = _TOOL_ALIASES[key]
        if tool is None or not self.uses_tool:
            return ToolDetection(tool=None)
        return ToolDetection(
            tool=tool,
            signal_type=self.signal_type,
            context=self.context.strip(),
            confidence=self.confidence,
        )


def build_messages(posting: RawPosting) -> list[dict[str, str]]:
    user_prompt = (
        f"Company: {posting.company}\n"
        f"Job Title: {posting.title}\n"
        f"Job Description: {posting.description[:MAX_DESCRIPTION_CHARS]}"
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def parse_completion(body: Any) -> ToolDetection:
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ClassificationError("completion has no message content") from exc
    if not content:
        raise ClassificationError("completion has no message content")

    match = _JSON_OBJECT.search(content)
    if match is None:
        raise ClassificationError("no JSON object in classifier output")
    try:
        payload = json.loads(match.group(0))
        analysis = ToolAnalysis.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        raise ClassificationError(f"malformed classifier output: {exc}") from exc
    return analysis.to_detection()


def _post_completion(client: httpx.Client, url: str, payload: dict[str, Any]) -> Any:
    response = client.post(url, json=payload)
    response.raise_for_status()
    return response.json()


def classify_posting(
    settings: Settings,
    posting: RawPosting,
    *,
    client: httpx.Client | None = None,
) -> ToolDetection:
    """Ask the chat-completions endpoint which tool, if any, the posting mentions.

    Raises ClassificationError on timeouts, HTTP failures and output that
    cannot be read; the caller keeps the posting queued.
    """
    url = f"{settings.openai_base_url}/chat/completions"
    payload = {
        "model": settings.openai_model,
        "messages": build_messages(posting),
        "max_completion_tokens": MAX_COMPLETION_TOKENS,
    }
    owns_client = client is None
    http = client or build_client(
        settings,
        timeout_seconds=settings.classifier_timeout_seconds,
        token=settings.openai_api_key,
    )
    try:
        body = build_retrying(settings)(_post_completion, http, url, payload)
    except httpx.HTTPError as exc:
        raise ClassificationError(describe_http_error(exc, "classifier")) from exc
    except ValueError as exc:
        raise ClassificationError(f"classifier returned invalid JSON: {exc}") from exc
    finally:
        if owns_client:
            http.close()

    detection = parse_completion(body)
    logger.debug("classified %s as %s", posting.job_id, detection.tool)
    return detection
