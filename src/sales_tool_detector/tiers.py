from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Protocol

from sales_tool_detector.models import TIER_ONE, TIER_TWO, Tier
from sales_tool_detector.storage import PipelineStore

_CORPORATE_SUFFIX = re.compile(
    r"(?:,?\s+(?:inc|incorporated|llc|corp|corporation|ltd|limited|co|company|plc|gmbh)\.?)+$"
)


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", name or "").strip().lower()


def strip_corporate_suffix(name: str) -> str:
    normalized = normalize_name(name)
    stripped = _CORPORATE_SUFFIX.sub("", normalized).strip(" ,.")
    return stripped or normalized


class Matcher(Protocol):
    def matches(self, candidate: str, reference: str) -> bool: ...


class ExactMatcher:
    def matches(self, candidate: str, reference: str) -> bool:
        return normalize_name(candidate) == normalize_name(reference)


class SuffixStrippedMatcher:
    def matches(self, candidate: str, reference: str) -> bool:
        return strip_corporate_suffix(candidate) == strip_corporate_suffix(reference)


class SubstringMatcher:
    """Containment either way, once suffixes are gone.

    Short names would match far too much ("abc" inside "abcam"), so the
    shorter side must be at least ``min_length`` characters.
    """

    def __init__(self, min_length: int = 4):
        self.min_length = min_length

    def matches(self, candidate: str, reference: str) -> bool:
        left = strip_corporate_suffix(candidate)
        right = strip_corporate_suffix(reference)
        shorter, longer = sorted((left, right), key=len)
        if len(shorter) < self.min_length:
            return False
        return shorter in longer


DEFAULT_MATCHERS: tuple[Matcher, ...] = (ExactMatcher(), SuffixStrippedMatcher(), SubstringMatcher())


class TierClassifier:
    def __init__(self, reference_names: Iterable[str], matchers: Sequence[Matcher] = DEFAULT_MATCHERS):
        self.reference_names = tuple(name for name in reference_names if normalize_name(name))
        self.matchers = tuple(matchers)

    @classmethod
    def from_store(cls, store: PipelineStore, matchers: Sequence[Matcher] = DEFAULT_MATCHERS) -> TierClassifier:
        return cls(store.list_tier_one_names(), matchers)

    def classify(self, company_name: str) -> Tier:
        if not normalize_name(company_name):
            return TIER_TWO
        for matcher in self.matchers:
            for reference in self.reference_names:
                if matcher.matches(company_name, reference):
                    return TIER_ONE
        return TIER_TWO
