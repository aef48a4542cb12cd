"""Content-based TTL assignment for cached responses."""

import re
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from llmcache.core.errors import CacheConfigError


class TTLClassifier(Protocol):
    """Chooses how long a response stays cached."""

    def ttl_for(self, query: str, response: str = "") -> int:
        ...


@dataclass(frozen=True)
class TTLRule:
    """Queries containing any of ``keywords`` get ``ttl`` seconds."""

    name: str
    keywords: Tuple[str, ...]
    ttl: int

    def matches(self, text: str) -> bool:
        return any(
            re.search(rf"\b{re.escape(keyword)}\b", text) for keyword in self.keywords
        )


TIME_SENSITIVE_KEYWORDS = (
    "today", "now", "current", "latest", "recent", "this week", "this month",
)
TECHNICAL_KEYWORDS = (
    "how to", "what is", "explain", "debug", "error", "troubleshoot",
)
FACTUAL_KEYWORDS = (
    "documentation", "api", "reference", "guide", "tutorial",
)


def default_rules(
    time_sensitive_ttl: int = 6 * 3600,
    technical_ttl: int = 3 * 24 * 3600,
    factual_ttl: int = 7 * 24 * 3600
) -> Tuple[TTLRule, ...]:
    """Keyword rules checked in order: time-sensitive, technical, factual."""
    return (
        TTLRule("time_sensitive", TIME_SENSITIVE_KEYWORDS, time_sensitive_ttl),
        TTLRule("technical", TECHNICAL_KEYWORDS, technical_ttl),
        TTLRule("factual", FACTUAL_KEYWORDS, factual_ttl),
    )


class KeywordTTLClassifier:
    """First matching keyword rule wins; otherwise the default TTL applies.

    Keywords match whole words (or phrases), case-insensitively.
    """

    def __init__(
        self,
        rules: Optional[Sequence[TTLRule]] = None,
        default_ttl: int = 24 * 3600
    ):
        self.rules: Tuple[TTLRule, ...] = tuple(rules) if rules is not None else default_rules()
        self.default_ttl = default_ttl

        if default_ttl <= 0:
            raise CacheConfigError("default_ttl must be positive", field="default_ttl")
        for rule in self.rules:
            if rule.ttl <= 0:
                raise CacheConfigError(
                    f"TTL for rule '{rule.name}' must be positive", field="rules"
                )

    @classmethod
    def from_settings(cls, settings) -> "KeywordTTLClassifier":
        """Build the classifier from the response TTL settings."""
        return cls(
            rules=default_rules(
                time_sensitive_ttl=settings.response_ttl_time_sensitive,
                technical_ttl=settings.response_ttl_technical,
                factual_ttl=settings.response_ttl_factual,
            ),
            default_ttl=settings.response_ttl_default,
        )

    def category_for(self, query: str) -> str:
        """Name of the first matching rule, or ``default``."""
        text = query.lower()
        for rule in self.rules:
            if rule.matches(text):
                return rule.name
        return "default"

    def ttl_for(self, query: str, response: str = "") -> int:
        text = query.lower()
        for rule in self.rules:
            if rule.matches(text):
                return rule.ttl
        return self.default_ttl
