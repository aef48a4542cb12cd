"""Tests for response TTL classification."""

import pytest

from llmcache.core.config import Settings
from llmcache.core.errors import CacheConfigError
from llmcache.services.tiered_cache.ttl_classifier import KeywordTTLClassifier, TTLRule

HOUR = 3600
DAY = 24 * HOUR


class TestKeywordTTLClassifier:
    """Tests for the default keyword rules."""

    @pytest.mark.parametrize("query,expected", [
        ("What is the status today?", 6 * HOUR),
        ("Show the LATEST deploys", 6 * HOUR),
        ("How to configure nginx", 3 * DAY),
        ("Explain the retry policy", 3 * DAY),
        ("Link the API reference", 7 * DAY),
        ("Tell me a joke", DAY),
    ])
    def test_default_rules(self, query, expected):
        """Test each class maps to its TTL."""
        assert KeywordTTLClassifier().ttl_for(query) == expected

    @pytest.mark.parametrize("query", [
        "What do you know about Rust?",
        "Share some knowledge on sailing",
        "Name a rapid capital city",
    ])
    def test_keywords_match_whole_words(self, query):
        """Test keywords inside longer words do not select a rule."""
        classifier = KeywordTTLClassifier()
        assert classifier.category_for(query) == "default"
        assert classifier.ttl_for(query) == DAY

    def test_first_matching_rule_wins(self):
        """Test time-sensitive phrasing beats technical phrasing."""
        classifier = KeywordTTLClassifier()
        assert classifier.category_for("What is the current error rate?") == "time_sensitive"

    def test_custom_rules(self):
        """Test the classifier accepts arbitrary rules."""
        classifier = KeywordTTLClassifier(
            rules=[TTLRule("pricing", ("price", "cost"), 60)],
            default_ttl=600
        )
        assert classifier.ttl_for("What does it cost?") == 60
        assert classifier.ttl_for("today") == 600

    def test_from_settings(self):
        """Test TTLs come from settings."""
        settings = Settings(response_ttl_time_sensitive=10, response_ttl_default=99)
        classifier = KeywordTTLClassifier.from_settings(settings)

        assert classifier.ttl_for("right now") == 10
        assert classifier.ttl_for("hello") == 99

    def test_invalid_ttl_rejected(self):
        """Test non-positive TTLs fail at construction."""
        with pytest.raises(CacheConfigError):
            KeywordTTLClassifier(default_ttl=0)
        with pytest.raises(CacheConfigError):
            KeywordTTLClassifier(rules=[TTLRule("bad", ("x",), -1)])
