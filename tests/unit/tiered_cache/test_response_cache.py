"""Tests for the similarity-matching response cache."""

import pytest

from llmcache.core.errors import CacheConfigError
from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.embedding_cache import EmbeddingCache
from llmcache.services.tiered_cache.memory_store import MemoryCacheStore
from llmcache.services.tiered_cache.response_cache import (
    MatchType,
    ResponseCache,
    ResponseContext,
    SimilarityConfig,
)


class BrokenCoordinator:
    """Coordinator stand-in whose every call fails."""

    async def get(self, key):
        raise RuntimeError("cache offline")

    async def set(self, key, value, ttl=None, target_tier=None):
        raise RuntimeError("cache offline")


@pytest.fixture
def response_cache(clock):
    """Create an L1-only response cache."""
    coordinator = TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock)
    return ResponseCache(coordinator)


class TestExactMatch:
    """Tests for the exact-match stage."""

    @pytest.mark.asyncio
    async def test_exact_hit(self, response_cache):
        """Test the same query and context hits exactly."""
        await response_cache.set("What is Kubernetes?", "A container orchestrator.")

        match = await response_cache.get("What is Kubernetes?")

        assert match.match_type == MatchType.EXACT
        assert match.score == 1.0
        assert match.response == "A container orchestrator."

    @pytest.mark.asyncio
    async def test_exact_hit_ignores_case_and_punctuation(self, response_cache):
        """Test normalized queries share a key."""
        await response_cache.set("What is Kubernetes?", "answer")
        match = await response_cache.get("what is kubernetes")
        assert match.match_type == MatchType.EXACT

    @pytest.mark.asyncio
    async def test_miss(self, response_cache):
        """Test an unrelated query misses."""
        await response_cache.set("What is Kubernetes?", "answer")
        assert await response_cache.get("Recommend a pasta recipe") is None

    @pytest.mark.asyncio
    async def test_model_is_part_of_key(self, response_cache):
        """Test responses are not shared across models."""
        await response_cache.set("Explain DNS", "answer", ResponseContext(model="a"))
        assert await response_cache.get("Explain DNS", ResponseContext(model="b")) is None

    @pytest.mark.asyncio
    async def test_tool_set_is_part_of_key(self, response_cache):
        """Test a different tool set does not reuse a response."""
        await response_cache.set("Explain DNS", "answer", ResponseContext(tools=["search"]))

        assert await response_cache.get("Explain DNS", ResponseContext(tools=["calc"])) is None
        match = await response_cache.get("Explain DNS", ResponseContext(tools=["search"]))
        assert match.match_type == MatchType.EXACT


class TestSemanticMatch:
    """Tests for the embedding-similarity stage."""

    @pytest.mark.asyncio
    async def test_semantic_hit_with_supplied_embeddings(self, response_cache):
        """Test close embeddings match above the threshold."""
        await response_cache.set(
            "How do I reset my password?", "Open settings.",
            ResponseContext(embedding=[1.0, 0.0, 0.0])
        )

        match = await response_cache.get(
            "Steps for changing a forgotten login secret",
            ResponseContext(embedding=[0.99, 0.1, 0.0])
        )

        assert match.match_type == MatchType.SEMANTIC
        assert match.score >= 0.85
        assert match.response == "Open settings."

    @pytest.mark.asyncio
    async def test_semantic_below_threshold_misses(self, response_cache):
        """Test distant embeddings do not match."""
        await response_cache.set(
            "How do I reset my password?", "Open settings.",
            ResponseContext(embedding=[1.0, 0.0])
        )

        match = await response_cache.get(
            "Recommend a pasta recipe", ResponseContext(embedding=[0.0, 1.0])
        )

        assert match is None

    @pytest.mark.asyncio
    async def test_best_candidate_wins(self, response_cache):
        """Test the highest-similarity candidate is returned."""
        await response_cache.set("first question", "first", ResponseContext(embedding=[1.0, 0.3]))
        await response_cache.set("second question", "second", ResponseContext(embedding=[1.0, 0.0]))

        match = await response_cache.get(
            "another phrasing entirely", ResponseContext(embedding=[1.0, 0.01])
        )

        assert match.response == "second"

    @pytest.mark.asyncio
    async def test_embeddings_from_embedding_cache(self, clock):
        """Test query embeddings come from the embedding cache and embed_fn."""
        vectors = {
            "How do I reset my password?": [1.0, 0.0],
            "Forgot my login secret, what now": [0.95, 0.05],
        }
        calls = []

        def embed(text):
            calls.append(text)
            return vectors[text]

        embeddings = EmbeddingCache(TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock))
        cache = ResponseCache(
            TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock),
            embedding_cache=embeddings,
            embed_fn=embed,
        )

        await cache.set("How do I reset my password?", "Open settings.")
        match = await cache.get("Forgot my login secret, what now")

        assert match.match_type == MatchType.SEMANTIC
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_embedding_failure_skips_semantic_stage(self, clock):
        """Test a failing embed_fn degrades to fuzzy matching."""
        def embed(text):
            raise RuntimeError("embedding service down")

        embeddings = EmbeddingCache(TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock))
        cache = ResponseCache(
            TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock),
            embedding_cache=embeddings,
            embed_fn=embed,
        )

        await cache.set("how do i restart nginx", "systemctl restart nginx")
        match = await cache.get("how do i restart the nginx")

        assert match.match_type == MatchType.FUZZY


class TestFuzzyMatch:
    """Tests for the string-similarity stage."""

    @pytest.mark.asyncio
    async def test_fuzzy_hit(self, response_cache):
        """Test a near-duplicate query matches fuzzily."""
        await response_cache.set("how do i restart nginx", "systemctl restart nginx")

        match = await response_cache.get("how do i restart the nginx")

        assert match.match_type == MatchType.FUZZY
        assert match.score == pytest.approx(1 - 4 / 26)

    @pytest.mark.asyncio
    async def test_fuzzy_disabled(self, clock):
        """Test fuzzy matching can be turned off."""
        cache = ResponseCache(
            TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock),
            similarity=SimilarityConfig(enable_fuzzy_match=False),
        )
        await cache.set("how do i restart nginx", "answer")

        assert await cache.get("how do i restart the nginx") is None

    @pytest.mark.asyncio
    async def test_fuzzy_respects_system_prompt(self, response_cache):
        """Test candidates with another system prompt are not considered."""
        await response_cache.set(
            "how do i restart nginx", "answer", ResponseContext(system_prompt="You are terse")
        )

        match = await response_cache.get(
            "how do i restart the nginx", ResponseContext(system_prompt="You are verbose")
        )

        assert match is None

    @pytest.mark.asyncio
    async def test_expired_candidate_not_returned(self, response_cache, clock):
        """Test similarity hits are re-validated against the tiers."""
        await response_cache.set("how do i restart nginx", "answer")
        clock.advance(7 * 24 * 3600)

        assert await response_cache.get("how do i restart the nginx") is None
        assert response_cache.get_stats()["candidates"] == 0


class TestTTLAndWrites:
    """Tests for TTL classification and invalidation."""

    @pytest.mark.asyncio
    async def test_time_sensitive_ttl(self, response_cache):
        """Test time-sensitive queries get the short TTL."""
        await response_cache.set("What is deployed today?", "v42")

        key = response_cache.key_for("What is deployed today?", ResponseContext())
        entry = response_cache.coordinator.l1.peek(key)

        assert entry.ttl_seconds == 6 * 3600

    @pytest.mark.asyncio
    async def test_entry_records_tokens(self, response_cache):
        """Test the stored entry carries the response token estimate."""
        entry = await response_cache.set("q", "x" * 40)
        assert entry.token_count == 10

    @pytest.mark.asyncio
    async def test_invalidate(self, response_cache):
        """Test invalidation removes the exact and similarity paths."""
        await response_cache.set("how do i restart nginx", "answer")

        assert await response_cache.invalidate("how do i restart nginx") is True
        assert await response_cache.get("how do i restart nginx") is None
        assert await response_cache.get("how do i restart the nginx") is None

    @pytest.mark.asyncio
    async def test_candidate_pool_bounded(self, clock):
        """Test the candidate index keeps only the most recent entries."""
        cache = ResponseCache(
            TierCoordinator(l1=MemoryCacheStore(clock=clock), clock=clock),
            similarity=SimilarityConfig(max_candidates=2, candidate_pool_size=3),
        )
        for i in range(5):
            await cache.set(f"question number {i}", f"answer {i}")

        assert cache.get_stats()["candidates"] == 3


class TestGetOrGenerate:
    """Tests for compute-on-miss generation."""

    @pytest.mark.asyncio
    async def test_generates_once(self, response_cache):
        """Test a repeated query is served from cache."""
        calls = []

        async def generate(query, context):
            calls.append(query)
            return f"answer to {query}"

        first = await response_cache.get_or_generate("Explain TLS", None, generate)
        second = await response_cache.get_or_generate("Explain TLS", None, generate)

        assert first == second == "answer to Explain TLS"
        assert calls == ["Explain TLS"]
        assert response_cache.get_stats()["exact_hits"] == 1

    @pytest.mark.asyncio
    async def test_cache_failure_still_returns_result(self):
        """Test a broken cache never blocks generation."""
        cache = ResponseCache(BrokenCoordinator())

        result = await cache.get_or_generate("Explain TLS", None, lambda q, c: "fresh")

        assert result == "fresh"

    @pytest.mark.asyncio
    async def test_generation_error_propagates(self, response_cache):
        """Test errors from the generator reach the caller."""
        def generate(query, context):
            raise ValueError("model refused")

        with pytest.raises(ValueError):
            await response_cache.get_or_generate("q", None, generate)


class TestStatsAndConfig:
    """Tests for statistics and configuration."""

    @pytest.mark.asyncio
    async def test_stats_per_stage(self, response_cache):
        """Test counters per match stage and tokens saved."""
        await response_cache.set("how do i restart nginx", "x" * 8)

        await response_cache.get("how do i restart nginx")
        await response_cache.get("how do i restart the nginx")
        await response_cache.get("something else entirely")

        stats = response_cache.get_stats()
        assert stats["exact_hits"] == 1
        assert stats["fuzzy_hits"] == 1
        assert stats["misses"] == 1
        assert stats["tokens_saved"] == 4
        assert stats["hit_rate"] == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_similarity_hit_leaves_candidate_untouched(self, response_cache):
        """Test checking a candidate does not count as a tier lookup."""
        await response_cache.set("how do i restart nginx", "answer")
        key = response_cache.key_for("how do i restart nginx", ResponseContext())

        match = await response_cache.get("how do i restart the nginx")

        assert match.match_type == MatchType.FUZZY
        snapshot = await response_cache.coordinator.get_stats()
        assert snapshot.total.hits == 0
        assert snapshot.total.misses == 1
        assert response_cache.coordinator.l1.peek(key).hit_count == 0

    @pytest.mark.parametrize("kwargs", [
        {"semantic_threshold": 1.5},
        {"fuzzy_threshold": -0.1},
        {"max_candidates": 0},
        {"max_candidates": 10, "candidate_pool_size": 5},
    ])
    def test_invalid_similarity_config(self, kwargs):
        """Test invalid thresholds fail at construction."""
        with pytest.raises(CacheConfigError):
            SimilarityConfig(**kwargs)
