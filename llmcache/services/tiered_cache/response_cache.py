"""Response cache with exact, semantic and fuzzy matching.

Lookups run in three stages, each only when the previous one missed:

1. Exact: the (query, model, context) fingerprint key through the tier
   coordinator.
2. Semantic: cosine similarity between the query embedding and the
   embeddings of recently cached, context-compatible responses.
3. Fuzzy: normalized Levenshtein similarity between query strings.
"""

import inspect
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from llmcache.core.errors import CacheConfigError
from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.coordinator import TierCoordinator
from llmcache.services.tiered_cache.embedding_cache import ComputeFn, EmbeddingCache
from llmcache.services.tiered_cache.key_generator import CacheKeyGenerator
from llmcache.services.tiered_cache.similarity import (
    cosine_similarity,
    normalize_text,
    text_similarity,
)
from llmcache.services.tiered_cache.ttl_classifier import KeywordTTLClassifier, TTLClassifier
from llmcache.services.tiered_cache.utils import estimate_token_count

logger = get_logger(__name__)

GenerateFn = Callable[[str, "ResponseContext"], Union[str, Awaitable[str]]]


class MatchType(str, Enum):
    """How a cached response was found."""
    EXACT = "exact"
    SEMANTIC = "semantic"
    FUZZY = "fuzzy"


@dataclass
class SimilarityConfig:
    """Thresholds and limits for similarity matching."""

    semantic_threshold: float = 0.85
    fuzzy_threshold: float = 0.8
    enable_fuzzy_match: bool = True
    max_candidates: int = 10
    candidate_pool_size: int = 1000

    def __post_init__(self) -> None:
        for name in ("semantic_threshold", "fuzzy_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise CacheConfigError(f"{name} must be within [0, 1]", field=name)
        if self.max_candidates <= 0:
            raise CacheConfigError("max_candidates must be positive", field="max_candidates")
        if self.candidate_pool_size < self.max_candidates:
            raise CacheConfigError(
                "candidate_pool_size must be >= max_candidates", field="candidate_pool_size"
            )


class ResponseContext(BaseModel):
    """Generation context that decides which cached responses are reusable."""

    model: str = "default"
    system_prompt: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    conversation_context: Optional[str] = None
    embedding: Optional[List[float]] = None

    @property
    def tool_set(self) -> Tuple[str, ...]:
        return tuple(sorted(set(self.tools)))

    @property
    def system_prompt_hash(self) -> Optional[str]:
        if not self.system_prompt:
            return None
        return CacheKeyGenerator.hash_text(self.system_prompt)[:16]

    @property
    def conversation_hash(self) -> Optional[str]:
        if not self.conversation_context:
            return None
        return CacheKeyGenerator.hash_text(self.conversation_context)[:16]

    def fingerprint(self) -> str:
        return CacheKeyGenerator.context_fingerprint(
            system_prompt=self.system_prompt,
            tools=self.tools,
            conversation_context=self.conversation_context,
        )


class ResponseCacheEntry(BaseModel):
    """A cached LLM response."""

    query: str
    response: str
    embedding: Optional[List[float]] = None
    model: str
    system_prompt_hash: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    conversation_hash: Optional[str] = None
    token_count: int
    created_at: float


class ResponseMatch(BaseModel):
    """A cache hit together with how it matched."""

    entry: ResponseCacheEntry
    match_type: MatchType
    score: float

    @property
    def response(self) -> str:
        return self.entry.response


@dataclass
class _Candidate:
    """Index record used to find similar cached responses."""

    key: str
    normalized_query: str
    embedding: Optional[List[float]]
    model: str
    system_prompt_hash: Optional[str]
    tools: Tuple[str, ...]

    def compatible_with(self, context: ResponseContext) -> bool:
        return (
            self.model == context.model
            and self.system_prompt_hash == context.system_prompt_hash
            and self.tools == context.tool_set
        )


class ResponseCache:
    """Caches generated responses keyed by query, model and context.

    The candidate index holds the most recently stored responses (bounded by
    ``candidate_pool_size``). Similarity stages scan at most
    ``max_candidates`` compatible entries and confirm each hit through the
    coordinator, so expired or deleted responses are never returned.

    Usage:
        cache = ResponseCache(coordinator, embedding_cache=embeddings, embed_fn=embed)
        text = await cache.get_or_generate("How do I restart nginx?", context, generate)
    """

    def __init__(
        self,
        coordinator: TierCoordinator[ResponseCacheEntry],
        embedding_cache: Optional[EmbeddingCache] = None,
        embed_fn: Optional[ComputeFn] = None,
        similarity: Optional[SimilarityConfig] = None,
        ttl_classifier: Optional[TTLClassifier] = None,
        embedding_model: str = "default"
    ):
        """Initialize the response cache.

        Args:
            coordinator: Tier coordinator holding ResponseCacheEntry values.
            embedding_cache: Source of query embeddings for semantic matching.
            embed_fn: Computes an embedding on an embedding-cache miss.
            similarity: Matching thresholds and limits.
            ttl_classifier: Picks the TTL for each stored response.
            embedding_model: Model name used for embedding-cache keys.
        """
        self.coordinator = coordinator
        self.embedding_cache = embedding_cache
        self.embed_fn = embed_fn
        self.similarity = similarity or SimilarityConfig()
        self.ttl_classifier: TTLClassifier = ttl_classifier or KeywordTTLClassifier()
        self.embedding_model = embedding_model

        self._candidates: "OrderedDict[str, _Candidate]" = OrderedDict()

        self.exact_hits = 0
        self.semantic_hits = 0
        self.fuzzy_hits = 0
        self.misses = 0
        self.tokens_saved = 0
        self.generation_calls = 0

    def key_for(self, query: str, context: ResponseContext) -> str:
        return CacheKeyGenerator.response(query, context.model, context.fingerprint())

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get(
        self,
        query: str,
        context: Optional[ResponseContext] = None
    ) -> Optional[ResponseMatch]:
        """Find a cached response for the query.

        Args:
            query: The user query.
            context: Model and generation context (defaults apply when None).

        Returns:
            ResponseMatch on a hit, None otherwise.
        """
        context = context or ResponseContext()

        result = await self.coordinator.get(self.key_for(query, context))
        if result.hit:
            return self._record_match(result.value, MatchType.EXACT, 1.0)

        candidates = self._compatible_candidates(context)
        if not candidates:
            self.misses += 1
            return None

        query_embedding = await self._query_embedding(query, context)
        if query_embedding is not None:
            scored = [
                (cosine_similarity(query_embedding, candidate.embedding), candidate)
                for candidate in candidates
                if candidate.embedding is not None
            ]
            match = await self._best_valid(scored, self.similarity.semantic_threshold)
            if match is not None:
                entry, score = match
                return self._record_match(entry, MatchType.SEMANTIC, score)

        if self.similarity.enable_fuzzy_match:
            normalized = normalize_text(query)
            scored = [
                (text_similarity(normalized, candidate.normalized_query), candidate)
                for candidate in candidates
            ]
            match = await self._best_valid(scored, self.similarity.fuzzy_threshold)
            if match is not None:
                entry, score = match
                return self._record_match(entry, MatchType.FUZZY, score)

        self.misses += 1
        return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def set(
        self,
        query: str,
        response: str,
        context: Optional[ResponseContext] = None
    ) -> ResponseCacheEntry:
        """Store a response with a TTL chosen by the classifier.

        Returns:
            The entry that was (or would have been) cached.
        """
        context = context or ResponseContext()
        key = self.key_for(query, context)

        embedding = await self._query_embedding(query, context)
        entry = ResponseCacheEntry(
            query=query,
            response=response,
            embedding=embedding,
            model=context.model,
            system_prompt_hash=context.system_prompt_hash,
            tools=list(context.tool_set),
            conversation_hash=context.conversation_hash,
            token_count=estimate_token_count(response),
            created_at=time.time(),
        )

        ttl = self.ttl_classifier.ttl_for(query, response)
        if await self.coordinator.set(key, entry, ttl=ttl):
            self._index(key, entry)
            logger.debug(f"Cached response ({entry.token_count} tokens, TTL: {ttl}s)")

        return entry

    async def get_or_generate(
        self,
        query: str,
        context: Optional[ResponseContext],
        generate_fn: GenerateFn
    ) -> str:
        """Return a cached response or generate, cache and return a new one.

        Cache failures never prevent generation; only ``generate_fn`` errors
        reach the caller.
        """
        context = context or ResponseContext()

        try:
            match = await self.get(query, context)
        except Exception as e:
            logger.error(f"Response cache lookup failed: {e}")
            match = None

        if match is not None:
            return match.response

        self.generation_calls += 1
        response = generate_fn(query, context)
        if inspect.isawaitable(response):
            response = await response

        try:
            await self.set(query, response, context)
        except Exception as e:
            logger.error(f"Failed to cache generated response: {e}")

        return response

    async def invalidate(self, query: str, context: Optional[ResponseContext] = None) -> bool:
        """Remove the exact-match entry for a query."""
        context = context or ResponseContext()
        key = self.key_for(query, context)
        self._candidates.pop(key, None)
        return await self.coordinator.delete(key)

    async def clear(self) -> None:
        self._candidates.clear()
        await self.coordinator.clear()

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Match counters per stage and similarity settings."""
        hits = self.exact_hits + self.semantic_hits + self.fuzzy_hits
        total = hits + self.misses
        return {
            "exact_hits": self.exact_hits,
            "semantic_hits": self.semantic_hits,
            "fuzzy_hits": self.fuzzy_hits,
            "misses": self.misses,
            "hit_rate": hits / total if total > 0 else 0.0,
            "tokens_saved": self.tokens_saved,
            "generation_calls": self.generation_calls,
            "candidates": len(self._candidates),
            "semantic_threshold": self.similarity.semantic_threshold,
            "fuzzy_threshold": self.similarity.fuzzy_threshold,
        }

    def reset_stats(self) -> None:
        self.exact_hits = 0
        self.semantic_hits = 0
        self.fuzzy_hits = 0
        self.misses = 0
        self.tokens_saved = 0
        self.generation_calls = 0

    # =========================================================================
    # Helpers
    # =========================================================================

    def _index(self, key: str, entry: ResponseCacheEntry) -> None:
        self._candidates[key] = _Candidate(
            key=key,
            normalized_query=normalize_text(entry.query),
            embedding=entry.embedding,
            model=entry.model,
            system_prompt_hash=entry.system_prompt_hash,
            tools=tuple(entry.tools),
        )
        self._candidates.move_to_end(key)

        while len(self._candidates) > self.similarity.candidate_pool_size:
            self._candidates.popitem(last=False)

    def _compatible_candidates(self, context: ResponseContext) -> List[_Candidate]:
        """Most recent compatible candidates, at most ``max_candidates``."""
        candidates = []
        for candidate in reversed(self._candidates.values()):
            if candidate.compatible_with(context):
                candidates.append(candidate)
                if len(candidates) >= self.similarity.max_candidates:
                    break
        return candidates

    async def _best_valid(
        self,
        scored: List[Tuple[float, _Candidate]],
        threshold: float
    ) -> Optional[Tuple[ResponseCacheEntry, float]]:
        """Highest-scoring candidate above ``threshold`` that is still cached."""
        above = [item for item in scored if item[0] >= threshold]
        above.sort(key=lambda item: item[0], reverse=True)

        for score, candidate in above:
            entry = await self.coordinator.peek(candidate.key)
            if entry is not None:
                return entry, score
            # Expired or deleted underneath us
            self._candidates.pop(candidate.key, None)

        return None

    async def _query_embedding(
        self,
        query: str,
        context: ResponseContext
    ) -> Optional[List[float]]:
        if context.embedding is not None:
            return list(context.embedding)

        if self.embedding_cache is None:
            return None

        try:
            if self.embed_fn is not None:
                return await self.embedding_cache.get_or_create(
                    query, self.embedding_model, self.embed_fn
                )
            return await self.embedding_cache.get(query, self.embedding_model)
        except Exception as e:
            logger.warning(f"Query embedding unavailable, skipping semantic match: {e}")
            return None

    def _record_match(
        self,
        entry: ResponseCacheEntry,
        match_type: MatchType,
        score: float
    ) -> ResponseMatch:
        if match_type is MatchType.EXACT:
            self.exact_hits += 1
        elif match_type is MatchType.SEMANTIC:
            self.semantic_hits += 1
        else:
            self.fuzzy_hits += 1

        self.tokens_saved += entry.token_count
        logger.info(f"Response cache {match_type.value} hit (score: {score:.3f})")
        return ResponseMatch(entry=entry, match_type=match_type, score=score)
