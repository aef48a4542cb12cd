"""Cache key generation for all cache layers.

Single source of truth for key formats. Keys are colon-joined component
strings so that a key's purpose and model are visible in the durable store.

Examples:
    embedding:text-embedding-3-small:9f86d081884c7d65...
    response:claude-sonnet:2c26b46b68ffc68f...:fcde2b2edba56bf4...
"""

import hashlib
import re
from typing import Any, Iterable, Optional

from llmcache.services.tiered_cache.similarity import normalize_text

_WHITESPACE_RE = re.compile(r"\s+")


class CacheKeyGenerator:
    """Cache key generation for the response and embedding caches."""

    SEPARATOR = ":"

    @classmethod
    def hash_text(cls, text: str) -> str:
        """SHA-256 hex digest of the text."""
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @classmethod
    def generic(cls, *parts: Any) -> str:
        """Join arbitrary components into a key."""
        return cls.SEPARATOR.join(str(part) for part in parts)

    @classmethod
    def normalize_embedding_text(cls, text: str) -> str:
        """Whitespace-only normalization.

        Embeddings are case and punctuation sensitive, so only line endings
        and runs of whitespace are folded.
        """
        return _WHITESPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()

    @classmethod
    def embedding(cls, text: str, model: str = "default", normalize: bool = True) -> str:
        """Generate cache key for an embedding.

        Args:
            text: The text being embedded.
            model: The embedding model name.
            normalize: Fold whitespace before hashing.

        Returns:
            Cache key string ``embedding:{model}:{sha256}``.
        """
        content = cls.normalize_embedding_text(text) if normalize else text
        return cls.generic("embedding", model, cls.hash_text(content))

    @classmethod
    def context_fingerprint(
        cls,
        system_prompt: Optional[str] = None,
        tools: Optional[Iterable[str]] = None,
        conversation_context: Optional[str] = None
    ) -> str:
        """Deterministic fingerprint of the generation context.

        Tool order does not matter. Returns an empty string when no context
        component is set.
        """
        parts = []
        if system_prompt:
            parts.append(f"sys={system_prompt}")

        tool_list = sorted(set(tools or []))
        if tool_list:
            parts.append(f"tools={','.join(tool_list)}")

        if conversation_context:
            parts.append(f"conv={conversation_context}")

        if not parts:
            return ""
        return cls.hash_text("|".join(parts))[:16]

    @classmethod
    def response(cls, query: str, model: str = "default", fingerprint: str = "") -> str:
        """Generate cache key for an LLM response.

        Args:
            query: The user query (normalized before hashing).
            model: The generation model name.
            fingerprint: Context fingerprint from ``context_fingerprint``.

        Returns:
            Cache key string ``response:{model}:{sha256}[:{fingerprint}]``.
        """
        parts = ["response", model, cls.hash_text(normalize_text(query))]
        if fingerprint:
            parts.append(fingerprint)
        return cls.generic(*parts)
