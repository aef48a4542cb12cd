"""Tests for the cache key generator."""

from llmcache.services.tiered_cache.key_generator import CacheKeyGenerator


class TestEmbeddingKeys:
    """Tests for embedding key generation."""

    def test_embedding_key_format(self):
        """Test embedding key has correct format."""
        key = CacheKeyGenerator.embedding("test text", "text-embedding-3-small")
        prefix, model, digest = key.split(":")

        assert prefix == "embedding"
        assert model == "text-embedding-3-small"
        assert digest == CacheKeyGenerator.hash_text("test text")

    def test_embedding_key_different_model(self):
        """Test identical content under different models does not collide."""
        key1 = CacheKeyGenerator.embedding("hello", "model-a")
        key2 = CacheKeyGenerator.embedding("hello", "model-b")
        assert key1 != key2

    def test_embedding_whitespace_normalized(self):
        """Test whitespace and line endings are folded before hashing."""
        key1 = CacheKeyGenerator.embedding("hello   world\r\n", "m")
        key2 = CacheKeyGenerator.embedding("hello world", "m")
        assert key1 == key2

    def test_embedding_case_sensitive(self):
        """Test case differences produce different keys."""
        assert CacheKeyGenerator.embedding("Hello", "m") != CacheKeyGenerator.embedding("hello", "m")

    def test_embedding_normalization_disabled(self):
        """Test raw text is hashed when normalization is off."""
        key1 = CacheKeyGenerator.embedding("a  b", "m", normalize=False)
        key2 = CacheKeyGenerator.embedding("a b", "m", normalize=False)
        assert key1 != key2


class TestResponseKeys:
    """Tests for response key generation."""

    def test_response_key_without_context(self):
        """Test a key without fingerprint has three components."""
        key = CacheKeyGenerator.response("What is X?", "gpt")
        assert key.split(":")[:2] == ["response", "gpt"]
        assert len(key.split(":")) == 3

    def test_response_key_normalizes_query(self):
        """Test case and punctuation do not change the key."""
        key1 = CacheKeyGenerator.response("What is X?", "gpt")
        key2 = CacheKeyGenerator.response("what is x", "gpt")
        assert key1 == key2

    def test_response_key_with_fingerprint(self):
        """Test the context fingerprint is appended."""
        fingerprint = CacheKeyGenerator.context_fingerprint(system_prompt="Be terse")
        key = CacheKeyGenerator.response("q", "gpt", fingerprint)

        assert key.endswith(f":{fingerprint}")
        assert len(fingerprint) == 16


class TestContextFingerprint:
    """Tests for context fingerprints."""

    def test_empty_context(self):
        """Test no context yields an empty fingerprint."""
        assert CacheKeyGenerator.context_fingerprint() == ""

    def test_tool_order_irrelevant(self):
        """Test tool sets are order-insensitive."""
        fp1 = CacheKeyGenerator.context_fingerprint(tools=["search", "calc"])
        fp2 = CacheKeyGenerator.context_fingerprint(tools=["calc", "search", "calc"])
        assert fp1 == fp2

    def test_components_distinguish(self):
        """Test each component changes the fingerprint."""
        base = CacheKeyGenerator.context_fingerprint(system_prompt="A")
        assert base != CacheKeyGenerator.context_fingerprint(system_prompt="B")
        assert base != CacheKeyGenerator.context_fingerprint(system_prompt="A", tools=["t"])
        assert base != CacheKeyGenerator.context_fingerprint(
            system_prompt="A", conversation_context="earlier turn"
        )

    def test_generic_key(self):
        """Test generic keys are colon-joined."""
        assert CacheKeyGenerator.generic("a", 1, "b") == "a:1:b"
