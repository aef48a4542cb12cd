"""Vector and string similarity used for response matching."""

import re
from typing import Sequence

import numpy as np

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity ``(A.B) / (||A|| * ||B||)``.

    Returns 0.0 for mismatched lengths, empty vectors, or when either vector
    has zero magnitude.
    """
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)

    norm_a = np.linalg.norm(vec_a)
    norm_b = np.linalg.norm(vec_b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(vec_a, vec_b) / (norm_a * norm_b))
    return float(np.clip(similarity, -1.0, 1.0))


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace and trim."""
    text = _PUNCTUATION_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (two-row dynamic programming)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the shorter string on the inner loop
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j - 1] + cost,  # substitution
                current[j - 1] + 1,  # insertion
                previous[j] + 1,  # deletion
            ))
        previous = current

    return previous[-1]


def text_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity ``1 - distance / max(len)``."""
    norm_a = normalize_text(a)
    norm_b = normalize_text(b)

    if norm_a == norm_b:
        return 1.0

    max_len = max(len(norm_a), len(norm_b))
    distance = levenshtein_distance(norm_a, norm_b)
    return 1.0 - distance / max_len


def fuzzy_match(a: str, b: str, threshold: float = 0.8) -> bool:
    """Check whether two strings are similar enough after normalization."""
    return text_similarity(a, b) >= threshold
