"""Size, token and formatting helpers."""

import json
import math
from typing import Any

from pydantic import BaseModel


def estimate_size(value: Any) -> int:
    """Approximate the in-memory cost of a value in bytes.

    Used only when the caller supplies neither a size function nor an
    explicit size. Falls back to the UTF-8 length of the JSON form.
    """
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    if isinstance(value, BaseModel):
        return len(value.model_dump_json().encode("utf-8"))

    try:
        serialized = json.dumps(value, default=str)
    except (TypeError, ValueError):
        serialized = repr(value)
    return len(serialized.encode("utf-8"))


def estimate_token_count(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return math.ceil(len(text) / 4)


def estimate_tokens_saved(value: Any) -> int:
    """Estimate the generation cost avoided by serving ``value`` from cache."""
    if isinstance(value, str):
        return estimate_token_count(value)

    token_count = getattr(value, "token_count", None)
    if isinstance(token_count, int):
        return token_count
    return 0


def format_bytes(num_bytes: float) -> str:
    """Format bytes as a human readable string."""
    if num_bytes <= 0:
        return "0 Bytes"

    units = ["Bytes", "KB", "MB", "GB", "TB"]
    index = 0
    while num_bytes >= 1024 and index < len(units) - 1:
        num_bytes /= 1024
        index += 1
    return f"{round(num_bytes, 2)} {units[index]}"


def format_percentage(value: float) -> str:
    return f"{value * 100:.2f}%"
