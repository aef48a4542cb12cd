"""Encode/decode pairs for the durable tier."""

import json
from typing import Any, Generic, Protocol, Type, TypeVar

from pydantic import BaseModel

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class Codec(Protocol[T]):
    """Serialization boundary between cached values and stored text."""

    def encode(self, value: T) -> str:
        ...

    def decode(self, data: str) -> T:
        ...


class JsonCodec:
    """JSON codec for plain dicts, lists, strings and numbers."""

    def encode(self, value: Any) -> str:
        return json.dumps(value)

    def decode(self, data: str) -> Any:
        return json.loads(data)


class PydanticCodec(Generic[M]):
    """Codec for a pydantic model type."""

    def __init__(self, model_cls: Type[M]):
        self.model_cls = model_cls

    def encode(self, value: M) -> str:
        return value.model_dump_json()

    def decode(self, data: str) -> M:
        return self.model_cls.model_validate_json(data)
