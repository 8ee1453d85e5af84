"""
Payload encoding for cache values.

Values are stored as JSON text. Encoding uses orjson, with pydantic models
dumped through ``model_dump``. Decoding either returns the plain JSON value or,
when the caller names the expected type, validates it with a pydantic
TypeAdapter so a key reused with an incompatible type surfaces as a
SerializationError instead of an unchecked value.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, TypeVar

import orjson
from pydantic import BaseModel, TypeAdapter, ValidationError

from smartcache.exceptions import SerializationError

T = TypeVar("T")


def _default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


@lru_cache(maxsize=128)
def _adapter(as_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(as_type)


def encode(value: Any) -> str:
    """Encode a value as JSON text.

    Raises:
        SerializationError: If the value is not JSON serializable.
    """
    try:
        return orjson.dumps(value, default=_default).decode("utf-8")
    except (TypeError, orjson.JSONEncodeError) as e:
        raise SerializationError(
            "Value is not serializable",
            context={"type": type(value).__name__, "error": str(e)},
        ) from e


def decode(text: str, as_type: type[T] | Any | None = None) -> T | Any:
    """Decode JSON text, optionally validating it as ``as_type``.

    Args:
        text: Stored JSON text.
        as_type: Expected type (any type pydantic can validate). None returns
            the plain JSON value.

    Raises:
        SerializationError: If the text is not valid JSON or does not match
            ``as_type``.
    """
    if as_type is None:
        try:
            return orjson.loads(text)
        except orjson.JSONDecodeError as e:
            raise SerializationError(
                "Stored payload is not valid JSON", context={"error": str(e)}
            ) from e

    try:
        adapter = _adapter(as_type)
    except TypeError:
        # Unhashable type expressions skip the adapter cache
        adapter = TypeAdapter(as_type)

    try:
        return adapter.validate_json(text)
    except ValidationError as e:
        raise SerializationError(
            "Stored payload does not match the requested type",
            context={"expected": _type_name(as_type), "errors": e.error_count()},
        ) from e


def _type_name(as_type: Any) -> str:
    return getattr(as_type, "__name__", None) or repr(as_type)
