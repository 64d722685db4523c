# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Exception taxonomy for the stream engine.

* :class:`TransportError` – network or HTTP failure.  Retried by the engine,
  then surfaced as a terminal ``None`` emission on the affected stream.
* :class:`ValidationError` – structured per-field errors returned by the API.
  Never retried and never applied to the cache; mutations re-raise it so
  forms can render the messages.
* :class:`IdentityMismatchError` – a payload whose resources carry no stable
  ``id``.  Logged; the stream is classified as ``unknown``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, TypeAdapter


class FieldError(BaseModel):
    """One entry of an API validation error list."""

    model_config = ConfigDict(frozen=True, extra="allow")

    error: str
    value: Any = None


_ERRORS_ADAPTER: TypeAdapter[dict[str, list[FieldError]]] = TypeAdapter(dict[str, list[FieldError]])


class StreamCacheError(Exception):
    """Base class for errors raised by streamcache."""


class TransportError(StreamCacheError):
    """Raised when a request fails for reasons other than validation."""

    def __init__(self, message: str, *, status: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class ValidationError(StreamCacheError):
    """Raised when the API rejects a write with per-field errors."""

    def __init__(self, errors: Mapping[str, Any], *, status: int | None = 422) -> None:
        self.errors: dict[str, tuple[FieldError, ...]] = {
            field: tuple(entries) for field, entries in _ERRORS_ADAPTER.validate_python(dict(errors)).items()
        }
        self.status = status
        fields = ", ".join(sorted(self.errors)) or "<none>"
        super().__init__(f"validation failed for: {fields}")

    @property
    def json(self) -> dict[str, Any]:
        """Plain ``{"errors": {field: [{error, value?}]}}`` shape."""
        return {
            "errors": {
                field: [entry.model_dump(exclude_none=True) for entry in entries]
                for field, entries in self.errors.items()
            }
        }


class IdentityMismatchError(StreamCacheError):
    """Raised while classifying a payload whose resources lack an ``id``."""

    def __init__(self, stream_id: str | None, detail: str) -> None:
        super().__init__(f"{detail} (stream {stream_id!r})" if stream_id else detail)
        self.stream_id = stream_id
        self.detail = detail


__all__ = [
    "FieldError",
    "StreamCacheError",
    "TransportError",
    "ValidationError",
    "IdentityMismatchError",
]
