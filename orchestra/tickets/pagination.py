"""Pagination state carried between page requests.

The state is handed to callers as an opaque token: URL-safe base64 of a
small versioned JSON document. It records which providers are exhausted
and, for providers that are not, the cursor to resume from.

    {"v": 1, "exhausted": ["gh-1"], "cursors": {"jira-1": "40"}}
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from orchestra.utils.errors import InvalidPageTokenError

TOKEN_VERSION = 1


@dataclass(frozen=True)
class PaginationState:
    """Continuation state for one pagination lineage.

    Exhaustion is additive: no operation removes a provider id from
    ``exhausted``. Cursors of exhausted providers are dropped since they
    will never be used again.

    Attributes:
        exhausted: Provider ids with no further data for this query
        cursors: Provider id -> opaque cursor for the next fetch
    """

    exhausted: frozenset[str] = frozenset()
    cursors: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        cursors = {
            provider_id: cursor
            for provider_id, cursor in self.cursors.items()
            if cursor is not None and provider_id not in self.exhausted
        }
        object.__setattr__(self, "exhausted", frozenset(self.exhausted))
        object.__setattr__(self, "cursors", MappingProxyType(cursors))

    def is_exhausted(self, provider_id: str) -> bool:
        return provider_id in self.exhausted

    def cursor_for(self, provider_id: str) -> str | None:
        return self.cursors.get(provider_id)

    def with_exhausted(self, provider_ids: Iterable[str]) -> PaginationState:
        """Return a state with additional providers marked exhausted."""
        return PaginationState(
            exhausted=self.exhausted | frozenset(provider_ids),
            cursors=self.cursors,
        )

    def with_cursors(self, cursors: Mapping[str, str | None]) -> PaginationState:
        """Return a state with the given cursors replaced.

        A ``None`` cursor clears the stored cursor, so the provider restarts
        from its natural starting point.
        """
        merged: dict[str, Any] = dict(self.cursors)
        merged.update(cursors)
        return PaginationState(exhausted=self.exhausted, cursors=merged)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PaginationState):
            return NotImplemented
        return self.exhausted == other.exhausted and dict(self.cursors) == dict(other.cursors)

    def __hash__(self) -> int:
        return hash((self.exhausted, tuple(sorted(self.cursors.items()))))


def encode_page_token(state: PaginationState) -> str:
    """Serialize a state into an opaque, URL-safe token.

    Encoding is deterministic: equal states always produce the same token.
    """
    document = {
        "v": TOKEN_VERSION,
        "exhausted": sorted(state.exhausted),
        "cursors": dict(sorted(state.cursors.items())),
    }
    raw = json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_page_token(token: str | None) -> PaginationState:
    """Parse a token produced by encode_page_token.

    Args:
        token: The opaque token, or None/empty for the first page

    Returns:
        The decoded state (empty for the first page)

    Raises:
        InvalidPageTokenError: If the token is malformed or from an
            unsupported version
    """
    if token is None or not token.strip():
        return PaginationState()

    token = token.strip()
    try:
        padded = token + "=" * (-len(token) % 4)
        document = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidPageTokenError("Page token is not a valid continuation token") from e

    if not isinstance(document, dict) or document.get("v") != TOKEN_VERSION:
        raise InvalidPageTokenError("Page token has an unsupported format")

    exhausted = document.get("exhausted", [])
    cursors = document.get("cursors", {})
    if not isinstance(exhausted, list) or not all(isinstance(item, str) for item in exhausted):
        raise InvalidPageTokenError("Page token has a malformed exhausted set")
    if not isinstance(cursors, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in cursors.items()
    ):
        raise InvalidPageTokenError("Page token has malformed cursors")

    return PaginationState(exhausted=frozenset(exhausted), cursors=cursors)


def normalize_page_size(size: int | None, minimum: int, maximum: int) -> int:
    """Clamp a requested page size into [minimum, maximum].

    A missing size uses the minimum.
    """
    if size is None:
        return minimum
    return max(minimum, min(size, maximum))


__all__ = [
    "PaginationState",
    "TOKEN_VERSION",
    "decode_page_token",
    "encode_page_token",
    "normalize_page_size",
]
