"""Identifier and timestamp helpers shared by stages and the job log."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from ulid import ULID


def new_id() -> str:
    """Mint a 26-character, lexicographically sortable identifier."""

    return str(ULID())


def coalesce_id(payload: dict[str, Any], key: str) -> str:
    """Return ``payload[key]`` when it is a usable id, otherwise mint a fresh one.

    Workers are expected to report the identifiers they allocate, but the
    control plane never relies on it: a missing or unusable value is replaced
    by a locally minted id so every successful stage yields one.
    """

    value = payload.get(key)
    if is_usable_id(value):
        return value
    return new_id()


def is_usable_id(value: object) -> bool:
    """Ids double as file names, so they must be non-empty and free of path separators."""

    return (
        isinstance(value, str)
        and bool(value.strip())
        and value not in {".", ".."}
        and "/" not in value
        and "\\" not in value
    )


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def iso_ms(value: datetime | None = None) -> str:
    """Millisecond-precision ISO-8601 UTC timestamp with a ``Z`` suffix."""

    moment = value or utc_now()
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
