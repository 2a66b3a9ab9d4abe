"""Deterministic acceptance policy for location updates.

No payload parsing happens here; the pydantic boundary hands over
validated :class:`~pylivetrack.models.LocationUpdate` objects.
"""

from __future__ import annotations


def should_accept_update(
    *,
    cached_timestamp: int | None,
    incoming_timestamp: int,
    allow_equal: bool = True,
) -> bool:
    """Decide whether an incoming update replaces the cached one.

    Policy:
    - Nothing cached: accept.
    - Otherwise accept only if the incoming timestamp is not older.
      With ``allow_equal=False`` an equal timestamp counts as a duplicate.
    """
    if cached_timestamp is None:
        return True
    if allow_equal:
        return incoming_timestamp >= cached_timestamp
    return incoming_timestamp > cached_timestamp


def is_stale(now_ms: int, last_timestamp: int | None, threshold_ms: int) -> bool:
    """Whether the newest known update is older than *threshold_ms*.

    Having never received an update also counts as stale.
    """
    if last_timestamp is None:
        return True
    return (now_ms - last_timestamp) > threshold_ms
