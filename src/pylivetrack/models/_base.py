"""Base model and shared field types for tracking payloads.

Every wire-facing model inherits from :class:`TrackingBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase wire keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops placeholder values
  (``None``, ``""``, NaN) so the field default is used.
* Immutability (``frozen=True``); updates replace, never mutate.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

_SENTINELS = frozenset({"", "--", "NaN", "nan", "null"})


def parse_epoch_millis(value: Any) -> Any:
    """Coerce a timestamp into integer epoch milliseconds.

    Accepts ints/floats (already milliseconds), numeric strings, ISO-8601
    strings and ``datetime`` objects.  Anything else is passed through for
    the field validator to reject.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return int(dt.timestamp() * 1000)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return value
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parse_epoch_millis(parsed)
    return value


EpochMillis = Annotated[int, BeforeValidator(parse_epoch_millis)]
"""Annotated type that coerces timestamps (ms, ISO strings, datetimes) to epoch milliseconds."""


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


class TrackingBaseModel(BaseModel):
    """Base for tracking value objects exchanged on the wire."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        """Drop placeholder values so field defaults apply."""
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_placeholders(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        return TrackingBaseModel._clean_dict(values)

    def to_wire(self) -> dict[str, Any]:
        """Serialise to the camelCase wire shape, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
