"""Base model and enum for fleetsync messages.

Every inbound/outbound message inherits from :class:`FleetBaseModel`
which provides:

* frozen instances, so a message handed to the transport for a
  retransmission is byte-for-byte the one sent originally;
* ``extra="ignore"`` so fleet drivers may add fields freely;
* a ``model_validator(mode="before")`` that drops ``null`` values so the
  field default is used instead.

Wire enums inherit from :class:`FleetEnum` which resolves values without
a mapped member to a fallback member instead of raising ``ValueError``.
"""

from __future__ import annotations

import enum
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class FleetEnum(enum.IntEnum):
    """Base for integer enums received from fleet drivers.

    Every subclass **must** define ``UNKNOWN = -1`` or declare its
    fallback member first.
    """

    @classmethod
    def _missing_(cls, value: object) -> FleetEnum:
        if hasattr(cls, "UNKNOWN"):
            unknown: FleetEnum = cls.UNKNOWN  # type: ignore[attr-defined]
            return unknown
        return next(iter(cls))


class FleetBaseModel(BaseModel):
    """Base for fleetsync wire and graph models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        """Drop ``None`` and NaN entries so defaults apply."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned
