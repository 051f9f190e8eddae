from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

METRIC_PATTERN = r"^[a-zA-Z0-9._/-]{1,255}$"
TAG_PART_PATTERN = r"^[a-zA-Z0-9._/-]{1,255}$"

MetricName = Annotated[str, Field(pattern=METRIC_PATTERN)]
TagPart = Annotated[str, Field(pattern=TAG_PART_PATTERN)]


class MetricWrite(BaseModel):
    metric: MetricName
    tags: dict[TagPart, TagPart] = Field(default_factory=dict, max_length=8)
    value: float
    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_to_utc(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("value")
    @classmethod
    def _validate_value(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be a finite number")
        return v


class MetricWriteResponse(BaseModel):
    timestamp: int = Field(ge=0)


class MetricPointRead(BaseModel):
    timestamp: int
    value: float


class TagRename(BaseModel):
    old: TagPart
    new: TagPart
