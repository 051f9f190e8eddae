from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum

WILDCARD = "*"


class Aggregation(str, Enum):
    AVG = "avg"
    COUNT = "count"
    DEV = "dev"
    FIRST = "first"
    LAST = "last"
    MAX = "max"
    MIN = "min"
    MIMMAX = "mimmax"
    MIMMIN = "mimmin"
    NONE = "none"
    SUM = "sum"
    ZIMSUM = "zimsum"


@dataclass(frozen=True)
class MetricPoint:
    timestamp: int
    value: float


@dataclass(frozen=True)
class RangeFilter:
    """Inclusive ``[start, end]`` window in epoch seconds plus query modifiers."""

    start: int
    end: int
    aggregation: Aggregation = Aggregation.AVG
    qualifiers: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("'start' must be <= 'end'")

    def with_tag(self, key: str, value: str) -> RangeFilter:
        tags = dict(self.tags)
        tags[key] = value
        return replace(self, tags=tags)


@dataclass(frozen=True)
class MetricSample:
    metric: str
    tags: dict[str, str]
    timestamp: int
    value: float

    def __post_init__(self) -> None:
        if not self.metric or any(c.isspace() for c in self.metric):
            raise ValueError(f"Invalid metric name {self.metric!r}")
        if isinstance(self.timestamp, bool) or not isinstance(self.timestamp, int):
            raise ValueError("timestamp must be integer seconds since the epoch")
        if self.timestamp < 0:
            raise ValueError("timestamp must not be negative")
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValueError(f"Invalid value for '{self.metric}' (must be a number)")
        if not math.isfinite(float(self.value)):
            raise ValueError(f"Invalid value for '{self.metric}' (must be finite number)")
        for key, value in self.tags.items():
            if not key or not value or "=" in key or any(c.isspace() for c in key + value):
                raise ValueError(f"Invalid tag {key!r}={value!r}")

    def to_put_line(self) -> str:
        # put <metric> <seconds_timestamp> <value> <tagk=tagv ...>
        parts = ["put", self.metric, str(self.timestamp), repr(float(self.value))]
        parts.extend(f"{k}={v}" for k, v in self.tags.items())
        return " ".join(parts) + "\n"
