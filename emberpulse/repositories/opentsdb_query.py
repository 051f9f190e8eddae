from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from emberpulse.models.metric import MetricPoint, RangeFilter

NO_SUCH_NAME = "No such name for "


@dataclass(frozen=True)
class NotFoundRule:
    """An error response that means "series does not exist yet".

    ``pattern`` of ``None`` matches any message for that status.
    """

    status: int
    pattern: str | None = None

    def matches(self, status: int, message: str | None) -> bool:
        if status != self.status:
            return False
        if self.pattern is None:
            return True
        return message is not None and self.pattern in message


# OpenTSDB answers 400 for an unknown tag value in /api/query, and 500 with a
# "No such name for" message for an unknown metric or tag key.
RANGE_NOT_FOUND_RULES: tuple[NotFoundRule, ...] = (
    NotFoundRule(400),
    NotFoundRule(500, NO_SUCH_NAME),
)

# /api/query/last reports unknown names as either 400 or 500, always with the message.
LATEST_NOT_FOUND_RULES: tuple[NotFoundRule, ...] = (
    NotFoundRule(400, NO_SUCH_NAME),
    NotFoundRule(500, NO_SUCH_NAME),
)


def to_epoch_seconds(dt: datetime, *, round_up: bool = False) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    ts = dt.timestamp()
    return math.ceil(ts) if round_up else math.floor(ts)


def tags_to_string(tags: Mapping[str, Any]) -> str:
    return ",".join(f"{k}={v}" for k, v in tags.items() if isinstance(v, str))


def series_expression(metric: str, tags: Mapping[str, Any]) -> str:
    rendered = tags_to_string(tags)
    return f"{metric}{{{rendered}}}" if rendered else metric


def metric_expression(metric: str, flt: RangeFilter) -> str:
    parts = [flt.aggregation.value, *flt.qualifiers, series_expression(metric, flt.tags)]
    return ":".join(parts)


def range_params(metric: str, flt: RangeFilter) -> dict[str, str]:
    return {
        "start": str(int(flt.start)),
        "end": str(int(flt.end)),
        "m": metric_expression(metric, flt),
    }


def error_message(body: Any) -> str | None:
    """Pull ``error.message`` out of an OpenTSDB error document."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    return message if isinstance(message, str) else None


def is_not_found(status: int, body: Any, rules: tuple[NotFoundRule, ...]) -> bool:
    message = error_message(body)
    return any(rule.matches(status, message) for rule in rules)


def response_to_points(dps: Mapping[str, Any]) -> list[MetricPoint]:
    points = [MetricPoint(timestamp=int(k), value=float(v)) for k, v in dps.items()]
    points.sort(key=lambda p: p.timestamp)
    return points


def parse_latest(body: Any) -> MetricPoint | None:
    if not isinstance(body, list) or not body:
        return None
    entry = body[0]
    if not isinstance(entry, dict) or entry.get("timestamp") is None:
        return None
    # /api/query/last reports milliseconds.
    return MetricPoint(
        timestamp=int(round(float(entry["timestamp"]) / 1000)),
        value=float(entry["value"]),
    )
