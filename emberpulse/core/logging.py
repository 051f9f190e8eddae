"""
Logging setup for the Emberpulse service.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how records leave the process (plain text or one JSON object per line).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(payload)


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> None:
    """
    Install a single stream handler on the root logger.

    Calling this again replaces the handler installed by a previous call, so
    app factories can be invoked repeatedly (tests) without duplicating output.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_emberpulse", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(PLAIN_FORMAT))
    handler._emberpulse = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Request lines from httpx duplicate our own "Outgoing TSDB request" records.
    logging.getLogger("httpx").setLevel(logging.WARNING)
