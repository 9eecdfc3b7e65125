"""Log output setup for s3authgate: plain text or one JSON object per line."""

import json
import logging
import sys
from datetime import datetime, timezone

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Request attributes passed through ``extra=`` by the server middleware
_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "request_id",
    "access_key",
    "error_code",
)


class JSONFormatter(logging.Formatter):
    """Render a record as JSON with its request attributes as top-level keys.

    Attributes that are unset or None are omitted.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Send all logging to stderr through a single handler.

    ``fmt`` is ``"json"`` or ``"text"``; an unknown ``level`` falls back to INFO.
    Handlers installed earlier are replaced.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)
