"""JSON log lines for capturedesk.

One object per line on stderr: ``ts``, ``level``, ``msg``, the logger name and
whatever the call site passed in ``extra`` (``capture_id``, ``path``, ``sha``,
``code``...). Capture-scoped code logs through ``get_capture_logger`` so every
line about a capture carries its id through ingest, review and publishing.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Mapping, TextIO

# Attributes every LogRecord carries; anything else on a record came from ``extra``
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None))
) | {"message", "asctime"}


def _timestamp(record: logging.LogRecord) -> str:
    created = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return created.isoformat(timespec="microseconds")


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object.

    ``{"ts": "2026-01-23T10:30:00.123456+00:00", "level": "INFO",
    "msg": "Capture approved", "logger": "capturedesk.capture.lifecycle",
    "capture_id": "lq2x9k-a81bzq"}``

    Values json cannot encode (paths, enums, datetimes) are written with ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.name and record.name != "root":
            entry["logger"] = record.name

        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


class CaptureLoggerAdapter(logging.LoggerAdapter):
    """Adapter that stamps fixed context fields onto every record.

    Call-site ``extra`` is merged in; the adapter's own fields win on a clash
    so a line can never be attributed to the wrong capture.
    """

    def __init__(self, logger: logging.Logger, context: Mapping[str, Any]):
        super().__init__(logger, dict(context))

    @property
    def capture_id(self) -> str | None:
        return self.extra.get("capture_id")

    def process(self, msg, kwargs):
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Send all logging to ``stream`` (stderr by default) as JSON lines.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name)


def get_capture_logger(name: str, capture_id: str, **context: Any) -> CaptureLoggerAdapter:
    """Logger for one capture; ``context`` adds further fixed fields (e.g. ``path``)."""
    return CaptureLoggerAdapter(get_logger(name), {**context, "capture_id": capture_id})
