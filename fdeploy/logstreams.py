"""Emit all log records as single line JSON documents on stdout.

The code base attaches structured context to log messages by passing a dict
as the only argument, eg

    logit.error("cannot read secret", {"name": "foo", "namespace": "bar"})

The formatter merges that dict into the JSON document instead of trying to
interpolate it into the message.
"""

import json
import logging
import sys
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
        }

        # Structured context, if any. Keys must not clobber the basic fields.
        if isinstance(record.args, dict):
            data |= {k: v for k, v in record.args.items() if k not in data}
            data["message"] = str(record.msg)
        else:
            data["message"] = record.getMessage()

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


def setup(level: str) -> None:
    """Install the JSON formatter and set the `level` of our loggers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    for name in ("app", "square"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.setLevel(level.upper())
        logger.propagate = False
