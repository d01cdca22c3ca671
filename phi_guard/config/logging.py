# phi_guard/config/logging.py

import json
import logging
from datetime import datetime, timezone

from phi_guard.core.context import correlation_id_ctx, principal_id_ctx

# Keys passed via `extra=` that are safe to surface. Anything else is dropped so a
# careless caller cannot route resource content into the log stream.
_EXTRA_KEYS = (
    "event",
    "action",
    "outcome",
    "failure_code",
    "resource_type",
    "resource_id",
    "record_id",
    "sequence",
    "policy_version",
    "rule",
    "state",
    "error",
)


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "correlation_id": correlation_id_ctx.get(),
            "principal_id": principal_id_ctx.get(),
        }
        for key in _EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value
        return json.dumps(log_record, default=str)


def configure_logging(log_level: str):
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)
