"""JSON log formatter: context ids included, unlisted extras dropped."""

import json
import logging

from phi_guard.config.logging import JsonFormatter
from phi_guard.core.context import correlation_id_ctx


def _format(**extra) -> dict:
    record = logging.LogRecord("phi_guard.test", logging.INFO, __file__, 1, "audit_recorded", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(JsonFormatter().format(record))


def test_whitelisted_extras_included():
    line = _format(action="PHI_READ", resource_id="p-1", sequence=3)
    assert line["message"] == "audit_recorded"
    assert line["action"] == "PHI_READ"
    assert line["resource_id"] == "p-1"
    assert line["sequence"] == 3


def test_unlisted_extras_dropped():
    line = _format(diagnosis="J45", data={"name": "Jane Roe"})
    assert "diagnosis" not in line
    assert "data" not in line
    assert "J45" not in json.dumps(line)


def test_correlation_id_from_context():
    token = correlation_id_ctx.set("corr-7")
    try:
        line = _format()
    finally:
        correlation_id_ctx.reset(token)
    assert line["correlation_id"] == "corr-7"
    assert line["level"] == "INFO"
