from __future__ import annotations

import json
import logging

from stockroom.infra.logging import StructuredFormatter


def test_structured_formatter_emits_context_fields() -> None:
    record = logging.LogRecord(
        name="stockroom.authz.interceptor",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="authorization denied: %s",
        args=("inventory.delete",),
        exc_info=None,
    )
    record.tenant_id = "T1"
    record.user_id = "U1"
    record.operation = "svc:op"
    record.reason = "lacks_permission"

    payload = json.loads(StructuredFormatter().format(record))
    assert payload["message"] == "authorization denied: inventory.delete"
    assert payload["level"] == "INFO"
    assert payload["module"] == "stockroom.authz.interceptor"
    assert payload["tenant_id"] == "T1"
    assert payload["operation"] == "svc:op"
    assert payload["reason"] == "lacks_permission"


def test_structured_formatter_omits_absent_context() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "plain", None, None)
    payload = json.loads(StructuredFormatter().format(record))
    assert "tenant_id" not in payload
    assert "exception" not in payload
