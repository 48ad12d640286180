"""
Logging format tests

Settlement context must come out as first-class keys so a failed unit can be
found by (user, date, stage).
"""

import json
import logging
from datetime import date
from uuid import UUID

from core.logging import ContextTextFormatter, JSONFormatter, settlement_context

USER_ID = UUID("6f1c2a4e-0000-4000-8000-000000000001")


def _record(msg="settlement failed", **extra):
    logger = logging.getLogger("services.daily_settlement")
    return logger.makeRecord(logger.name, logging.ERROR, __file__, 10, msg, (), None, extra=extra)


class TestSettlementContext:
    def test_context_fields(self):
        context = settlement_context(USER_ID, date(2026, 1, 14), "ledger", attempt=2)
        assert context == {
            "user_id": str(USER_ID),
            "settlement_date": "2026-01-14",
            "stage": "ledger",
            "attempt": 2,
        }

    def test_stage_is_optional(self):
        assert "stage" not in settlement_context(USER_ID, date(2026, 1, 14))


class TestJSONFormatter:
    def test_context_is_top_level(self):
        record = _record(**settlement_context(USER_ID, date(2026, 1, 14), "streak", attempt=1, will_retry=True))
        payload = json.loads(JSONFormatter().format(record))

        assert payload["user_id"] == str(USER_ID)
        assert payload["settlement_date"] == "2026-01-14"
        assert payload["stage"] == "streak"
        assert payload["attempt"] == 1
        assert payload["will_retry"] is True
        assert payload["level"] == "ERROR"
        assert payload["message"] == "settlement failed"

    def test_plain_line_has_no_context_keys(self):
        payload = json.loads(JSONFormatter().format(_record("batch started")))
        assert "user_id" not in payload
        assert "stage" not in payload

    def test_extra_fields_still_merged(self):
        payload = json.loads(JSONFormatter().format(_record(extra_fields={"path": "/health"})))
        assert payload["path"] == "/health"


class TestContextTextFormatter:
    def test_context_appended(self):
        formatter = ContextTextFormatter("%(levelname)s %(message)s")
        record = _record(**settlement_context(USER_ID, date(2026, 1, 14), "persist"))

        line = formatter.format(record)

        assert line == f"ERROR settlement failed [user_id={USER_ID} settlement_date=2026-01-14 stage=persist]"

    def test_no_context_unchanged(self):
        formatter = ContextTextFormatter("%(levelname)s %(message)s")
        assert formatter.format(_record("batch started")) == "ERROR batch started"
