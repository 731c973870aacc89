"""
Tests for numeric/date conversion, the coefficient helper and audit logging
"""
from datetime import date

import pytest

from report_helpers import (
    parse_decimal, format_decimal, calculate_coefficient, parse_date, format_date, log_report_audit,
)
from models import AuditLog


@pytest.mark.parametrize("raw, expected", [
    ("12,5", 12.5),
    ("12.5", 12.5),
    (" 100 ", 100.0),
    ("-0,25", -0.25),
    ("", None),
    ("   ", None),
    ("abc", None),
    ("nan", None),
    ("inf", None),
    (None, None),
    (True, None),
    (7, 7.0),
])
def test_parse_decimal(raw, expected):
    assert parse_decimal(raw) == expected


def test_format_decimal():
    assert format_decimal(75.0) == "75"
    assert format_decimal(12.5) == "12.5"
    assert format_decimal(None) == ""


def test_coefficient():
    assert calculate_coefficient("100", "98") == "1.020"
    assert calculate_coefficient("100,0", "50") == "2.000"


@pytest.mark.parametrize("theoretical, measured", [
    ("abc", "98"),
    ("100", "0"),
    ("100", ""),
    ("", "98"),
])
def test_coefficient_not_computable(theoretical, measured):
    assert calculate_coefficient(theoretical, measured) is None


def test_dates():
    assert parse_date("2024-03-01") == date(2024, 3, 1)
    assert parse_date("") is None
    assert parse_date("01/03/2024") is None
    assert format_date(date(2024, 3, 1)) == "2024-03-01"
    assert format_date(None) == ""


def test_audit_log_written(session_factory):
    db = session_factory()
    try:
        log_report_audit(db, "CREATE", 12, "fixed", "J. Martin", "1 unit(s), 0 photo(s)")
        entry = db.query(AuditLog).one()
        assert entry.action == "CREATE"
        assert entry.entity_type == "intervention"
        assert entry.entity_id == 12
        assert entry.technician_name == "J. Martin"
    finally:
        db.close()


def test_audit_failure_is_swallowed():
    class BrokenSession:
        rolled_back = False

        def add(self, entry):
            raise RuntimeError("db down")

        def rollback(self):
            self.rolled_back = True

    db = BrokenSession()
    log_report_audit(db, "UPDATE", 3, "portable", None, "x")
    assert db.rolled_back
