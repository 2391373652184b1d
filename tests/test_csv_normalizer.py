"""Tests for completion feed normalization."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from src.formflow_analytics.services.csv_normalizer import (
    map_column_name,
    normalize_column_name,
    normalize_email,
    normalize_phone,
    parse_completion_date,
)


class TestColumnMapping:
    """Tests for header to field suggestions."""

    @pytest.mark.parametrize("header,expected", [
        ("Account Number", "account_number"),
        ("ACCT", "account_number"),
        ("account-no", "account_number"),
        ("E-Mail", "customer_email"),
        ("isf_ref", "handoff_token"),
        ("Zip Code", "zip"),
        ("Completion Date", "completion_date"),
    ])
    def test_exact_aliases(self, header, expected):
        assert map_column_name(header) == (expected, 1.0)

    def test_substring_match_is_weaker(self):
        canonical, confidence = map_column_name("Primary Email Address")

        assert canonical == "customer_email"
        assert confidence == 0.8

    def test_unknown_header(self):
        assert map_column_name("Favourite Colour") == (None, 0.0)
        assert map_column_name("   ") == (None, 0.0)

    @pytest.mark.parametrize("header", ["No", "ID", "e", "Num"])
    def test_short_headers_never_partial_match(self, header):
        """Headers too short to be meaningful only map on an exact alias."""
        assert map_column_name(header) == (None, 0.0)

    def test_short_exact_alias_still_maps(self):
        assert map_column_name("Zip") == ("zip", 1.0)
        assert map_column_name("Ref") == ("handoff_token", 1.0)

    def test_normalize_column_name(self):
        assert normalize_column_name(" Account_No. ") == "accountno"


class TestValueNormalizers:
    """Tests for value cleanup."""

    def test_email_lowercased(self):
        assert normalize_email("  Jane.Doe@CreditUnion.ORG ") == ("jane.doe@creditunion.org", None)

    def test_invalid_email_dropped_with_warning(self):
        email, warning = normalize_email("not-an-email")

        assert email is None
        assert "invalid customer_email" in warning

    def test_blank_email(self):
        assert normalize_email("   ") == (None, None)

    def test_phone(self):
        assert normalize_phone("(555) 123-4567") == "5551234567"
        assert normalize_phone("+1 555 123 4567") == "+15551234567"


class TestCompletionDate:
    """Tests for completion date parsing."""

    def test_datetime_is_utc(self):
        assert parse_completion_date("2026-03-10 14:30:00") == datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)

    def test_us_date_resolves_to_end_of_day(self):
        parsed = parse_completion_date("03/10/2026")

        assert parsed.date() == datetime(2026, 3, 10).date()
        assert (parsed.hour, parsed.minute) == (23, 59)

    def test_long_month_format(self):
        assert parse_completion_date("March 10, 2026").date() == datetime(2026, 3, 10).date()

    def test_local_wall_clock(self):
        parsed = parse_completion_date("2026-03-10 09:00:00", ZoneInfo("America/New_York"))

        assert parsed == datetime(2026, 3, 10, 13, 0, tzinfo=timezone.utc)

    def test_unparseable(self):
        assert parse_completion_date("next tuesday") is None
        assert parse_completion_date("") is None
